"""Integration tests for the `checkpoint` command."""

import asyncio

import pytest

from commitreel.cli import EXIT_FAILURE, main
from commitreel.core.checkpoint_codec import decode_checkpoint
from commitreel.core.models import checkpoint_uri
from commitreel.core.store import open_store
from tests.conftest import commit_files


async def _read(tape, uri):
    store = await open_store(tape)
    try:
        return await store.view_by_uri(uri), await store.stats()
    finally:
        await store.close()


@pytest.mark.integration
def test_checkpoint_command_records_head(git_repo, capsys):
    sha = commit_files(git_repo, {"app.py": "print(1)\n"}, "Add app")
    workspace = git_repo.working_tree_dir

    assert main(["checkpoint", "before", "refactor", "--cwd", workspace]) == 0

    assert capsys.readouterr().out.strip() == sha
    text, _stats = asyncio.run(_read(f"{workspace}/commitreel.tape.db", checkpoint_uri(sha)))
    record = decode_checkpoint(text)
    assert record.note == "before refactor"
    assert record.run_command == "python app.py"


@pytest.mark.integration
def test_checkpoint_command_without_git_snapshots_files(tmp_path, capsys):
    (tmp_path / "notes.md").write_text("draft")

    assert main(["checkpoint", "--cwd", str(tmp_path), "--out", "tapes/t.db"]) == 0

    checkpoint_id = capsys.readouterr().out.strip()
    text, stats = asyncio.run(_read(tmp_path / "tapes" / "t.db", checkpoint_uri(checkpoint_id)))
    record = decode_checkpoint(text)
    assert record.title == "Manual checkpoint"
    assert record.files == ("notes.md",)
    assert stats["fileSnapshots"] == 1


@pytest.mark.integration
def test_invalid_config_exits_with_failure(tmp_path):
    (tmp_path / "commitreel.yml").write_text("poll_interval: -1\n")

    assert main(["checkpoint", "--cwd", str(tmp_path)]) == EXIT_FAILURE
