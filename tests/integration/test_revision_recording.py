"""Integration tests: recording checkpoints from a real git repository."""

import asyncio

import pytest

from commitreel.core.checkpoint_codec import decode_checkpoint
from commitreel.core.detector import RevisionPoller
from commitreel.core.errors import RevisionSourceError
from commitreel.core.models import checkpoint_uri, file_snapshot_uri
from commitreel.core.recorder import CheckpointRecorder
from commitreel.core.revision_source import RevisionSource
from commitreel.core.store import open_store
from commitreel.core.store_writer import StoreWriter
from tests.conftest import TEST_ACTOR, commit_files


@pytest.fixture
async def tape(tmp_path):
    store = await open_store(tmp_path / "tape.db")
    writer = StoreWriter(store)
    yield store, writer
    await writer.close()
    await store.close()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_head_moving_from_r1_to_r2_records_one_new_checkpoint(git_repo, tape):
    store, writer = tape
    workspace = git_repo.working_tree_dir
    r1 = commit_files(git_repo, {"app.py": "print('v1')\n", "README.md": "hi\n"}, "Initial app")
    revisions = RevisionSource(workspace)
    recorder = CheckpointRecorder(workspace, writer, revisions, run_command="python app.py", capture_files=True)

    baseline = await recorder.record_from_revision_change(None, r1, "Baseline")
    poller = RevisionPoller(revisions, recorder, last_seen=r1)
    assert await poller.tick() is None

    r2 = commit_files(git_repo, {"app.py": "print('v2')\n"}, "Change greeting")
    result = await poller.tick()

    assert baseline.id == r1
    assert result.id == r2
    assert await poller.tick() is None
    assert (await store.stats())["checkpoints"] == 2

    record = decode_checkpoint(await store.view_by_uri(checkpoint_uri(r2)))
    assert record.title == "Change greeting"
    assert record.revision_id == r2
    assert record.files == ("app.py",)
    assert "1 file changed" in record.diff_summary
    assert record.run_command == "python app.py"
    assert record.note == "Agent checkpoint"
    assert await store.view_by_uri(file_snapshot_uri("app.py", r2)) == "print('v2')\n"

    timeline = await store.timeline(label="checkpoint")
    assert [entry.uri for entry in timeline] == [checkpoint_uri(r2), checkpoint_uri(r1)]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_baseline_checkpoint_has_no_diff(git_repo, tape):
    store, writer = tape
    r1 = commit_files(git_repo, {"main.py": "print(1)\n"}, "First")
    recorder = CheckpointRecorder(git_repo.working_tree_dir, writer, capture_files=True)

    result = await recorder.record_from_revision_change(None, r1, "Baseline")

    record = decode_checkpoint(await store.view_by_uri(result.uri))
    assert record.diff_summary is None
    assert record.files == ()
    assert result.snapshots_written == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_deleted_file_snapshot_is_reported(git_repo, tape):
    _store, writer = tape
    r1 = commit_files(git_repo, {"keep.py": "1\n", "drop.py": "2\n"}, "Two files")
    git_repo.index.remove(["drop.py"], working_tree=True)
    r2 = git_repo.index.commit("Drop a file", author=TEST_ACTOR, committer=TEST_ACTOR).hexsha
    recorder = CheckpointRecorder(git_repo.working_tree_dir, writer, capture_files=True)

    result = await recorder.record_from_revision_change(r1, r2)

    assert result.snapshots_failed == ("drop.py",)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_poll_and_manual_checkpoint_race_yields_one_record(git_repo, tape):
    store, writer = tape
    r1 = commit_files(git_repo, {"a.txt": "a\n"}, "First")
    revisions = RevisionSource(git_repo.working_tree_dir)
    recorder = CheckpointRecorder(git_repo.working_tree_dir, writer, revisions)
    poller = RevisionPoller(revisions, recorder, last_seen=r1)
    r2 = commit_files(git_repo, {"a.txt": "b\n"}, "Second")

    results = await asyncio.gather(poller.tick(), recorder.record_manual(), poller.tick())

    recorded = [result for result in results if result is not None and not result.skipped]
    assert [result.id for result in recorded] == [r2]
    assert (await store.stats())["checkpoints"] == 1


@pytest.mark.integration
def test_recent_revisions_lists_newest_first(git_repo):
    r1 = commit_files(git_repo, {"a.txt": "1\n"}, "One")
    r2 = commit_files(git_repo, {"a.txt": "2\n"}, "Two")
    r3 = commit_files(git_repo, {"a.txt": "3\n"}, "Three")
    revisions = RevisionSource(git_repo.working_tree_dir)

    assert revisions.recent_revisions(2) == [r3, r2]
    assert revisions.recent_revisions(10) == [r3, r2, r1]
    assert revisions.recent_revisions(0) == []


@pytest.mark.integration
def test_recent_revisions_without_commits_raises(git_repo):
    with pytest.raises(RevisionSourceError):
        RevisionSource(git_repo.working_tree_dir).recent_revisions(5)
