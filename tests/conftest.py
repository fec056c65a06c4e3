"""Pytest configuration for commitreel tests."""

import logging
from pathlib import Path

import pytest
from git import Actor, Repo

logging.getLogger("commitreel").handlers.clear()

TEST_ACTOR = Actor("commitreel tests", "tests@commitreel.invalid")


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=2s, integration=20s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(2))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(20))


def commit_files(repo: Repo, files: dict[str, str], message: str) -> str:
    """Write `files` into the work tree, commit them and return the new sha."""
    root = Path(repo.working_tree_dir)
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    repo.index.add(list(files))
    return repo.index.commit(message, author=TEST_ACTOR, committer=TEST_ACTOR).hexsha


@pytest.fixture
def git_repo(tmp_path):
    """Empty git repository in a temporary workspace."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return Repo.init(workspace)
