"""Run sandboxes: detached git worktrees of historical revisions."""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from git.exc import GitCommandError

from commitreel.constants import RUN_DIR_NAME, STATE_DIR_NAME
from commitreel.core.errors import RevisionSourceError, SandboxError
from commitreel.core.revision_source import RevisionSource

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def sandbox_dir_name(checkpoint_id: str) -> str:
    """Filesystem-safe directory name for a checkpoint id."""
    return _UNSAFE_CHARS.sub("_", checkpoint_id)


class SandboxMaterializer:
    """Creates and removes run sandboxes under `<workspace>/.commitreel/run/`.

    Blocking; RunManager calls it through `asyncio.to_thread`.
    """

    def __init__(self, revisions: RevisionSource) -> None:
        self.revisions = revisions
        self.base_dir = revisions.cwd / STATE_DIR_NAME / RUN_DIR_NAME

    def path_for(self, checkpoint_id: str) -> Path:
        return self.base_dir / sandbox_dir_name(checkpoint_id)

    def materialize(self, checkpoint_id: str, revision: str) -> Path:
        """Check out `revision` into the checkpoint's sandbox directory.

        A stale sandbox at the same location is removed first.

        Raises:
            SandboxError: If the worktree cannot be created
        """
        target = self.path_for(checkpoint_id)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        if target.exists():
            logger.info("Removing stale sandbox %s", target)
            self.remove(target)

        try:
            self.revisions.repo.git.worktree("add", "--detach", str(target), revision)
        except (GitCommandError, RevisionSourceError) as exc:
            msg = f"Failed to create sandbox for {checkpoint_id[:8]} at {target}"
            logger.error("%s: %s", msg, exc)
            raise SandboxError(msg) from exc

        logger.info("Created sandbox at %s (%s)", target, revision[:8])
        return target

    def remove(self, target: Path) -> None:
        """Remove a sandbox worktree and its directory.

        Raises:
            SandboxError: If the directory is still present afterwards
        """
        try:
            self.revisions.repo.git.worktree("remove", "--force", str(target))
        except (GitCommandError, RevisionSourceError) as exc:
            logger.debug("git worktree remove %s failed, deleting directly: %s", target, exc)
            shutil.rmtree(target, ignore_errors=True)
            try:
                self.revisions.repo.git.worktree("prune")
            except (GitCommandError, RevisionSourceError):
                pass  # Registration is cleaned up by git's own gc later
        if target.exists():
            raise SandboxError(f"Failed to remove sandbox {target}")
