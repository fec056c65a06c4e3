"""Version-control queries used by the recorder and the run sandbox.

Backed by GitPython. Every method is blocking (it shells out to git); async
callers wrap them in `asyncio.to_thread`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from git import Repo
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from commitreel.core.errors import RevisionSourceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiffSummary:
    """`git diff --stat` digest between two revisions."""

    summary: str = ""


class RevisionSource:
    """Read-only view of a git workspace."""

    def __init__(self, cwd: Path | str) -> None:
        """Initialize revision source.

        Args:
            cwd: Workspace directory (may be a subdirectory of the repository)
        """
        self.cwd = Path(cwd)
        self._repo: Optional[Repo] = None

    @property
    def repo(self) -> Repo:
        """Open repository, raising RevisionSourceError when there is none."""
        if self._repo is None:
            try:
                self._repo = Repo(self.cwd, search_parent_directories=True)
            except (InvalidGitRepositoryError, NoSuchPathError) as exc:
                raise RevisionSourceError(f"{self.cwd} is not a git repository") from exc
        return self._repo

    def is_under_version_control(self) -> bool:
        try:
            return not self.repo.bare
        except RevisionSourceError:
            return False

    def current_revision(self) -> str:
        """Return the full sha of HEAD."""
        try:
            return self.repo.head.commit.hexsha
        except (ValueError, GitCommandError) as exc:
            # ValueError: HEAD points at an unborn branch
            raise RevisionSourceError(f"cannot resolve HEAD in {self.cwd}: {exc}") from exc

    def recent_revisions(self, limit: int) -> list[str]:
        """Full shas of the `limit` most recent commits reachable from HEAD, newest first."""
        if limit <= 0:
            return []
        try:
            return [commit.hexsha for commit in self.repo.iter_commits(max_count=limit)]
        except (ValueError, GitCommandError) as exc:
            raise RevisionSourceError(f"cannot list revisions in {self.cwd}: {exc}") from exc

    def commit_subject(self, revision: str) -> str:
        return self._git("show", "-s", "--format=%s", revision)

    def commit_time(self, revision: str) -> int:
        """Commit timestamp in seconds since epoch."""
        return int(self._git("show", "-s", "--format=%ct", revision))

    def diff_summary(self, previous: Optional[str], revision: str) -> DiffSummary:
        """Summarize changes between two revisions.

        Returns an empty summary when `previous` is missing or equal to `revision`.
        """
        if not previous or previous == revision:
            return DiffSummary()
        stat = self._git("diff", "--stat", "--no-color", previous, revision)
        lines = [line for line in stat.splitlines() if line.strip()]
        if not lines:
            return DiffSummary()
        return DiffSummary(summary=lines[-1].strip())

    def changed_files(self, previous: Optional[str], revision: str) -> list[str]:
        if not previous or previous == revision:
            return []
        out = self._git("diff", "--name-only", previous, revision)
        return [line for line in out.splitlines() if line]

    def file_at_revision(self, revision: str, path: str) -> bytes:
        """Raw content of `path` as of `revision`.

        Raises:
            RevisionSourceError: If the revision or the path does not exist there
        """
        try:
            blob = self.repo.commit(revision).tree / path
            return blob.data_stream.read()
        except (BadName, KeyError, ValueError, GitCommandError) as exc:
            raise RevisionSourceError(f"{path} not found at {revision[:8]}") from exc

    def _git(self, *args: str) -> str:
        try:
            return str(self.repo.git.execute(["git", *args], with_extended_output=False)).strip()
        except GitCommandError as exc:
            logger.debug("git %s failed: %s", args[0], exc)
            raise RevisionSourceError(f"git {args[0]} failed: {exc.stderr or exc}") from exc
