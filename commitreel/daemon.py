"""commitreel recorder daemon.

Wires the tape, the serialized writer, the recorder and the change detectors
together, optionally serves the HTTP surface, and tears everything down on
shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Coroutine, Optional, Sequence

from commitreel.config import CommitReelConfig
from commitreel.core.detector import FileBatcher, RevisionPoller, WorkspaceWatcher
from commitreel.core.errors import RevisionSourceError
from commitreel.core.recorder import CheckpointRecorder
from commitreel.core.revision_source import RevisionSource
from commitreel.core.run_inference import resolve_run_command
from commitreel.core.run_manager import RunManager
from commitreel.core.store import TapeStore, open_store
from commitreel.core.store_writer import StoreWriter

if TYPE_CHECKING:
    from commitreel.api_server import APIServer

logger = logging.getLogger(__name__)


def resolve_tape_path(cwd: Path, tape: str) -> Path:
    path = Path(tape).expanduser()
    return path if path.is_absolute() else (cwd / path).resolve()


def workspace_ignores(cwd: Path, tape_path: Path, ignores: Sequence[str]) -> list[str]:
    """Configured ignores plus the tape itself (and its journal files) when it lives in the workspace."""
    result = list(ignores)
    try:
        result.append(tape_path.relative_to(cwd).as_posix())
    except ValueError:
        pass  # Tape outside the workspace
    return result


class RecorderDaemon:
    """Long-running recorder for one workspace."""

    def __init__(
        self, cwd: Path | str, config: CommitReelConfig, *, serve_web: bool = False, record: bool = True
    ) -> None:
        """Initialize daemon.

        Args:
            cwd: Workspace root
            config: Effective settings (file values merged with CLI flags)
            serve_web: Whether to start the HTTP surface
            record: Whether to detect and record changes (False only serves the tape)
        """
        self.cwd = Path(cwd).resolve()
        self.config = config
        self.serve_web = serve_web
        self.record = record
        self.tape_path = resolve_tape_path(self.cwd, config.tape)
        self.ignores = workspace_ignores(self.cwd, self.tape_path, config.ignores)
        self.shutdown_event = asyncio.Event()

        self.revisions = RevisionSource(self.cwd)
        self.store: Optional[TapeStore] = None
        self.writer: Optional[StoreWriter[TapeStore]] = None
        self.recorder: Optional[CheckpointRecorder] = None
        self.poller: Optional[RevisionPoller] = None
        self.batcher: Optional[FileBatcher] = None
        self.run_manager: Optional[RunManager] = None
        self.api_server: Optional["APIServer"] = None
        self._tasks: list[asyncio.Task[None]] = []

    async def start(self) -> None:
        """Open the tape, seed the baseline and start the detectors.

        Raises:
            StoreUnavailableError: If the tape cannot be opened
        """
        logger.info("workspace: %s", self.cwd)
        self.store = await open_store(self.tape_path)
        self.writer = StoreWriter(self.store)

        has_git = await asyncio.to_thread(self.revisions.is_under_version_control)
        capture_files = self.config.capture_files if self.config.capture_files is not None else not has_git
        watch_files = self.config.watch_files if self.config.watch_files is not None else not has_git
        run_command = await asyncio.to_thread(resolve_run_command, self.cwd, self.config.run_command)

        self.recorder = CheckpointRecorder(
            self.cwd,
            self.writer,
            self.revisions,
            run_command=run_command,
            capture_files=capture_files,
            ignores=self.ignores,
        )

        if self.record:
            if has_git:
                await self._start_revision_polling()
            else:
                logger.info("git not detected; using file snapshots")

            if watch_files:
                self.batcher = FileBatcher(self.recorder, debounce=self.config.debounce)
                watcher = WorkspaceWatcher(self.cwd, self.batcher, self.ignores)
                self._spawn(watcher.run(), "workspace_watcher")

        if self.serve_web:
            await self._start_api_server(run_command)

        if self.record:
            logger.info("recording to %s", self.tape_path)

    async def _start_revision_polling(self) -> None:
        assert self.recorder is not None
        try:
            head: Optional[str] = await asyncio.to_thread(self.revisions.current_revision)
        except RevisionSourceError as exc:
            # Fresh repository without commits: the first commit becomes the first checkpoint.
            logger.warning("git detected but HEAD unresolved: %s", exc)
            head = None
        if head:
            logger.info("git detected: %s", head[:7])
            if self.config.seed:
                await self.recorder.record_from_revision_change(None, head, "Baseline")

        self.poller = RevisionPoller(
            self.revisions,
            self.recorder,
            interval=self.config.poll_interval,
            last_seen=head,
        )
        self._spawn(self.poller.run(), "revision_poller")

    async def _start_api_server(self, run_command: Optional[str]) -> None:
        from commitreel.api_server import APIServer

        assert self.store is not None
        self.run_manager = RunManager(
            self.cwd,
            revisions=self.revisions,
            run_command=self.config.run_command,
            run_mode=self.config.run_mode,
        )
        server = APIServer(
            self.store,
            self.run_manager,
            cwd=self.cwd,
            tape_path=self.tape_path,
            run_command=run_command,
            run_mode=self.config.run_mode,
        )
        await server.start(self.config.web.host, self.config.web.port)
        self.api_server = server

    def _spawn(self, coro: Coroutine[object, object, None], name: str) -> None:
        task = asyncio.create_task(coro, name=f"commitreel-{name}")
        task.add_done_callback(self._log_background_task_exception(name))
        self._tasks.append(task)

    def _log_background_task_exception(self, task_name: str) -> Callable[[asyncio.Task[None]], None]:
        """Create a done callback that logs crashes and stops the daemon."""

        def handler(task: asyncio.Task[None]) -> None:
            if task.cancelled():
                return
            exc = task.exception()
            if exc:
                logger.error("Background task '%s' crashed: %s", task_name, exc, exc_info=exc)
                self.shutdown_event.set()

        return handler

    async def stop(self) -> None:
        """Stop detectors, the HTTP surface and any run, then close the tape."""
        logger.info("Stopping commitreel daemon...")
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

        if self.batcher is not None:
            await self.batcher.drain()

        if self.api_server is not None:
            await self.api_server.stop()
            self.api_server = None
        if self.run_manager is not None:
            await self.run_manager.shutdown()

        if self.writer is not None:
            await self.writer.close()
        if self.store is not None:
            await self.store.close()
        logger.info("commitreel daemon stopped")

    async def run_until_stopped(self) -> None:
        try:
            await self.start()
            await self.shutdown_event.wait()
        finally:
            await self.stop()
