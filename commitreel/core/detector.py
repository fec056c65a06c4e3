"""Change detection: revision polling and debounced workspace watching.

Both triggers are explicit state objects. `RevisionPoller.tick()` and
`FileBatcher.fire_now()` run one detection step directly, which is what the
timer-driven loops call as well.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from commitreel.constants import DEFAULT_DEBOUNCE_S, DEFAULT_IGNORES, DEFAULT_POLL_INTERVAL_S
from commitreel.core.errors import RevisionSourceError
from commitreel.core.files import should_ignore
from commitreel.core.models import RecordResult
from commitreel.core.recorder import CheckpointRecorder
from commitreel.core.revision_source import RevisionSource

logger = logging.getLogger(__name__)


class RevisionPoller:
    """Records a checkpoint whenever HEAD moves."""

    def __init__(
        self,
        revisions: RevisionSource,
        recorder: CheckpointRecorder,
        *,
        interval: float = DEFAULT_POLL_INTERVAL_S,
        last_seen: Optional[str] = None,
        note: str = "Agent checkpoint",
    ) -> None:
        self.revisions = revisions
        self.recorder = recorder
        self.interval = interval
        self.last_seen = last_seen
        self.note = note
        self._inflight: set[asyncio.Task[Optional[RecordResult]]] = set()
        self._head_lock = asyncio.Lock()

    async def tick(self) -> Optional[RecordResult]:
        """Compare HEAD to the last seen revision and record on change.

        Returns:
            The record result, or None when nothing changed or the poll failed
        """
        # One HEAD read at a time: last_seen only follows reads in the order they started.
        async with self._head_lock:
            try:
                current = await asyncio.to_thread(self.revisions.current_revision)
            except RevisionSourceError as exc:
                logger.warning("git watch error: %s", exc)
                return None

            if current == self.last_seen:
                return None

            # Advance before the write so an overlapping tick cannot detect the same revision.
            previous = self.last_seen
            self.last_seen = current
        logger.debug("HEAD moved %s -> %s", (previous or "none")[:8], current[:8])
        try:
            return await self.recorder.record_from_revision_change(previous, current, self.note)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning("failed to record revision %s: %s", current[:8], exc)
            return None

    async def run(self) -> None:
        """Tick every `interval` seconds until cancelled.

        Ticks are spawned rather than awaited so a slow write never delays detection.
        """
        logger.info("Revision poller started (interval=%.1fs)", self.interval)
        try:
            while True:
                task = asyncio.create_task(self.tick(), name="commitreel-revision-tick")
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
                await asyncio.sleep(self.interval)
        finally:
            for task in list(self._inflight):
                task.cancel()
            logger.info("Revision poller stopped")


class FileBatcher:
    """Collects changed paths and records them as one checkpoint after a quiet period."""

    def __init__(
        self,
        recorder: CheckpointRecorder,
        *,
        debounce: float = DEFAULT_DEBOUNCE_S,
        note: str = "Auto checkpoint",
    ) -> None:
        self.recorder = recorder
        self.debounce = debounce
        self.note = note
        # dict keeps first-seen order while deduplicating
        self._pending: dict[str, None] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._inflight: set[asyncio.Task[Optional[RecordResult]]] = set()

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(self._pending)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def add(self, rel_path: str) -> None:
        """Add a changed path and push the fire time `debounce` seconds out.

        Must be called on the event loop thread.
        """
        self._pending[rel_path] = None
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.debounce, self._on_timer)

    def cancel(self) -> None:
        """Disarm the timer. Pending paths are kept."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.fire_now(), name="commitreel-file-batch")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def fire_now(self) -> Optional[RecordResult]:
        """Drain the pending set and record it as one checkpoint.

        Returns:
            The record result, or None when nothing was pending or recording failed
        """
        self.cancel()
        files = list(self._pending)
        self._pending.clear()
        if not files:
            return None
        try:
            return await self.recorder.record_from_file_batch(self.note, files)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning("failed to record file batch (%d files): %s", len(files), exc)
            return None

    async def drain(self) -> None:
        """Wait for batches that already fired to finish recording."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)


class _WorkspaceHandler(FileSystemEventHandler):
    """Watchdog handler that forwards relevant paths to the batcher on the loop thread."""

    def __init__(
        self, root: Path, batcher: FileBatcher, loop: asyncio.AbstractEventLoop, ignores: Sequence[str]
    ) -> None:
        super().__init__()
        self._root = root
        self._batcher = batcher
        self._loop = loop
        self._ignores = ignores

    def _handle(self, event: FileSystemEvent, path: bytes | str) -> None:
        if event.is_directory:
            return
        src = path.decode(errors="replace") if isinstance(path, bytes) else path
        try:
            rel = Path(src).resolve().relative_to(self._root).as_posix()
        except ValueError:
            return  # Outside the workspace
        if should_ignore(rel, self._ignores):
            return
        try:
            self._loop.call_soon_threadsafe(self._batcher.add, rel)
        except RuntimeError:
            pass  # Loop closed

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic saves rename a temp file over the target; the destination is the change.
        self._handle(event, event.dest_path)


class WorkspaceWatcher:
    """Feeds workspace file events into a FileBatcher."""

    def __init__(self, root: Path | str, batcher: FileBatcher, ignores: Sequence[str] = DEFAULT_IGNORES) -> None:
        self.root = Path(root).resolve()
        self.batcher = batcher
        self.ignores = tuple(ignores)

    async def run(self) -> None:
        """Watch until cancelled, then stop the observer."""
        loop = asyncio.get_running_loop()
        observer = Observer()
        observer.daemon = True
        handler = _WorkspaceHandler(self.root, self.batcher, loop, self.ignores)
        observer.schedule(handler, str(self.root), recursive=True)
        observer.start()
        logger.info("WorkspaceWatcher: watching %s", self.root)
        try:
            await asyncio.Event().wait()
        finally:
            self.batcher.cancel()
            observer.stop()
            observer.join(timeout=2)
            logger.info("WorkspaceWatcher: stopped")
