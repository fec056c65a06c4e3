"""Serialized write channel in front of the tape store.

Every trigger (revision poll, debounced file batch, manual checkpoint) submits
its write as a job; a single worker task runs jobs one at a time in FIFO order,
so a check-then-write job never interleaves with another job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from commitreel.core.store import Store

logger = logging.getLogger(__name__)

T = TypeVar("T")
S = TypeVar("S", bound=Store)


class _Job(Generic[S]):
    __slots__ = ("fn", "future", "name")

    def __init__(self, fn: Callable[[S], Awaitable[object]], future: asyncio.Future[object], name: str) -> None:
        self.fn = fn
        self.future = future
        self.name = name


class StoreWriter(Generic[S]):
    """Single-writer job queue for a Store.

    Example:
        writer = StoreWriter(store)
        result = await writer.submit(lambda s: s.put(frame), name="put")
        await writer.close()
    """

    def __init__(self, store: S) -> None:
        self.store = store
        self._queue: asyncio.Queue[Optional[_Job[S]]] = asyncio.Queue()
        self._worker: Optional[asyncio.Task[None]] = None
        self._closed = False

    def _ensure_worker(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._worker = asyncio.create_task(self._worker_loop(), name="commitreel-store-writer")

    async def submit(self, fn: Callable[[S], Awaitable[T]], *, name: str = "write") -> T:
        """Queue `fn(store)` and wait for its result.

        Exceptions raised by `fn` propagate to the submitting caller only; the
        worker keeps serving later jobs.

        Raises:
            RuntimeError: If the writer has been closed
        """
        if self._closed:
            raise RuntimeError("StoreWriter is closed")
        future: asyncio.Future[object] = asyncio.get_running_loop().create_future()
        await self._queue.put(_Job(fn, future, name))
        self._ensure_worker()
        return await future  # type: ignore[return-value]

    async def _worker_loop(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    return
                if job.future.cancelled():
                    logger.debug("Skipping cancelled store job %s", job.name)
                    continue
                try:
                    result = await job.fn(self.store)
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    logger.debug("Store job %s failed: %s", job.name, exc)
                    if not job.future.done():
                        job.future.set_exception(exc)
                else:
                    if not job.future.done():
                        job.future.set_result(result)
            finally:
                self._queue.task_done()

    async def close(self) -> None:
        """Finish queued jobs, then stop the worker."""
        if self._closed:
            return
        self._closed = True
        if self._worker is None or self._worker.done():
            return
        await self._queue.put(None)
        await self._worker
