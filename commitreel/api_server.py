"""HTTP surface for browsing the tape and running checkpoints.

JSON only. Reads go straight to the store; runs go through the RunManager.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query

from commitreel.api_models import LogPageDTO, RunRequest, StopRunDTO
from commitreel.core.checkpoint_codec import decode_checkpoint
from commitreel.core.errors import CommitReelError
from commitreel.core.models import checkpoint_uri
from commitreel.core.run_inference import normalize_run_mode
from commitreel.core.run_manager import RunManager
from commitreel.core.store import Store

logger = logging.getLogger(__name__)

API_STOP_TIMEOUT_S = 5.0
API_START_RETRIES = 50  # x 0.1s
FIND_RESULT_LIMIT = 20


class APIServer:
    """FastAPI app plus the uvicorn server that serves it."""

    def __init__(
        self,
        store: Store,
        run_manager: RunManager,
        *,
        cwd: Path,
        tape_path: Path,
        run_command: Optional[str] = None,
        run_mode: Optional[str] = None,
    ) -> None:
        self.store = store
        self.run_manager = run_manager
        self.cwd = cwd
        self.tape_path = tape_path
        self.run_command = run_command
        self.run_mode = normalize_run_mode(run_mode)
        self.app = FastAPI(title="commitreel API", version="1.0.0")
        self.server: uvicorn.Server | None = None
        self.server_task: asyncio.Task[object] | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up all HTTP endpoints."""

        @self.app.get("/api/status")
        async def status() -> dict[str, Any]:
            return {
                "path": str(self.tape_path),
                "stats": await self.store.stats(),
                "cwd": str(self.cwd),
                "runCommand": self.run_command,
                "runMode": self.run_mode,
            }

        @self.app.get("/api/timeline")
        async def timeline(
            limit: int = Query(default=100, ge=1, le=10000), label: str | None = Query(default=None)
        ) -> dict[str, Any]:
            entries = await self.store.timeline(limit, label)
            return {"entries": [entry.to_dict() for entry in entries]}

        @self.app.get("/api/view")
        async def view(uri: str | None = Query(default=None)) -> dict[str, Any]:
            if not uri:
                raise HTTPException(status_code=400, detail="missing uri")
            text = await self.store.view_by_uri(uri)
            if text is None:
                raise HTTPException(status_code=404, detail=f"Frame not found: {uri}")
            return {"text": text, "parsed": decode_checkpoint(text).to_dict()}

        @self.app.get("/api/find")
        async def find(q: str | None = Query(default=None)) -> dict[str, Any]:
            if not q:
                raise HTTPException(status_code=400, detail="missing q")
            hits = await self.store.find(q, FIND_RESULT_LIMIT)
            return {"hits": [hit.to_dict() for hit in hits]}

        @self.app.post("/api/run")
        async def start_run(request: RunRequest) -> dict[str, Any]:
            text = await self.store.view_by_uri(checkpoint_uri(request.checkpoint_id))
            if text is None:
                raise HTTPException(status_code=404, detail=f"Checkpoint not found: {request.checkpoint_id}")
            record = decode_checkpoint(text)
            try:
                descriptor = await self.run_manager.start_run(
                    request.checkpoint_id,
                    record.revision_id,
                    command_override=request.command or record.run_command,
                    mode_override=request.mode,
                )
            except CommitReelError as e:
                logger.warning("run request for %s rejected: %s", request.checkpoint_id[:8], e)
                raise HTTPException(status_code=400, detail=str(e)) from e
            return descriptor.to_dict()

        @self.app.get("/api/run/{run_id}/logs")
        def run_logs(run_id: str, since: int = Query(default=0, ge=0)) -> LogPageDTO:
            page = self.run_manager.get_logs(run_id, since)
            return LogPageDTO(lines=page.lines, next=page.next_cursor)

        @self.app.get("/api/run/{run_id}/status")
        def run_status(run_id: str) -> dict[str, Any]:
            return self.run_manager.get_status(run_id)

        @self.app.post("/api/run/{run_id}/stop")
        async def stop_run(run_id: str) -> StopRunDTO:
            return StopRunDTO(stopped=await self.run_manager.stop_run(run_id))

    async def start(self, host: str, port: int) -> None:
        """Start uvicorn in a background task and wait until it is listening.

        Raises:
            RuntimeError: If the server exits during startup
            TimeoutError: If the server does not come up in time
        """
        if self.server_task and not self.server_task.done():
            logger.warning("API server already running; skipping start")
            return

        config = uvicorn.Config(self.app, host=host, port=port, log_level="warning")
        self.server = uvicorn.Server(config)
        server = self.server

        # Avoid uvicorn's signal handling to keep the daemon in control.
        serve_coro = server._serve() if hasattr(server, "_serve") else server.serve()
        self.server_task = asyncio.create_task(serve_coro)

        for _ in range(API_START_RETRIES):
            if server.started:
                break
            if self.server_task.done():
                exc = self.server_task.exception()
                raise RuntimeError("API server exited during startup") from exc
            await asyncio.sleep(0.1)
        if not server.started:
            raise TimeoutError("API server failed to start within timeout")

        logger.info("commitreel UI: http://%s:%d", host, port)

    async def stop(self) -> None:
        """Ask uvicorn to exit and wait for it; cancel if it hangs."""
        server = self.server
        if server:
            if server.started:
                server.should_exit = True
            elif self.server_task:
                self.server_task.cancel()

        if self.server_task:
            try:
                await asyncio.wait_for(self.server_task, timeout=API_STOP_TIMEOUT_S)
            except asyncio.TimeoutError:
                logger.warning("Timed out stopping API server; cancelling task")
                self.server_task.cancel()
                try:
                    await self.server_task
                except asyncio.CancelledError:
                    pass
            except asyncio.CancelledError:
                pass
        self.server = None
        self.server_task = None
        logger.info("API server stopped")
