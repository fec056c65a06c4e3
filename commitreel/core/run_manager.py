"""Run sandbox manager - executes a checkpoint's code in an isolated worktree.

One run slot per manager: starting a run stops the previous one first. Process
exit is observed by a background task, so session state is shared between API
callers and that task and is only touched under `_state_lock`.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from commitreel.constants import LOG_BUFFER_CAPACITY, PREVIEW_HOST, STOP_GRACE_S
from commitreel.core.errors import ConfigurationError, RunCommandNotFoundError, SandboxError
from commitreel.core.log_buffer import LogBuffer
from commitreel.core.models import (
    UNKNOWN_STATUS,
    JsonDict,
    LogPage,
    RunDescriptor,
    RunMode,
    RunSession,
    RunStatus,
)
from commitreel.core.ports import allocate_port
from commitreel.core.revision_source import RevisionSource
from commitreel.core.run_inference import detect_run_mode, normalize_run_mode, resolve_run_command, validate_manifest
from commitreel.core.sandbox import SandboxMaterializer

logger = logging.getLogger(__name__)

_STREAM_LIMIT = 1024 * 1024  # Longest single output line kept intact


@dataclass
class _ActiveRun:
    session: RunSession
    process: asyncio.subprocess.Process
    workdir: Path
    exit_task: asyncio.Task[None]


class RunManager:
    """Starts, supervises and tears down checkpoint runs."""

    def __init__(
        self,
        cwd: Path | str,
        *,
        revisions: Optional[RevisionSource] = None,
        run_command: Optional[str] = None,
        run_mode: Optional[str] = None,
        log_capacity: int = LOG_BUFFER_CAPACITY,
        stop_grace: float = STOP_GRACE_S,
    ) -> None:
        """Initialize run manager.

        Args:
            cwd: Workspace root (must be a git checkout for runs to start)
            revisions: Version-control access (defaults to a RevisionSource on cwd)
            run_command: Command used when a run request carries none
            run_mode: Default mode: "auto", "web" or "cli"
            log_capacity: Lines kept per run
            stop_grace: Seconds between SIGTERM and SIGKILL on stop
        """
        self.cwd = Path(cwd)
        self.revisions = revisions or RevisionSource(self.cwd)
        self.sandbox = SandboxMaterializer(self.revisions)
        self.run_command = run_command
        self.run_mode = normalize_run_mode(run_mode)
        self.log_capacity = log_capacity
        self.stop_grace = stop_grace

        self._slot_lock = asyncio.Lock()
        self._state_lock = threading.Lock()
        self._active: Optional[_ActiveRun] = None
        self._sessions: dict[str, RunSession] = {}
        self._logs: dict[str, LogBuffer] = {}

    @property
    def active_run_id(self) -> Optional[str]:
        active = self._active
        return active.session.run_id if active else None

    async def start_run(
        self,
        checkpoint_id: str,
        revision_id: Optional[str],
        command_override: Optional[str] = None,
        mode_override: Optional[str] = None,
    ) -> RunDescriptor:
        """Materialize a checkpoint and run it.

        Raises:
            ConfigurationError: If the workspace is not a git checkout or no revision is given
            SandboxError: If the sandbox cannot be created
            RunCommandNotFoundError: If no command can be inferred
            ManifestError: If a node-style command meets a broken package.json
        """
        async with self._slot_lock:
            if not await asyncio.to_thread(self.revisions.is_under_version_control):
                raise ConfigurationError("git repository not detected")
            if not revision_id:
                raise ConfigurationError("checkpoint does not include a git revision")

            if self._active is not None:
                await self._stop_active()

            workdir = await asyncio.to_thread(self.sandbox.materialize, checkpoint_id, revision_id)
            try:
                command, mode = await asyncio.to_thread(
                    self._resolve_launch, workdir, command_override or self.run_command, mode_override or self.run_mode
                )
                port = allocate_port() if mode is RunMode.WEB else None

                env = dict(os.environ)
                if port is not None:
                    env["PORT"] = str(port)
                process = await asyncio.create_subprocess_shell(
                    command,
                    cwd=str(workdir),
                    env=env,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                    start_new_session=True,
                    limit=_STREAM_LIMIT,
                )
            except Exception:
                await self._discard_sandbox(workdir)
                raise

            session = RunSession(
                run_id=self._new_run_id(checkpoint_id),
                checkpoint_id=checkpoint_id,
                revision_id=revision_id,
                command=command,
                mode=mode,
                port=port,
                preview_url=f"http://{PREVIEW_HOST}:{port}" if port is not None else None,
            )
            buffer = LogBuffer(self.log_capacity)
            with self._state_lock:
                self._sessions[session.run_id] = session
                self._logs[session.run_id] = buffer

            exit_task = asyncio.create_task(
                self._supervise(session, process, buffer), name=f"commitreel-run-{session.run_id[:8]}"
            )
            self._active = _ActiveRun(session=session, process=process, workdir=workdir, exit_task=exit_task)
            logger.info(
                "run started for %s: %s (mode=%s, port=%s, pid=%s)",
                checkpoint_id[:8],
                command,
                mode.value,
                port,
                process.pid,
            )
            return RunDescriptor(
                run_id=session.run_id,
                command=command,
                mode=mode,
                port=port,
                preview_url=session.preview_url,
            )

    async def stop_run(self, run_id: str) -> bool:
        """Stop the active run.

        A run that already exited on its own still has its slot cleared and its
        sandbox removed, but reports False since there was nothing to stop.

        Returns:
            False if `run_id` is not a running active run (exited, already stopped or unknown)
        """
        async with self._slot_lock:
            if self._active is None or self._active.session.run_id != run_id:
                return False
            with self._state_lock:
                was_running = self._active.session.status is RunStatus.RUNNING
            await self._stop_active()
            return was_running

    def get_logs(self, run_id: str, since: int = 0) -> LogPage:
        """Lines captured at or after cursor `since`. Unknown runs yield an empty page."""
        with self._state_lock:
            buffer = self._logs.get(run_id)
        if buffer is None:
            return LogPage(lines=[], next_cursor=0)
        return buffer.read(since)

    def get_status(self, run_id: str) -> JsonDict:
        """Snapshot of a session, or the "unknown" sentinel."""
        with self._state_lock:
            session = self._sessions.get(run_id)
            return session.snapshot() if session else dict(UNKNOWN_STATUS)

    async def shutdown(self) -> None:
        """Stop whatever is running. Used on daemon exit."""
        async with self._slot_lock:
            if self._active is not None:
                await self._stop_active()

    @staticmethod
    def _resolve_launch(workdir: Path, command: Optional[str], mode: Optional[str]) -> tuple[str, RunMode]:
        """Command and mode for a materialized checkout. Reads manifests, so runs off the loop."""
        resolved = resolve_run_command(workdir, command)
        if not resolved:
            raise RunCommandNotFoundError("no run command detected in checkpoint")
        validate_manifest(workdir, resolved)
        return resolved, detect_run_mode(workdir, resolved, mode)

    def _new_run_id(self, checkpoint_id: str) -> str:
        stamp = int(time.time() * 1000)
        with self._state_lock:
            while f"{checkpoint_id}-{stamp}" in self._sessions:
                stamp += 1
        return f"{checkpoint_id}-{stamp}"

    async def _supervise(self, session: RunSession, process: asyncio.subprocess.Process, buffer: LogBuffer) -> None:
        """Pump output into the buffer, then record how the process ended."""
        if process.stdout is not None:
            await _pump_lines(process.stdout, buffer)
        returncode = await process.wait()

        with self._state_lock:
            if returncode < 0:
                session.signal = -returncode
            else:
                session.exit_code = returncode
            if session.status is RunStatus.RUNNING:
                session.status = RunStatus.EXITED
                session.ended_at = time.time()
        logger.info(
            "run exited for %s (code=%s, signal=%s)", session.checkpoint_id[:8], session.exit_code, session.signal
        )

    async def _stop_active(self) -> None:
        """Terminate the active process, mark it stopped and remove its sandbox.

        Caller holds `_slot_lock`.
        """
        active = self._active
        if active is None:
            return
        session = active.session
        with self._state_lock:
            if session.status is RunStatus.RUNNING:
                session.status = RunStatus.STOPPED
                session.ended_at = time.time()

        if active.process.returncode is None:
            _signal_group(active.process, signal.SIGTERM)
            try:
                await asyncio.wait_for(asyncio.shield(active.exit_task), timeout=self.stop_grace)
            except asyncio.TimeoutError:
                logger.warning("run %s ignored SIGTERM, killing", session.run_id[:8])
                _signal_group(active.process, signal.SIGKILL)
                await active.exit_task
        else:
            await active.exit_task

        await self._discard_sandbox(active.workdir)
        self._active = None
        logger.info("run stopped for %s", session.checkpoint_id[:8])

    async def _discard_sandbox(self, workdir: Path) -> None:
        try:
            await asyncio.to_thread(self.sandbox.remove, workdir)
        except (SandboxError, OSError) as exc:
            logger.warning("failed to remove sandbox %s: %s", workdir, exc)


async def _pump_lines(stream: asyncio.StreamReader, buffer: LogBuffer) -> None:
    while True:
        try:
            line = await stream.readline()
        except ValueError:
            # Line longer than the stream limit; the reader already dropped it.
            buffer.append("[output line truncated]")
            continue
        if not line:
            return
        buffer.append(line.decode("utf-8", errors="replace").rstrip("\r\n"))


def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
    # Runs start in their own session, so the process group id equals the pid.
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass
