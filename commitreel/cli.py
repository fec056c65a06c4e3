"""commitreel command line: start, checkpoint, web."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from commitreel import __version__
from commitreel.config import CommitReelConfig, load_workspace_config
from commitreel.core.errors import CommitReelError
from commitreel.core.recorder import CheckpointRecorder
from commitreel.core.run_inference import resolve_run_command
from commitreel.core.store import open_store
from commitreel.core.store_writer import StoreWriter
from commitreel.daemon import RecorderDaemon, resolve_tape_path, workspace_ignores
from commitreel.logging_config import setup_logging

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _add_workspace_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--out", metavar="PATH", help="Tape file (default: commitreel.tape.db)")
    parser.add_argument("--cwd", metavar="PATH", help="Workspace directory (default: current directory)")
    parser.add_argument("--run", metavar="CMD", help="Override the run command stored with checkpoints")
    parser.add_argument("--verbose", action="store_true", help="Verbose logs")


def _add_web_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--port", type=int, help="Web port (default: 23404)")
    parser.add_argument("--run-mode", choices=("auto", "web", "cli"), help="Run mode (default: auto)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="commitreel", description="Record a workspace's history as checkpoints")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="Record checkpoints until interrupted")
    _add_workspace_args(start)
    _add_web_args(start)
    start.add_argument("--web", action="store_true", help="Serve the HTTP API while recording")
    start.add_argument("--interval", type=float, metavar="SECONDS", help="Git polling interval (default: 5)")
    start.add_argument("--debounce", type=float, metavar="SECONDS", help="File checkpoint debounce (default: 4)")
    start.add_argument(
        "--capture-files", action="store_true", default=None, help="Store changed file snapshots in the tape"
    )
    start.add_argument(
        "--watch-files", action="store_true", default=None, help="Watch files even when git is available"
    )
    start.add_argument("--no-seed", action="store_true", help="Skip the initial baseline checkpoint")

    checkpoint = sub.add_parser("checkpoint", help="Record one checkpoint now")
    _add_workspace_args(checkpoint)
    checkpoint.add_argument("message", nargs="*", help="Checkpoint title")

    web = sub.add_parser("web", help="Serve the HTTP API for an existing tape")
    _add_workspace_args(web)
    _add_web_args(web)
    return parser


def apply_overrides(config: CommitReelConfig, args: argparse.Namespace) -> CommitReelConfig:
    """Merge command line flags over file settings. Unset flags keep the file value."""
    update: dict[str, object] = {}
    for flag, key in (
        ("out", "tape"),
        ("interval", "poll_interval"),
        ("debounce", "debounce"),
        ("capture_files", "capture_files"),
        ("watch_files", "watch_files"),
        ("run", "run_command"),
        ("run_mode", "run_mode"),
    ):
        value = getattr(args, flag, None)
        if value is not None:
            update[key] = value
    if getattr(args, "no_seed", False):
        update["seed"] = False
    port = getattr(args, "port", None)
    if port is not None:
        update["web"] = config.web.model_copy(update={"port": port})
    return CommitReelConfig.model_validate({**config.model_dump(), **update})


async def record_checkpoint(cwd: Path, config: CommitReelConfig, message: Optional[str]) -> None:
    """Record one manual checkpoint with file snapshots and close the tape."""
    tape_path = resolve_tape_path(cwd, config.tape)
    store = await open_store(tape_path)
    writer = StoreWriter(store)
    try:
        run_command = await asyncio.to_thread(resolve_run_command, cwd, config.run_command)
        recorder = CheckpointRecorder(
            cwd,
            writer,
            run_command=run_command,
            capture_files=True,
            ignores=workspace_ignores(cwd, tape_path, config.ignores),
        )
        result = await recorder.record_manual(message)
        print(result.id)
    finally:
        await writer.close()
        await store.close()


async def run_daemon(daemon: RecorderDaemon) -> Optional[int]:
    """Run until SIGINT/SIGTERM, then shut down cleanly.

    Returns:
        The signal that stopped the daemon, if any
    """
    loop = asyncio.get_running_loop()
    received: list[int] = []

    def signal_handler(signum: int) -> None:
        logger.info("Received %s signal...", signal.Signals(signum).name)
        received.append(signum)
        daemon.shutdown_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)
    try:
        await daemon.run_until_stopped()
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)
    return received[0] if received else None


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging("DEBUG" if args.verbose else None)

    cwd = Path(args.cwd or ".").resolve()
    try:
        config = apply_overrides(load_workspace_config(cwd), args)
        if args.command == "checkpoint":
            asyncio.run(record_checkpoint(cwd, config, " ".join(args.message) or None))
        else:
            if args.command == "web":
                daemon = RecorderDaemon(cwd, config, serve_web=True, record=False)
            else:
                daemon = RecorderDaemon(cwd, config, serve_web=args.web)
            if asyncio.run(run_daemon(daemon)) == signal.SIGINT:
                return EXIT_INTERRUPTED
    except KeyboardInterrupt:
        logger.info("Received interrupt signal...")
        return EXIT_INTERRUPTED
    except (CommitReelError, ValidationError) as e:
        logger.error("%s", e)
        return EXIT_FAILURE
    except Exception as e:  # pylint: disable=broad-exception-caught  # Top-level: report and exit non-zero
        logger.error("Unexpected error: %s", e, exc_info=True)
        return EXIT_FAILURE
    return 0


if __name__ == "__main__":
    sys.exit(main())
