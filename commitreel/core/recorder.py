"""Checkpoint recorder - turns detected changes into stored checkpoints.

Every store interaction of one checkpoint (existence check, record write, file
snapshots) runs as a single StoreWriter job, so concurrent triggers for the
same revision produce exactly one record.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from commitreel.constants import CHECKPOINT_LABEL, DEFAULT_IGNORES, FILE_SNAPSHOT_LABEL
from commitreel.core.checkpoint_codec import encode_checkpoint
from commitreel.core.errors import RevisionSourceError
from commitreel.core.files import list_files, read_file_snapshot, snapshot_from_bytes
from commitreel.core.models import Checkpoint, CheckpointSource, FileSnapshot, RecordResult, file_snapshot_uri
from commitreel.core.revision_source import RevisionSource
from commitreel.core.store import Frame, Store
from commitreel.core.store_writer import StoreWriter

logger = logging.getLogger(__name__)

SnapshotReader = Callable[[str], FileSnapshot]


class CheckpointRecorder:
    """Builds checkpoints and writes them through the serialized store channel."""

    def __init__(
        self,
        cwd: Path | str,
        writer: StoreWriter[Store],
        revisions: Optional[RevisionSource] = None,
        *,
        run_command: Optional[str] = None,
        capture_files: bool = False,
        ignores: Sequence[str] = DEFAULT_IGNORES,
    ) -> None:
        """Initialize recorder.

        Args:
            cwd: Workspace root
            writer: Serialized write channel to the tape
            revisions: Version-control queries (defaults to a RevisionSource on cwd)
            run_command: Command stored on every checkpoint for later runs
            capture_files: Whether to store per-file snapshots
            ignores: Path substrings excluded from manual file checkpoints
        """
        self.cwd = Path(cwd)
        self.writer = writer
        self.revisions = revisions or RevisionSource(self.cwd)
        self.run_command = run_command
        self.capture_files = capture_files
        self.ignores = tuple(ignores)

    async def record_from_revision_change(
        self, previous_revision: Optional[str], new_revision: str, note: Optional[str] = None
    ) -> RecordResult:
        """Record the checkpoint for `new_revision`, unless it is already on the tape.

        Raises:
            RevisionSourceError: If git metadata for the revision cannot be read
        """
        revisions = self.revisions
        message = await asyncio.to_thread(revisions.commit_subject, new_revision)
        timestamp = await asyncio.to_thread(revisions.commit_time, new_revision)
        diff = await asyncio.to_thread(revisions.diff_summary, previous_revision, new_revision)
        files = await asyncio.to_thread(revisions.changed_files, previous_revision, new_revision)

        checkpoint = Checkpoint(
            id=new_revision,
            title=message or f"Checkpoint {new_revision[:7]}",
            source=CheckpointSource.VCS,
            timestamp=timestamp,
            revision_id=new_revision,
            message=message or None,
            diff_summary=diff.summary or None,
            files=tuple(files),
            run_command=self.run_command,
            note=note,
        )

        def read_snapshot(path: str) -> FileSnapshot:
            return snapshot_from_bytes(path, revisions.file_at_revision(new_revision, path))

        return await self._record(checkpoint, read_snapshot, dedupe=True)

    async def record_from_file_batch(self, note: Optional[str], changed_paths: Iterable[str]) -> RecordResult:
        """Record one checkpoint for a batch of changed workspace files."""
        checkpoint_id = str(uuid.uuid4())
        checkpoint = Checkpoint(
            id=checkpoint_id,
            title=note or f"Checkpoint {checkpoint_id[:8]}",
            source=CheckpointSource.FILES,
            timestamp=int(time.time()),
            files=tuple(dict.fromkeys(changed_paths)),
            run_command=self.run_command,
            note=note,
        )

        def read_snapshot(path: str) -> FileSnapshot:
            return read_file_snapshot(self.cwd, path)

        return await self._record(checkpoint, read_snapshot, dedupe=False)

    async def record_manual(self, note: Optional[str] = None) -> RecordResult:
        """Record a checkpoint on demand: HEAD when under git, else every workspace file."""
        note = note or "Manual checkpoint"
        if await asyncio.to_thread(self.revisions.is_under_version_control):
            head = await asyncio.to_thread(self.revisions.current_revision)
            return await self.record_from_revision_change(None, head, note)
        files = await asyncio.to_thread(list_files, self.cwd, self.ignores)
        return await self.record_from_file_batch(note, files)

    async def _record(self, checkpoint: Checkpoint, read_snapshot: SnapshotReader, *, dedupe: bool) -> RecordResult:
        capture = self.capture_files and bool(checkpoint.files)

        async def write(store: Store) -> RecordResult:
            if dedupe and await store.view_by_uri(checkpoint.uri) is not None:
                return RecordResult(id=checkpoint.id, uri=checkpoint.uri, skipped=True)

            await store.put(
                Frame(
                    uri=checkpoint.uri,
                    title=checkpoint.title,
                    label=CHECKPOINT_LABEL,
                    text=encode_checkpoint(checkpoint),
                    metadata=checkpoint.to_metadata(),
                )
            )
            written = 0
            failed: list[str] = []
            if capture:
                for path in checkpoint.files:
                    try:
                        snapshot = await asyncio.to_thread(read_snapshot, path)
                        await store.put(
                            Frame(
                                uri=file_snapshot_uri(path, checkpoint.id),
                                title=f"File: {path}",
                                label=FILE_SNAPSHOT_LABEL,
                                text=snapshot.content,
                                metadata=snapshot.to_metadata(checkpoint.id),
                            )
                        )
                        written += 1
                    except (OSError, RevisionSourceError) as exc:
                        logger.warning("failed to snapshot %s for %s: %s", path, checkpoint.id[:8], exc)
                        failed.append(path)
            return RecordResult(
                id=checkpoint.id,
                uri=checkpoint.uri,
                snapshots_written=written,
                snapshots_failed=tuple(failed),
            )

        result = await self.writer.submit(write, name=f"checkpoint-{checkpoint.id[:8]}")
        if result.skipped:
            logger.info("checkpoint already recorded: %s", checkpoint.id[:7])
        else:
            logger.info("checkpoint recorded: %s %s", checkpoint.id[:7], checkpoint.title)
            if result.snapshots_failed:
                logger.warning(
                    "checkpoint %s missing %d of %d file snapshots",
                    checkpoint.id[:8],
                    len(result.snapshots_failed),
                    len(checkpoint.files),
                )
        return result
