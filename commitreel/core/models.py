"""Data models for commitreel checkpoints and run sessions."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional, Union
from urllib.parse import quote

from commitreel.constants import CHECKPOINT_URI_PREFIX, FILE_URI_PREFIX

JsonPrimitive = Union[str, int, float, bool, None]
JsonValue = Union[JsonPrimitive, list["JsonValue"], dict[str, "JsonValue"]]
JsonDict = dict[str, JsonValue]


class CheckpointSource(str, Enum):
    """Where a checkpoint came from."""

    VCS = "vcs"
    FILES = "files"


class RunMode(str, Enum):
    """How a checkpoint's code is run."""

    WEB = "web"
    CLI = "cli"


class RunStatus(str, Enum):
    """RunSession lifecycle states. UNKNOWN is the not-found sentinel."""

    RUNNING = "running"
    EXITED = "exited"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


def checkpoint_uri(checkpoint_id: str) -> str:
    """Store address of a checkpoint record."""
    return f"{CHECKPOINT_URI_PREFIX}{checkpoint_id}"


def file_snapshot_uri(path: str, checkpoint_id: str) -> str:
    """Store address of a file snapshot owned by a checkpoint."""
    return f"{FILE_URI_PREFIX}{quote(path, safe='')}#{checkpoint_id}"


@dataclass(frozen=True)
class Checkpoint:
    """Immutable record of one observed change to the workspace."""

    id: str
    title: str
    source: CheckpointSource
    timestamp: int = field(default_factory=lambda: int(time.time()))
    revision_id: Optional[str] = None
    message: Optional[str] = None
    diff_summary: Optional[str] = None
    files: tuple[str, ...] = ()
    run_command: Optional[str] = None
    note: Optional[str] = None

    @property
    def uri(self) -> str:
        return checkpoint_uri(self.id)

    def to_metadata(self) -> JsonDict:
        """Metadata stored next to the record text."""
        return {
            "checkpoint_id": self.id,
            "source": self.source.value,
            "git_sha": self.revision_id,
            "git_message": self.message,
            "diff_summary": self.diff_summary,
            "files": list(self.files),
            "run_command": self.run_command,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class FileSnapshot:
    """Full content of one file as of a checkpoint."""

    path: str
    content: str
    content_hash: str
    size: int

    def to_metadata(self, checkpoint_id: str) -> JsonDict:
        return {
            "checkpoint_id": checkpoint_id,
            "path": self.path,
            "hash": self.content_hash,
            "size": self.size,
        }


@dataclass(frozen=True)
class RecordResult:
    """Outcome of a recorder call.

    Attributes:
        id: Checkpoint id
        uri: Store address of the checkpoint record
        skipped: True when the checkpoint already existed and nothing was written
        snapshots_written: Number of file snapshots stored
        snapshots_failed: Paths whose snapshot could not be read or written
    """

    id: str
    uri: str
    skipped: bool = False
    snapshots_written: int = 0
    snapshots_failed: tuple[str, ...] = ()


@dataclass
class RunSession:
    """Live or terminated execution of a checkpoint's code.

    Mutated only by RunManager while holding its session lock.
    """

    # pylint: disable=too-many-instance-attributes  # Session record mirrors the status payload
    run_id: str
    checkpoint_id: str
    revision_id: str
    command: str
    mode: RunMode
    status: RunStatus = RunStatus.RUNNING
    port: Optional[int] = None
    preview_url: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    ended_at: Optional[float] = None
    exit_code: Optional[int] = None
    signal: Optional[int] = None

    def snapshot(self) -> JsonDict:
        """Copy of the session safe to hand to pollers."""
        data: JsonDict = asdict(self)
        data["mode"] = self.mode.value
        data["status"] = self.status.value
        return data


UNKNOWN_STATUS: JsonDict = {"status": RunStatus.UNKNOWN.value}


@dataclass(frozen=True)
class RunDescriptor:
    """What start_run hands back to the caller."""

    run_id: str
    command: str
    mode: RunMode
    port: Optional[int] = None
    preview_url: Optional[str] = None

    def to_dict(self) -> JsonDict:
        return {
            "runId": self.run_id,
            "port": self.port,
            "previewUrl": self.preview_url,
            "command": self.command,
            "mode": self.mode.value,
        }


@dataclass(frozen=True)
class LogPage:
    """Lines read from a LogBuffer plus the cursor for the next poll."""

    lines: list[str]
    next_cursor: int
