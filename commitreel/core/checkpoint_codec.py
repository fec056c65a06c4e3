"""Text form of checkpoint records.

A record is a block of `Key: value` lines:

    Checkpoint: Add login form
    ID: 3f2a...
    Source: vcs
    Git: 3f2a...
    Message: Add login form
    Diff: 2 files changed, 10 insertions(+)
    Files: src/app.py, README.md
    Run: python app.py
    Note: Agent checkpoint

Decoding rules: keys are matched exactly after trimming, values are split at the
first colon only, unknown keys and lines without a colon are ignored, a repeated
key keeps its last value, and every field may be absent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from commitreel.core.models import Checkpoint, CheckpointSource

_KEY_TITLE = "Checkpoint"
_KEY_ID = "ID"
_KEY_SOURCE = "Source"
_KEY_REVISION = "Git"
_KEY_MESSAGE = "Message"
_KEY_DIFF = "Diff"
_KEY_FILES = "Files"
_KEY_RUN = "Run"
_KEY_NOTE = "Note"

_FIELD_BY_KEY = {
    _KEY_TITLE: "title",
    _KEY_ID: "id",
    _KEY_SOURCE: "source",
    _KEY_REVISION: "revision_id",
    _KEY_MESSAGE: "message",
    _KEY_DIFF: "diff_summary",
    _KEY_FILES: "files",
    _KEY_RUN: "run_command",
    _KEY_NOTE: "note",
}

# Older tapes wrote the VCS name instead of the source kind.
_SOURCE_ALIASES = {"git": CheckpointSource.VCS}


@dataclass(frozen=True)
class CheckpointRecord:
    """Checkpoint fields recovered from stored text. Every field is optional."""

    # pylint: disable=too-many-instance-attributes  # One attribute per record key
    id: Optional[str] = None
    title: Optional[str] = None
    source: Optional[CheckpointSource] = None
    revision_id: Optional[str] = None
    message: Optional[str] = None
    diff_summary: Optional[str] = None
    files: tuple[str, ...] = ()
    run_command: Optional[str] = None
    note: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "source": self.source.value if self.source else None,
            "gitSha": self.revision_id,
            "message": self.message,
            "diff": self.diff_summary,
            "files": list(self.files),
            "runCommand": self.run_command,
            "note": self.note,
        }


def encode_checkpoint(checkpoint: Checkpoint) -> str:
    """Render a checkpoint as record text. Empty optional fields are omitted."""
    lines = [
        f"{_KEY_TITLE}: {_one_line(checkpoint.title)}",
        f"{_KEY_ID}: {checkpoint.id}",
        f"{_KEY_SOURCE}: {checkpoint.source.value}",
    ]
    optional = (
        (_KEY_REVISION, checkpoint.revision_id),
        (_KEY_MESSAGE, checkpoint.message),
        (_KEY_DIFF, checkpoint.diff_summary),
        (_KEY_FILES, ", ".join(checkpoint.files)),
        (_KEY_RUN, checkpoint.run_command),
        (_KEY_NOTE, checkpoint.note),
    )
    for key, value in optional:
        if value:
            lines.append(f"{key}: {_one_line(value)}")
    return "\n".join(lines)


def decode_checkpoint(text: str) -> CheckpointRecord:
    """Parse record text into a CheckpointRecord."""
    values: dict[str, object] = {}
    for line in text.splitlines():
        key, sep, raw = line.partition(":")
        if not sep:
            continue
        attr = _FIELD_BY_KEY.get(key.strip())
        if attr is None:
            continue
        value = raw.strip()
        if attr == "files":
            values[attr] = tuple(part.strip() for part in value.split(",") if part.strip())
        elif attr == "source":
            values[attr] = _parse_source(value)
        else:
            values[attr] = value or None
    return CheckpointRecord(**values)  # type: ignore[arg-type]


def _parse_source(value: str) -> Optional[CheckpointSource]:
    lowered = value.lower()
    if lowered in _SOURCE_ALIASES:
        return _SOURCE_ALIASES[lowered]
    try:
        return CheckpointSource(lowered)
    except ValueError:
        return None


def _one_line(value: str) -> str:
    # Record lines must not contain newlines or a value would leak into the next key.
    return " ".join(value.splitlines()).strip()
