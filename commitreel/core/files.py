"""Workspace file helpers: content hashing, enumeration, snapshots."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Iterable, Sequence

from commitreel.constants import DEFAULT_IGNORES
from commitreel.core.models import FileSnapshot


def content_hash(data: bytes) -> str:
    """Stable hex digest of a byte sequence."""
    return hashlib.sha1(data).hexdigest()


def should_ignore(rel_path: str, ignores: Iterable[str] = DEFAULT_IGNORES) -> bool:
    """Return True when any ignore entry occurs anywhere in the relative path."""
    return any(entry in rel_path for entry in ignores)


def list_files(root: Path | str, ignores: Sequence[str] = DEFAULT_IGNORES) -> list[str]:
    """List workspace files as sorted POSIX-style relative paths.

    Ignored directories are pruned during the walk so their contents are never
    visited.
    """
    root_path = Path(root)
    results: list[str] = []
    for current, dirs, files in os.walk(root_path):
        rel_dir = Path(current).relative_to(root_path)
        dirs[:] = sorted(d for d in dirs if not should_ignore((rel_dir / d).as_posix(), ignores))
        for name in sorted(files):
            rel_path = (rel_dir / name).as_posix()
            if should_ignore(rel_path, ignores):
                continue
            if (Path(current) / name).is_file():
                results.append(rel_path)
    return results


def snapshot_from_bytes(rel_path: str, data: bytes) -> FileSnapshot:
    """Build a FileSnapshot from raw file bytes."""
    return FileSnapshot(
        path=rel_path,
        content=data.decode("utf-8", errors="replace"),
        content_hash=content_hash(data),
        size=len(data),
    )


def read_file_snapshot(root: Path | str, rel_path: str) -> FileSnapshot:
    """Read the current on-disk content of a workspace file.

    Raises:
        OSError: If the file is missing or unreadable
    """
    data = (Path(root) / rel_path).read_bytes()
    return snapshot_from_bytes(rel_path, data)
