"""Checkpoint tape store - SQLite persistence for checkpoint and snapshot frames.

The recorder only depends on the `Store` protocol (put / view / timeline /
find / stats). `TapeStore` is the shipped implementation.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

import aiosqlite

from commitreel.constants import CHECKPOINT_LABEL, FILE_SNAPSHOT_LABEL
from commitreel.core.errors import StoreUnavailableError
from commitreel.core.models import JsonDict

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS frames (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uri TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    label TEXT NOT NULL,
    text TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_frames_label ON frames(label);
CREATE INDEX IF NOT EXISTS idx_frames_created ON frames(created_at);
"""

_SNIPPET_CHARS = 200


@dataclass(frozen=True)
class Frame:
    """One stored record: a checkpoint or a file snapshot."""

    uri: str
    title: str
    label: str
    text: str
    metadata: JsonDict = field(default_factory=dict)


@dataclass(frozen=True)
class TimelineEntry:
    uri: str
    title: str
    label: str
    timestamp: float
    metadata: JsonDict = field(default_factory=dict)

    def to_dict(self) -> JsonDict:
        return {
            "uri": self.uri,
            "title": self.title,
            "label": self.label,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class FindHit:
    uri: str
    title: str
    label: str
    snippet: str
    score: int

    def to_dict(self) -> JsonDict:
        return {
            "uri": self.uri,
            "title": self.title,
            "label": self.label,
            "snippet": self.snippet,
            "score": self.score,
        }


class Store(Protocol):
    """Durable append/query contract the recorder writes through."""

    async def put(self, frame: Frame) -> None: ...

    async def view_by_uri(self, uri: str) -> Optional[str]: ...

    async def timeline(self, limit: int = 100, label: Optional[str] = None) -> list[TimelineEntry]: ...

    async def find(self, query: str, k: int = 20) -> list[FindHit]: ...

    async def stats(self) -> JsonDict: ...


class TapeStore:
    """SQLite-backed Store."""

    def __init__(self, db_path: Path | str) -> None:
        """Initialize store.

        Args:
            db_path: Path to SQLite database file (":memory:" for tests)
        """
        self.db_path = str(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Open the database and create tables."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    @property
    def conn(self) -> aiosqlite.Connection:
        """Get database connection, asserting it's initialized.

        Raises:
            RuntimeError: If store not initialized
        """
        if self._db is None:
            raise RuntimeError("Store not initialized - call initialize() first")
        return self._db

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def put(self, frame: Frame) -> None:
        """Insert a frame, replacing any frame already stored at the same uri."""
        await self.conn.execute(
            """
            INSERT INTO frames (uri, title, label, text, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(uri) DO UPDATE SET
                title = excluded.title,
                label = excluded.label,
                text = excluded.text,
                metadata = excluded.metadata
            """,
            (frame.uri, frame.title, frame.label, frame.text, json.dumps(frame.metadata), time.time()),
        )
        await self.conn.commit()

    async def view_by_uri(self, uri: str) -> Optional[str]:
        """Return the stored text at `uri`, or None when nothing is stored there."""
        async with self.conn.execute("SELECT text FROM frames WHERE uri = ?", (uri,)) as cursor:
            row = await cursor.fetchone()
        return str(row["text"]) if row else None

    async def timeline(self, limit: int = 100, label: Optional[str] = None) -> list[TimelineEntry]:
        """Newest-first frame summaries, optionally restricted to one label."""
        sql = "SELECT uri, title, label, metadata, created_at FROM frames"
        params: tuple[object, ...] = ()
        if label:
            sql += " WHERE label = ?"
            params = (label,)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        async with self.conn.execute(sql, (*params, max(0, limit))) as cursor:
            rows = await cursor.fetchall()
        return [
            TimelineEntry(
                uri=row["uri"],
                title=row["title"],
                label=row["label"],
                timestamp=row["created_at"],
                metadata=_load_metadata(row["metadata"]),
            )
            for row in rows
        ]

    async def find(self, query: str, k: int = 20) -> list[FindHit]:
        """Rank frames by how many query terms they contain (case-insensitive).

        Ties go to the most recent frame.
        """
        terms = [term for term in query.lower().split() if term]
        if not terms or k <= 0:
            return []
        async with self.conn.execute(
            "SELECT uri, title, label, text FROM frames ORDER BY created_at DESC, id DESC"
        ) as cursor:
            rows = await cursor.fetchall()

        hits: list[FindHit] = []
        for row in rows:
            haystack = f"{row['title']}\n{row['text']}".lower()
            score = sum(1 for term in terms if term in haystack)
            if score:
                hits.append(
                    FindHit(
                        uri=row["uri"],
                        title=row["title"],
                        label=row["label"],
                        snippet=_snippet(row["text"], terms),
                        score=score,
                    )
                )
        # sorted() is stable, so recency order survives among equal scores
        return sorted(hits, key=lambda hit: hit.score, reverse=True)[:k]

    async def stats(self) -> JsonDict:
        async with self.conn.execute("SELECT label, COUNT(*) AS n FROM frames GROUP BY label") as cursor:
            rows = await cursor.fetchall()
        counts = {row["label"]: row["n"] for row in rows}
        return {
            "path": self.db_path,
            "frames": sum(counts.values()),
            "checkpoints": counts.get(CHECKPOINT_LABEL, 0),
            "fileSnapshots": counts.get(FILE_SNAPSHOT_LABEL, 0),
        }


async def open_store(db_path: Path | str) -> TapeStore:
    """Open (creating if needed) the tape at `db_path`.

    Raises:
        StoreUnavailableError: If the database cannot be opened or initialized
    """
    store = TapeStore(db_path)
    try:
        await store.initialize()
    except (sqlite3.Error, OSError) as exc:
        await store.close()
        raise StoreUnavailableError(f"cannot open tape {db_path}: {exc}") from exc
    logger.info("Opened tape %s", db_path)
    return store


def _load_metadata(raw: str) -> JsonDict:
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def _snippet(text: str, terms: list[str]) -> str:
    lowered = text.lower()
    positions = [pos for pos in (lowered.find(term) for term in terms) if pos >= 0]
    start = max(0, min(positions) - 40) if positions else 0
    return text[start : start + _SNIPPET_CHARS].replace("\n", " ")
