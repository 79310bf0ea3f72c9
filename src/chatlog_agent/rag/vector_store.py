"""Persistent chunk-vector store: SQLite on disk with an in-memory LRU in front."""

from __future__ import annotations

import asyncio
import json
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import aiosqlite
import numpy as np

from chatlog_agent.log import get_logger
from chatlog_agent.storage.models import TimeFilter

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS vectors (
    id          TEXT    PRIMARY KEY,
    dim         INTEGER NOT NULL,
    vector      BLOB    NOT NULL,
    metadata    TEXT    NOT NULL DEFAULT '{}',
    created_at  INTEGER NOT NULL
);
"""


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine of two equal-length vectors; 0.0 when either is all zeros."""
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


def _overlaps(metadata: dict[str, Any], time_filter: TimeFilter) -> bool:
    start, end = metadata.get("start_ts"), metadata.get("end_ts")
    if start is None or end is None:
        return False
    return start <= time_filter.end_ts and end >= time_filter.start_ts


@dataclass
class VectorHit:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorStoreStats:
    enabled: bool
    count: int
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "count": self.count, "sizeBytes": self.size_bytes}


class LRUVectorCache:
    """Bounded id -> vector map evicting the least recently used entry."""

    def __init__(self, max_size: int = 5000):
        self._max_size = max(1, max_size)
        self._items: OrderedDict[str, np.ndarray] = OrderedDict()

    def get(self, key: str) -> Optional[np.ndarray]:
        vector = self._items.get(key)
        if vector is not None:
            self._items.move_to_end(key)
        return vector

    def put(self, key: str, vector: np.ndarray) -> None:
        self._items[key] = vector
        self._items.move_to_end(key)
        while len(self._items) > self._max_size:
            self._items.popitem(last=False)

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)


class SQLiteVectorStore:
    """Chunk vectors keyed by chunk id, stored as float32 blobs.

    :meth:`clear` and writes share one lock, so after ``clear`` returns
    neither the cache nor the table holds an entry written before it.
    """

    def __init__(self, db_path: str | Path, cache_size: int = 5000):
        self._db_path = str(db_path)
        self._cache = LRUVectorCache(cache_size)
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("vector_store_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Vector store not initialized. Call initialize() first.")
        return self._conn

    async def get(self, ids: list[str]) -> dict[str, np.ndarray]:
        """Vectors for the ids that are stored; missing ids are absent from the result."""
        found: dict[str, np.ndarray] = {}
        missing: list[str] = []
        for chunk_id in ids:
            vector = self._cache.get(chunk_id)
            if vector is None:
                missing.append(chunk_id)
            else:
                found[chunk_id] = vector

        if missing:
            placeholders = ",".join("?" for _ in missing)
            cursor = await self.conn.execute(
                f"SELECT id, vector FROM vectors WHERE id IN ({placeholders})", missing
            )
            for chunk_id, blob in await cursor.fetchall():
                vector = np.frombuffer(blob, dtype=np.float32)
                self._cache.put(chunk_id, vector)
                found[chunk_id] = vector
        return found

    async def upsert(self, items: list[tuple[str, np.ndarray, dict[str, Any]]]) -> None:
        if not items:
            return
        now = int(time.time())
        rows = []
        for chunk_id, vector, metadata in items:
            vector = np.asarray(vector, dtype=np.float32)
            rows.append(
                (chunk_id, int(vector.shape[0]), vector.tobytes(), json.dumps(metadata, ensure_ascii=False), now)
            )
        async with self._lock:
            await self.conn.executemany(
                "INSERT INTO vectors (id, dim, vector, metadata, created_at) VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET dim = excluded.dim, vector = excluded.vector, "
                "metadata = excluded.metadata",
                rows,
            )
            await self.conn.commit()
            for chunk_id, vector, _ in items:
                self._cache.put(chunk_id, np.asarray(vector, dtype=np.float32))
        logger.debug("vectors_upserted", count=len(rows))

    async def search(
        self,
        query_vector: np.ndarray,
        k: int = 10,
        filter: Optional[dict[str, Any]] = None,
        time_filter: Optional[TimeFilter] = None,
    ) -> list[VectorHit]:
        """Top-``k`` stored vectors by cosine similarity.

        ``filter`` keeps rows whose metadata equals every given key/value.
        ``time_filter`` keeps rows whose ``start_ts``..``end_ts`` span overlaps it.
        Vectors of a different dimension than the query are skipped.
        """
        query = np.asarray(query_vector, dtype=np.float32)
        dim = int(query.shape[0])
        cursor = await self.conn.execute("SELECT id, vector, metadata FROM vectors WHERE dim = ?", (dim,))
        hits: list[VectorHit] = []
        for chunk_id, blob, metadata_json in await cursor.fetchall():
            metadata = json.loads(metadata_json)
            if filter and any(metadata.get(key) != value for key, value in filter.items()):
                continue
            if time_filter and not _overlaps(metadata, time_filter):
                continue
            vector = np.frombuffer(blob, dtype=np.float32)
            hits.append(VectorHit(id=chunk_id, score=cosine_similarity(query, vector), metadata=metadata))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:k]

    async def clear(self) -> None:
        async with self._lock:
            await self.conn.execute("DELETE FROM vectors")
            await self.conn.commit()
            self._cache.clear()
        logger.info("vector_store_cleared", path=self._db_path)

    async def stats(self) -> VectorStoreStats:
        cursor = await self.conn.execute("SELECT COUNT(*) FROM vectors")
        row = await cursor.fetchone()
        size = 0
        for suffix in ("", "-wal"):
            file = Path(self._db_path + suffix)
            if file.exists():
                size += file.stat().st_size
        return VectorStoreStats(enabled=True, count=int(row[0]), size_bytes=size)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("vector_store_closed", path=self._db_path)
