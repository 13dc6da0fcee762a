"""
SQLite vector store
===================

Durable ``PersistentVectorStore`` on aiosqlite. Embeddings and metadata are
stored as JSON text; similarity is computed in Python. Keyword search uses
an FTS5 index when the SQLite build provides one and falls back to LIKE.
"""

import asyncio
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

import aiosqlite
import structlog

from recallflow.core.types import Embedding, ensure_utc, utcnow
from recallflow.stores.base import VectorRecord, cosine_similarity, matches_predicate

logger = structlog.get_logger()

_WORD = re.compile(r"\w+")


class SQLiteVectorStore:
    """SQLite-backed vector store.

    Features:
    - One row per (content_type, content_id); inserts are upserts
    - FTS5 keyword search with a LIKE fallback
    - Lazy connection on first use

    Example:
        ```python
        store = SQLiteVectorStore("recallflow.db")

        await store.insert("memory", "lt_u1_1", "Paris is in France", embedding, {"user_id": "u1"})
        hits = await store.search_similar(query_embedding, "memory", limit=5, min_similarity=0.7)

        await store.close()
        ```
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS embeddings (
        content_type TEXT NOT NULL,
        content_id TEXT NOT NULL,
        content_text TEXT NOT NULL,
        embedding TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at REAL NOT NULL,
        PRIMARY KEY (content_type, content_id)
    );

    CREATE INDEX IF NOT EXISTS idx_embeddings_created
    ON embeddings(content_type, created_at);
    """

    FTS_SCHEMA = """
    CREATE VIRTUAL TABLE IF NOT EXISTS embeddings_fts USING fts5(
        content_type UNINDEXED,
        content_id UNINDEXED,
        content_text,
        tokenize='unicode61'
    );
    """

    def __init__(self, path: str = "recallflow.db"):
        self.path = path
        self._conn: Optional[aiosqlite.Connection] = None
        self._fts = False
        self._init_lock = asyncio.Lock()

    async def _ensure_initialized(self) -> aiosqlite.Connection:
        """Open the connection and create the schema on first use."""
        if self._conn is not None:
            return self._conn

        async with self._init_lock:
            if self._conn is None:
                self._conn = await self._open()
        return self._conn

    async def _open(self) -> aiosqlite.Connection:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(self.path)
        conn.row_factory = aiosqlite.Row
        await conn.executescript(self.SCHEMA)

        try:
            await conn.executescript(self.FTS_SCHEMA)
            self._fts = True
        except aiosqlite.OperationalError as e:
            logger.warning("FTS5 unavailable, using LIKE search", path=self.path, error=str(e))
            self._fts = False

        await conn.commit()
        logger.debug("Opened SQLite vector store", path=self.path, fts=self._fts)
        return conn

    async def insert(
        self,
        content_type: str,
        content_id: str,
        content_text: str,
        embedding: Optional[Embedding],
        metadata: dict[str, Any],
        created_at: Optional[datetime] = None,
    ) -> str:
        conn = await self._ensure_initialized()
        created = ensure_utc(created_at) or utcnow()

        await conn.execute("""
            INSERT OR REPLACE INTO embeddings
            (content_type, content_id, content_text, embedding, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            content_type,
            content_id,
            content_text,
            json.dumps(embedding) if embedding else None,
            json.dumps(metadata, default=str),
            created.timestamp(),
        ))

        if self._fts:
            await conn.execute(
                "DELETE FROM embeddings_fts WHERE content_type = ? AND content_id = ?",
                (content_type, content_id),
            )
            await conn.execute(
                "INSERT INTO embeddings_fts (content_type, content_id, content_text) VALUES (?, ?, ?)",
                (content_type, content_id, content_text),
            )

        await conn.commit()
        return content_id

    async def get(self, content_type: str, content_id: str) -> Optional[VectorRecord]:
        conn = await self._ensure_initialized()
        cursor = await conn.execute(
            "SELECT * FROM embeddings WHERE content_type = ? AND content_id = ?",
            (content_type, content_id),
        )
        row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def search_similar(
        self,
        embedding: Embedding,
        content_type: str,
        limit: int,
        min_similarity: float,
    ) -> list[tuple[VectorRecord, float]]:
        conn = await self._ensure_initialized()
        cursor = await conn.execute(
            "SELECT * FROM embeddings WHERE content_type = ? AND embedding IS NOT NULL",
            (content_type,),
        )

        scored = []
        for row in await cursor.fetchall():
            record = self._row_to_record(row)
            similarity = cosine_similarity(embedding, record.embedding or [])
            if similarity >= min_similarity:
                scored.append((record, similarity))

        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit] if limit > 0 else scored

    async def search_text(self, content_type: str, text: str, limit: int) -> list[VectorRecord]:
        """Keyword search; any query word may match."""
        conn = await self._ensure_initialized()
        words = _WORD.findall(text.lower())
        if not words:
            return []

        limit = limit if limit > 0 else -1

        if self._fts:
            match = " OR ".join(f'"{word}"' for word in words)
            try:
                cursor = await conn.execute("""
                    SELECT e.*
                    FROM embeddings e
                    JOIN embeddings_fts f
                      ON e.content_type = f.content_type AND e.content_id = f.content_id
                    WHERE embeddings_fts MATCH ? AND e.content_type = ?
                    ORDER BY bm25(embeddings_fts)
                    LIMIT ?
                """, (match, content_type, limit))
                return [self._row_to_record(row) for row in await cursor.fetchall()]
            except aiosqlite.OperationalError as e:
                logger.warning("FTS query failed, falling back to LIKE", error=str(e))

        return await self._search_like(conn, content_type, words, limit)

    async def _search_like(
        self,
        conn: aiosqlite.Connection,
        content_type: str,
        words: list[str],
        limit: int,
    ) -> list[VectorRecord]:
        clauses = " OR ".join("content_text LIKE ?" for _ in words)
        params: list[Any] = [content_type, *(f"%{word}%" for word in words), limit]

        cursor = await conn.execute(f"""
            SELECT * FROM embeddings
            WHERE content_type = ? AND ({clauses})
            ORDER BY created_at DESC
            LIMIT ?
        """, params)
        return [self._row_to_record(row) for row in await cursor.fetchall()]

    async def list_records(
        self,
        content_type: str,
        predicate: Optional[Mapping[str, Any]] = None,
    ) -> list[VectorRecord]:
        conn = await self._ensure_initialized()
        cursor = await conn.execute(
            "SELECT * FROM embeddings WHERE content_type = ? ORDER BY created_at",
            (content_type,),
        )
        records = [self._row_to_record(row) for row in await cursor.fetchall()]
        return [r for r in records if matches_predicate(r.metadata, predicate)]

    async def delete_by_id(self, content_type: str, content_id: str) -> bool:
        conn = await self._ensure_initialized()
        deleted = await self._delete_keys(conn, [(content_type, content_id)])
        await conn.commit()
        return deleted > 0

    async def delete_by_metadata(
        self,
        predicate: Mapping[str, Any],
        content_type: Optional[str] = None,
    ) -> int:
        conn = await self._ensure_initialized()
        if content_type is None:
            cursor = await conn.execute("SELECT * FROM embeddings")
        else:
            cursor = await conn.execute(
                "SELECT * FROM embeddings WHERE content_type = ?", (content_type,)
            )

        keys = [
            (row["content_type"], row["content_id"])
            for row in await cursor.fetchall()
            if matches_predicate(self._load_json(row["metadata"], {}), predicate)
        ]
        deleted = await self._delete_keys(conn, keys)
        await conn.commit()
        return deleted

    async def delete_older_than(self, content_type: str, timestamp: datetime) -> int:
        conn = await self._ensure_initialized()
        cursor = await conn.execute(
            "SELECT content_type, content_id FROM embeddings WHERE content_type = ? AND created_at < ?",
            (content_type, ensure_utc(timestamp).timestamp()),
        )
        keys = [(row["content_type"], row["content_id"]) for row in await cursor.fetchall()]
        deleted = await self._delete_keys(conn, keys)
        await conn.commit()
        return deleted

    async def count_by_type(self, content_type: str) -> int:
        conn = await self._ensure_initialized()
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM embeddings WHERE content_type = ?", (content_type,)
        )
        row = await cursor.fetchone()
        return row[0]

    async def close(self) -> None:
        async with self._init_lock:
            if self._conn is not None:
                await self._conn.close()
                self._conn = None

    async def __aenter__(self):
        await self._ensure_initialized()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def _delete_keys(self, conn: aiosqlite.Connection, keys: list[tuple[str, str]]) -> int:
        deleted = 0
        for content_type, content_id in keys:
            cursor = await conn.execute(
                "DELETE FROM embeddings WHERE content_type = ? AND content_id = ?",
                (content_type, content_id),
            )
            deleted += cursor.rowcount
            if self._fts:
                await conn.execute(
                    "DELETE FROM embeddings_fts WHERE content_type = ? AND content_id = ?",
                    (content_type, content_id),
                )
        return deleted

    @staticmethod
    def _load_json(raw: Optional[str], default: Any) -> Any:
        if not raw:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Corrupt JSON column in vector store")
            return default

    def _row_to_record(self, row: aiosqlite.Row) -> VectorRecord:
        return VectorRecord(
            content_type=row["content_type"],
            content_id=row["content_id"],
            content_text=row["content_text"],
            embedding=self._load_json(row["embedding"], None),
            metadata=self._load_json(row["metadata"], {}),
            created_at=datetime.fromtimestamp(row["created_at"], tz=timezone.utc),
        )
