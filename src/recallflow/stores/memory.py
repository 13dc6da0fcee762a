"""In-process vector store."""

import asyncio
import re
from datetime import datetime
from typing import Any, Mapping, Optional

from recallflow.core.types import Embedding, ensure_utc, utcnow
from recallflow.stores.base import VectorRecord, cosine_similarity, matches_predicate

_WORD = re.compile(r"\w+")


class InMemoryVectorStore:
    """Dict-backed ``PersistentVectorStore`` for tests and single-process use.

    Similarity is brute-force cosine over every record of the requested
    content type. Nothing survives the process.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], VectorRecord] = {}
        self._lock = asyncio.Lock()

    async def insert(
        self,
        content_type: str,
        content_id: str,
        content_text: str,
        embedding: Optional[Embedding],
        metadata: dict[str, Any],
        created_at: Optional[datetime] = None,
    ) -> str:
        async with self._lock:
            self._records[(content_type, content_id)] = VectorRecord(
                content_type=content_type,
                content_id=content_id,
                content_text=content_text,
                embedding=list(embedding) if embedding else None,
                metadata=dict(metadata),
                created_at=ensure_utc(created_at) or utcnow(),
            )
        return content_id

    async def get(self, content_type: str, content_id: str) -> Optional[VectorRecord]:
        return self._records.get((content_type, content_id))

    async def search_similar(
        self,
        embedding: Embedding,
        content_type: str,
        limit: int,
        min_similarity: float,
    ) -> list[tuple[VectorRecord, float]]:
        scored = []
        for record in self._of_type(content_type):
            if not record.embedding:
                continue
            similarity = cosine_similarity(embedding, record.embedding)
            if similarity >= min_similarity:
                scored.append((record, similarity))

        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit] if limit > 0 else scored

    async def search_text(self, content_type: str, text: str, limit: int) -> list[VectorRecord]:
        words = set(_WORD.findall(text.lower()))
        if not words:
            return []

        hits = []
        for record in self._of_type(content_type):
            matched = len(words & set(_WORD.findall(record.content_text.lower())))
            if matched:
                hits.append((matched, record))

        hits.sort(key=lambda pair: pair[0], reverse=True)
        records = [record for _, record in hits]
        return records[:limit] if limit > 0 else records

    async def list_records(
        self,
        content_type: str,
        predicate: Optional[Mapping[str, Any]] = None,
    ) -> list[VectorRecord]:
        return [r for r in self._of_type(content_type) if matches_predicate(r.metadata, predicate)]

    async def delete_by_id(self, content_type: str, content_id: str) -> bool:
        async with self._lock:
            return self._records.pop((content_type, content_id), None) is not None

    async def delete_by_metadata(
        self,
        predicate: Mapping[str, Any],
        content_type: Optional[str] = None,
    ) -> int:
        async with self._lock:
            doomed = [
                key for key, record in self._records.items()
                if (content_type is None or record.content_type == content_type)
                and matches_predicate(record.metadata, predicate)
            ]
            for key in doomed:
                del self._records[key]
        return len(doomed)

    async def delete_older_than(self, content_type: str, timestamp: datetime) -> int:
        cutoff = ensure_utc(timestamp)
        async with self._lock:
            doomed = [
                key for key, record in self._records.items()
                if record.content_type == content_type and record.created_at < cutoff
            ]
            for key in doomed:
                del self._records[key]
        return len(doomed)

    async def count_by_type(self, content_type: str) -> int:
        return len(self._of_type(content_type))

    async def close(self) -> None:
        self._records.clear()

    def _of_type(self, content_type: str) -> list[VectorRecord]:
        return [r for r in self._records.values() if r.content_type == content_type]
