"""Shared machinery for the sub-stores backed by a persistent vector store."""

from abc import abstractmethod
from datetime import datetime, timedelta
from typing import Any, Optional

import structlog

from recallflow.core.errors import EntryNotFoundError
from recallflow.embeddings.base import EmbeddingGenerator
from recallflow.memory.base import BaseMemory, generate_entry_id, matches_filters, token_overlap
from recallflow.memory.records import entry_to_metadata, record_to_entry
from recallflow.memory.types import (
    Embedding,
    MemoryEntry,
    MemoryQuery,
    MemorySearchResult,
    MemoryTypeStats,
    utcnow,
)
from recallflow.stores.base import PersistentVectorStore, VectorRecord

logger = structlog.get_logger()


class DurableMemory(BaseMemory):
    """A memory tier stored in one ``content_type`` of a vector store.

    Without a store every operation is a logged no-op and ``search`` returns
    nothing. Without an embedder (or when it fails) entries are stored
    without vectors and searches fall back to keyword matching.

    Subclasses define ``content_type``, ``id_prefix`` and ``_relevance``, and
    may reshape entries before they are written in ``_prepare``.
    """

    content_type: str = ""
    id_prefix: str = ""

    # Top-level metadata keys owned by the subclass, not the entry
    reserved_keys: tuple[str, ...] = ()

    def __init__(
        self,
        store: Optional[PersistentVectorStore],
        embedder: Optional[EmbeddingGenerator] = None,
        similarity_threshold: float = 0.7,
        limit: int = 10,
        retention: timedelta = timedelta(days=90),
    ):
        self.store_backend = store
        self.embedder = embedder
        self.similarity_threshold = similarity_threshold
        self.limit = limit
        self.retention = retention

    @property
    def available(self) -> bool:
        return self.store_backend is not None

    async def store(self, entry: MemoryEntry) -> None:
        if self.store_backend is None:
            logger.debug("Persistent store unavailable, skipping store", type=self.memory_type.value)
            return

        if entry.created_at is None:
            entry.created_at = utcnow()

        extra = self._prepare(entry)
        if not entry.id:
            entry.id = self._new_id(entry)

        await self._write(entry, extra)
        logger.debug(
            "Stored durable memory entry",
            type=self.memory_type.value,
            id=entry.id,
            user_id=entry.user_id,
            has_embedding=bool(entry.embedding),
        )

    async def search(self, query: MemoryQuery) -> list[MemorySearchResult]:
        if self.store_backend is None:
            logger.debug("Persistent store unavailable, empty search", type=self.memory_type.value)
            return []

        threshold = query.similarity or self.similarity_threshold
        limit = query.limit or self.limit
        now = utcnow()

        try:
            candidates = await self._candidates(query, threshold)
        except Exception as e:
            logger.warning(
                "Vector store search failed",
                type=self.memory_type.value,
                user_id=query.user_id,
                error=str(e),
            )
            return []

        results = []
        for record, similarity in candidates:
            entry = self._to_entry(record)
            if entry is None:
                continue
            if not matches_filters(entry, query) or entry.is_expired(now):
                continue

            results.append(MemorySearchResult(
                entry=entry,
                similarity=similarity,
                relevance=self._relevance(entry, similarity, now),
            ))
            if len(results) >= limit:
                break

        logger.debug(
            "Durable memory search completed",
            type=self.memory_type.value,
            user_id=query.user_id,
            results=len(results),
        )
        return results

    async def update(self, entry: MemoryEntry) -> None:
        """Rewrite an existing entry; its embedding is recomputed if missing."""
        if self.store_backend is None:
            logger.debug("Persistent store unavailable, skipping update", type=self.memory_type.value)
            return

        existing = await self.store_backend.get(self.content_type, entry.id)
        if existing is None:
            raise EntryNotFoundError(entry.id, self.memory_type)

        if entry.created_at is None:
            entry.created_at = existing.created_at

        extra = self._prepare(entry)
        if self.embedder is not None and entry.content != existing.content_text:
            entry.embedding = None

        await self._write(entry, extra)
        logger.debug("Updated durable memory entry", type=self.memory_type.value, id=entry.id)

    async def delete(self, entry_id: str) -> None:
        if self.store_backend is None:
            logger.debug("Persistent store unavailable, skipping delete", type=self.memory_type.value)
            return

        if not await self.store_backend.delete_by_id(self.content_type, entry_id):
            raise EntryNotFoundError(entry_id, self.memory_type)
        logger.debug("Deleted durable memory entry", type=self.memory_type.value, id=entry_id)

    async def clear(self, user_id: str, older_than: Optional[datetime] = None) -> None:
        """Clear a user's entries.

        With ``older_than`` the backend can only delete by age, so entries
        of every user created before that moment are removed.
        """
        if self.store_backend is None:
            logger.debug("Persistent store unavailable, skipping clear", type=self.memory_type.value)
            return

        if older_than is None:
            deleted = await self.store_backend.delete_by_metadata(
                {"user_id": user_id}, content_type=self.content_type
            )
        else:
            logger.warning(
                "Age-based clear removes entries of all users",
                type=self.memory_type.value,
                user_id=user_id,
                older_than=older_than.isoformat(),
            )
            deleted = await self.store_backend.delete_older_than(self.content_type, older_than)

        logger.info(
            "Cleared durable memories",
            type=self.memory_type.value,
            user_id=user_id,
            deleted_count=deleted,
        )

    async def get_stats(self, user_id: str) -> MemoryTypeStats:
        if self.store_backend is None:
            return MemoryTypeStats()

        records = await self.store_backend.list_records(self.content_type, {"user_id": user_id})
        total = await self.store_backend.count_by_type(self.content_type)

        entries = [entry for entry in map(self._to_entry, records) if entry is not None]
        if not entries:
            return MemoryTypeStats(type_total=total)

        created = [e.created_at for e in entries if e.created_at is not None]
        return MemoryTypeStats(
            entry_count=len(entries),
            total_size=sum(len(e.content) for e in entries),
            oldest_entry=min(created) if created else None,
            newest_entry=max(created) if created else None,
            average_importance=sum(e.importance for e in entries) / len(entries),
            type_total=total,
        )

    async def cleanup(self) -> None:
        """Delete entries past the retention window."""
        if self.store_backend is None:
            return

        cutoff = utcnow() - self.retention
        deleted = await self.store_backend.delete_older_than(self.content_type, cutoff)
        logger.info(
            "Durable memory cleanup completed",
            type=self.memory_type.value,
            deleted_count=deleted,
            cutoff=cutoff.isoformat(),
        )

    # Hooks

    def _prepare(self, entry: MemoryEntry) -> dict[str, Any]:
        """Reshape ``entry`` before writing; returns extra top-level metadata."""
        return {}

    def _new_id(self, entry: MemoryEntry) -> str:
        return generate_entry_id(self.id_prefix, entry.user_id)

    async def _list_candidates(self, query: MemoryQuery) -> list[tuple[VectorRecord, float]]:
        """Candidates for a query with neither content nor embedding."""
        return []

    @abstractmethod
    def _relevance(self, entry: MemoryEntry, similarity: float, now: datetime) -> float:
        pass

    # Internals

    async def _write(self, entry: MemoryEntry, extra: dict[str, Any]) -> None:
        if not entry.embedding and entry.content:
            entry.embedding = await self._embed(entry.content)

        await self.store_backend.insert(
            self.content_type,
            entry.id,
            entry.content,
            entry.embedding,
            entry_to_metadata(entry, extra),
            created_at=entry.created_at,
        )

    async def _candidates(self, query: MemoryQuery, threshold: float) -> list[tuple[VectorRecord, float]]:
        embedding = query.embedding
        if not embedding and query.content:
            embedding = await self._embed(query.content)

        if embedding:
            return await self.store_backend.search_similar(embedding, self.content_type, 0, threshold)

        if query.content:
            logger.debug("Falling back to text search", type=self.memory_type.value)
            records = await self.store_backend.search_text(self.content_type, query.content, 0)
            return [(record, token_overlap(record.content_text, query.content)) for record in records]

        return await self._list_candidates(query)

    async def _embed(self, text: str) -> Optional[Embedding]:
        if self.embedder is None:
            return None
        try:
            return await self.embedder.embed_text(text)
        except Exception as e:
            logger.warning(
                "Failed to generate embedding",
                type=self.memory_type.value,
                error=str(e),
            )
            return None

    def _to_entry(self, record: VectorRecord) -> Optional[MemoryEntry]:
        try:
            return record_to_entry(record, self.memory_type, self.reserved_keys)
        except ValueError as e:
            logger.warning(
                "Failed to parse stored record",
                type=self.memory_type.value,
                id=record.content_id,
                error=str(e),
            )
            return None
