"""Memory manager: one entry point routing to every memory tier."""

import asyncio
from datetime import datetime
from typing import Any, Iterable, Optional

import structlog

from recallflow.core.config import RecallConfig
from recallflow.core.errors import MemoryBackendError, UnknownMemoryTypeError
from recallflow.embeddings import EmbeddingGenerator, create_embedding_generator
from recallflow.memory.base import BaseMemory
from recallflow.memory.long_term import LongTermMemory
from recallflow.memory.personalization import PersonalizationMemory
from recallflow.memory.short_term import ShortTermMemory
from recallflow.memory.tool import ToolMemory
from recallflow.memory.types import (
    MemoryEntry,
    MemoryQuery,
    MemorySearchResult,
    MemoryStats,
    MemoryType,
    MemoryTypeStats,
    utcnow,
)
from recallflow.stores import PersistentVectorStore, create_vector_store

logger = structlog.get_logger()


class MemoryManager:
    """Routes memory operations to the sub-store registered for each type.

    - ``store`` / ``update`` / ``delete`` go to exactly one sub-store and
      surface its errors.
    - ``retrieve`` fans out, skips sub-stores whose search fails, and
      returns the merged hits by descending relevance.
    - ``clear`` stops at the first failing sub-store.
    - ``get_stats`` and ``cleanup`` never fail as a whole.

    Public calls are serialized by one ``asyncio.Lock``.

    Example:
        ```python
        manager = MemoryManager.from_config(RecallConfig())

        await manager.store(MemoryEntry(
            type=MemoryType.SHORT_TERM,
            user_id="u1",
            content="Asked about flights to Lisbon",
            importance=0.6,
        ))

        results = await manager.retrieve(MemoryQuery(user_id="u1", content="lisbon"))
        stats = await manager.get_stats("u1")

        await manager.close()
        ```
    """

    def __init__(
        self,
        short_term: Optional[ShortTermMemory] = None,
        long_term: Optional[LongTermMemory] = None,
        tool: Optional[ToolMemory] = None,
        personalization: Optional[PersonalizationMemory] = None,
        *,
        store: Optional[PersistentVectorStore] = None,
        embedder: Optional[EmbeddingGenerator] = None,
    ):
        self.store_backend = store
        self.embedder = embedder

        if short_term is None:
            short_term = ShortTermMemory()
        if long_term is None:
            long_term = LongTermMemory(store, embedder)
        if tool is None:
            tool = ToolMemory()
        if personalization is None:
            personalization = PersonalizationMemory(store, embedder)

        self._backends: dict[MemoryType, BaseMemory] = {
            MemoryType.SHORT_TERM: short_term,
            MemoryType.LONG_TERM: long_term,
            MemoryType.TOOL: tool,
            MemoryType.PERSONALIZATION: personalization,
        }
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: Optional[RecallConfig] = None,
        embedder: Optional[EmbeddingGenerator] = None,
        store: Optional[PersistentVectorStore] = None,
    ) -> "MemoryManager":
        """Build all four sub-stores from configuration.

        ``embedder`` and ``store`` override the ones the configuration
        would create.
        """
        config = config or RecallConfig()
        memory = config.memory

        if embedder is None:
            embedder = create_embedding_generator(config.embedding)
        if store is None:
            store = create_vector_store(config.store)

        logger.info(
            "Creating memory manager",
            embedding_provider=config.embedding.provider.value,
            store_backend=config.store.backend.value,
            persistent=store is not None,
        )

        return cls(
            short_term=ShortTermMemory(
                max_size=memory.memory_size,
                ttl=memory.short_term_ttl,
            ),
            long_term=LongTermMemory(
                store,
                embedder,
                similarity_threshold=memory.long_term_similarity,
                limit=memory.long_term_limit,
                retention=memory.long_term_retention,
            ),
            tool=ToolMemory(
                max_size=memory.tool_cache_size,
                max_age=memory.tool_cache_ttl,
            ),
            personalization=PersonalizationMemory(
                store,
                embedder,
                similarity_threshold=memory.personalization_similarity,
                limit=memory.personalization_limit,
                retention=memory.personalization_retention,
            ),
            store=store,
            embedder=embedder,
        )

    def register(self, memory_type: MemoryType, backend: BaseMemory) -> None:
        """Add or replace the sub-store for a memory type."""
        self._backends[MemoryType(memory_type)] = backend
        logger.debug("Registered memory backend", type=MemoryType(memory_type).value)

    def backend(self, memory_type: Any) -> BaseMemory:
        """The sub-store registered for ``memory_type``."""
        try:
            key = MemoryType(memory_type)
        except ValueError:
            raise UnknownMemoryTypeError(memory_type) from None

        backend = self._backends.get(key)
        if backend is None:
            raise UnknownMemoryTypeError(memory_type)
        return backend

    @property
    def short_term(self) -> ShortTermMemory:
        return self._backends[MemoryType.SHORT_TERM]

    @property
    def long_term(self) -> LongTermMemory:
        return self._backends[MemoryType.LONG_TERM]

    @property
    def tool(self) -> ToolMemory:
        return self._backends[MemoryType.TOOL]

    @property
    def personalization(self) -> PersonalizationMemory:
        return self._backends[MemoryType.PERSONALIZATION]

    async def store(self, entry: MemoryEntry) -> None:
        """Stamp and store an entry in the sub-store for its type."""
        async with self._lock:
            backend = self.backend(entry.type)

            now = utcnow()
            if entry.created_at is None:
                entry.created_at = now
            entry.last_access = now

            await backend.store(entry)

        logger.debug(
            "Stored memory entry",
            type=backend.memory_type.value,
            id=entry.id,
            user_id=entry.user_id,
        )

    async def retrieve(self, query: MemoryQuery) -> list[MemorySearchResult]:
        """Search the requested types (all when empty) and rank the hits."""
        async with self._lock:
            results: list[MemorySearchResult] = []

            for memory_type in self._selected(query.types):
                backend = self.backend(memory_type)
                try:
                    results.extend(await backend.search(query))
                except Exception as e:
                    logger.warning(
                        "Failed to search memory type",
                        type=backend.memory_type.value,
                        user_id=query.user_id,
                        error=str(e),
                    )

        results.sort(key=lambda result: result.relevance, reverse=True)
        if query.limit > 0:
            results = results[:query.limit]

        logger.debug(
            "Retrieved memories",
            user_id=query.user_id,
            results=len(results),
        )
        return results

    async def update(self, entry: MemoryEntry) -> None:
        """Record an access on ``entry`` and write it back."""
        async with self._lock:
            backend = self.backend(entry.type)
            entry.last_access = utcnow()
            entry.access_count += 1
            await backend.update(entry)

        logger.debug("Updated memory entry", type=backend.memory_type.value, id=entry.id)

    async def delete(self, entry_id: str, memory_type: MemoryType) -> None:
        async with self._lock:
            backend = self.backend(memory_type)
            await backend.delete(entry_id)

        logger.debug("Deleted memory entry", type=backend.memory_type.value, id=entry_id)

    async def clear(
        self,
        user_id: str,
        types: Optional[Iterable[MemoryType]] = None,
        older_than: Optional[datetime] = None,
    ) -> None:
        """Clear a user's memories in the selected types (all by default).

        Raises:
            MemoryBackendError: A sub-store failed; later types are not cleared.
        """
        async with self._lock:
            for memory_type in self._selected(types):
                backend = self.backend(memory_type)
                try:
                    await backend.clear(user_id, older_than)
                except Exception as e:
                    logger.error(
                        "Failed to clear memory",
                        type=backend.memory_type.value,
                        user_id=user_id,
                        error=str(e),
                    )
                    raise MemoryBackendError(
                        f"failed to clear {backend.memory_type.value} memory"
                    ) from e

        logger.info("Cleared memories", user_id=user_id)

    async def get_stats(self, user_id: str) -> MemoryStats:
        """Per-type and total statistics for a user."""
        stats = MemoryStats(user_id=user_id)

        async with self._lock:
            for memory_type, backend in self._backends.items():
                try:
                    type_stats = await backend.get_stats(user_id)
                except Exception as e:
                    logger.warning(
                        "Failed to get memory stats",
                        type=memory_type.value,
                        user_id=user_id,
                        error=str(e),
                    )
                    type_stats = MemoryTypeStats()

                setattr(stats, memory_type.value, type_stats)
                stats.total_entries += type_stats.entry_count
                stats.total_size += type_stats.total_size

        return stats

    async def cleanup(self) -> None:
        """Run every sub-store's cleanup; failures are logged, not raised."""
        async with self._lock:
            failed = 0
            for memory_type, backend in self._backends.items():
                try:
                    await backend.cleanup()
                except Exception as e:
                    failed += 1
                    logger.error(
                        "Failed to cleanup memory type",
                        type=memory_type.value,
                        error=str(e),
                    )

        logger.info("Memory cleanup completed", failed_types=failed)

    async def close(self) -> None:
        """Release the persistent store and the embedding client."""
        if self.store_backend is not None:
            await self.store_backend.close()

        close_embedder = getattr(self.embedder, "close", None)
        if close_embedder is not None:
            await close_embedder()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _selected(self, types: Optional[Iterable[MemoryType]]) -> list[Any]:
        selected = list(types or [])
        return selected or list(self._backends)
