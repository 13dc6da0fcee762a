"""Short-term memory implementation."""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from recallflow.core.errors import EntryNotFoundError
from recallflow.memory.base import (
    BaseMemory,
    generate_entry_id,
    linear_recency,
    matches_filters,
    token_overlap,
)
from recallflow.memory.bounded import BoundedTTLMap, EvictionScope
from recallflow.memory.types import (
    MemoryEntry,
    MemoryQuery,
    MemorySearchResult,
    MemoryType,
    MemoryTypeStats,
    utcnow,
)

logger = structlog.get_logger()


class ShortTermMemory(BaseMemory):
    """Short-term memory: a bounded, per-user, in-process buffer.

    Keeps ephemeral conversation context. Each user owns at most
    ``max_size`` entries; storing more evicts that user's oldest entries
    (by ``created_at``). Entries expire after ``ttl`` unless they carry
    their own ``expires_at``. Nothing is persisted.

    Example:
        ```python
        memory = ShortTermMemory(max_size=20)

        await memory.store(MemoryEntry(
            type=MemoryType.SHORT_TERM,
            user_id="u1",
            content="The user is planning a trip to Kyoto",
            importance=0.6,
        ))

        results = await memory.search(MemoryQuery(user_id="u1", content="kyoto"))
        ```
    """

    memory_type = MemoryType.SHORT_TERM

    def __init__(self, max_size: int = 10, ttl: timedelta = timedelta(hours=24)):
        self.max_size = max_size
        self.ttl = ttl
        self._entries: BoundedTTLMap[MemoryEntry] = BoundedTTLMap(
            max_size=max_size,
            default_ttl=ttl,
            scope=EvictionScope.OWNER,
        )

    async def store(self, entry: MemoryEntry) -> None:
        """Add an entry to the user's buffer."""
        now = utcnow()
        if not entry.id:
            entry.id = generate_entry_id("st", entry.user_id)
        if entry.created_at is None:
            entry.created_at = now
        if entry.expires_at is None:
            entry.expires_at = self._entries.default_expiry(now)

        evicted = self._entries.put(entry.id, entry)

        if evicted:
            logger.debug(
                "Enforced short-term size limit",
                user_id=entry.user_id,
                removed_entries=len(evicted),
            )
        logger.debug(
            "Stored short-term memory entry",
            id=entry.id,
            user_id=entry.user_id,
            session_id=entry.session_id,
        )

    async def search(self, query: MemoryQuery) -> list[MemorySearchResult]:
        """Search the querying user's live entries."""
        now = utcnow()
        results = []

        for entry in self._entries.live_items(query.user_id, now):
            if not self._matches(entry, query):
                continue

            similarity = token_overlap(entry.content, query.content)
            results.append(MemorySearchResult(
                entry=entry,
                similarity=similarity,
                relevance=self._relevance(entry, similarity, now),
            ))

        logger.debug(
            "Short-term memory search completed",
            user_id=query.user_id,
            results=len(results),
        )
        return results

    async def update(self, entry: MemoryEntry) -> None:
        """Replace an existing entry."""
        if not self._entries.replace(entry.id, entry):
            raise EntryNotFoundError(entry.id, self.memory_type)
        logger.debug("Updated short-term memory entry", id=entry.id)

    async def delete(self, entry_id: str) -> None:
        """Remove a specific entry."""
        if self._entries.pop(entry_id) is None:
            raise EntryNotFoundError(entry_id, self.memory_type)
        logger.debug("Deleted short-term memory entry", id=entry_id)

    async def clear(self, user_id: str, older_than: Optional[datetime] = None) -> None:
        """Clear a user's entries, keeping those created after ``older_than``."""
        removed = self._entries.clear_owner(user_id, older_than)
        logger.info(
            "Cleared short-term memories",
            user_id=user_id,
            deleted_count=removed,
        )

    async def get_stats(self, user_id: str) -> MemoryTypeStats:
        """Get statistics about the user's live entries."""
        entries = self._entries.live_items(user_id)
        if not entries:
            return MemoryTypeStats()

        created = [e.created_at for e in entries if e.created_at is not None]
        return MemoryTypeStats(
            entry_count=len(entries),
            total_size=sum(len(e.content) for e in entries),
            oldest_entry=min(created) if created else None,
            newest_entry=max(created) if created else None,
            average_importance=sum(e.importance for e in entries) / len(entries),
        )

    async def cleanup(self) -> None:
        """Remove expired entries for every user."""
        expired = self._entries.sweep_expired()
        logger.info("Short-term memory cleanup completed", expired_entries=expired)

    def count(self, user_id: Optional[str] = None) -> int:
        """Number of stored entries (including not yet swept expired ones)."""
        if user_id is None:
            return len(self._entries)
        return self._entries.owner_count(user_id)

    def get(self, entry_id: str) -> Optional[MemoryEntry]:
        """Get an entry by ID."""
        return self._entries.get(entry_id)

    @staticmethod
    def _matches(entry: MemoryEntry, query: MemoryQuery) -> bool:
        if not matches_filters(entry, query, check_user=False):
            return False
        if query.content and query.content.lower() not in entry.content.lower():
            return False
        return True

    @staticmethod
    def _relevance(entry: MemoryEntry, similarity: float, now: datetime) -> float:
        recency = linear_recency(entry.created_at, now, hours=24.0)
        return similarity * 0.4 + entry.importance * 0.3 + recency * 0.3
