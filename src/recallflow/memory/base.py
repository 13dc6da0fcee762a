"""Base memory interface and shared scoring helpers."""

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from recallflow.memory.types import (
    MemoryEntry,
    MemoryQuery,
    MemorySearchResult,
    MemoryType,
    MemoryTypeStats,
    ensure_utc,
    utcnow,
)


class BaseMemory(ABC):
    """Abstract base class for the memory sub-stores.

    ``MemoryManager`` keeps one instance per ``MemoryType`` in its dispatch
    table and only ever talks to them through this interface.
    """

    memory_type: MemoryType

    @abstractmethod
    async def store(self, entry: MemoryEntry) -> None:
        """Store a memory entry."""
        pass

    @abstractmethod
    async def search(self, query: MemoryQuery) -> list[MemorySearchResult]:
        """Search for memories matching the query."""
        pass

    @abstractmethod
    async def update(self, entry: MemoryEntry) -> None:
        """Replace an existing entry. Raises ``EntryNotFoundError`` if missing."""
        pass

    @abstractmethod
    async def delete(self, entry_id: str) -> None:
        """Delete one entry. Raises ``EntryNotFoundError`` if missing."""
        pass

    @abstractmethod
    async def clear(self, user_id: str, older_than: Optional[datetime] = None) -> None:
        """Clear a user's memories, optionally only those created before ``older_than``."""
        pass

    @abstractmethod
    async def get_stats(self, user_id: str) -> MemoryTypeStats:
        """Get statistics for a user."""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Remove expired entries."""
        pass


_id_lock = threading.Lock()
_last_nanos = 0


def generate_entry_id(prefix: str, user_id: str) -> str:
    """Build an ``{prefix}_{user}_{nanoseconds}`` identifier.

    The timestamp part is strictly increasing within the process.
    """
    global _last_nanos
    with _id_lock:
        nanos = max(time.time_ns(), _last_nanos + 1)
        _last_nanos = nanos
    return f"{prefix}_{user_id}_{nanos}"


def token_overlap(text: str, query_text: str) -> float:
    """Share of query words that also appear in ``text``.

    1.0 when the query is empty, 0.0 when either side has no words.
    """
    if not query_text:
        return 1.0

    text_words = set(text.lower().split())
    query_words = query_text.lower().split()
    if not text_words or not query_words:
        return 0.0

    common = sum(1 for word in query_words if word in text_words)
    return common / len(query_words)


def linear_recency(created_at: Optional[datetime], now: Optional[datetime] = None, hours: float = 24.0) -> float:
    """Linear decay from 1.0 at creation to 0.0 after ``hours``."""
    if created_at is None:
        return 1.0
    elapsed = ((now or utcnow()) - ensure_utc(created_at)).total_seconds() / 3600
    return max(0.0, 1.0 - elapsed / hours)


def hyperbolic_recency(created_at: Optional[datetime], decay: float, now: Optional[datetime] = None) -> float:
    """``1 / (1 + decay * days_since_creation)``."""
    return 1.0 / (1.0 + decay * days_since(created_at, now))


def days_since(created_at: Optional[datetime], now: Optional[datetime] = None) -> float:
    if created_at is None:
        return 0.0
    elapsed = ((now or utcnow()) - ensure_utc(created_at)).total_seconds()
    return max(0.0, elapsed / 86400)


def matches_filters(entry: MemoryEntry, query: MemoryQuery, *, check_user: bool = True) -> bool:
    """Apply the query's exact-match and range filters to an entry."""
    if check_user and entry.user_id != query.user_id:
        return False

    if query.session_id and entry.session_id != query.session_id:
        return False

    if query.min_importance > 0 and entry.importance < query.min_importance:
        return False

    if query.time_range is not None and not query.time_range.contains(entry.created_at):
        return False

    return True
