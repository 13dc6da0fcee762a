"""Tool result cache."""

import dataclasses
import hashlib
import json
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

import structlog

from recallflow.core.errors import EntryNotFoundError, MalformedEntryError
from recallflow.memory.base import BaseMemory, linear_recency, token_overlap
from recallflow.memory.bounded import BoundedTTLMap, EvictionScope
from recallflow.memory.types import (
    MemoryEntry,
    MemoryQuery,
    MemorySearchResult,
    MemoryType,
    MemoryTypeStats,
    ToolCacheEntry,
    ToolPayload,
    utcnow,
)

logger = structlog.get_logger()

# Cache entries carry no importance of their own
TOOL_IMPORTANCE = 0.5


def hash_input(input: Mapping[str, Any]) -> str:
    """Deterministic digest of a tool input.

    The input is serialized as canonical JSON (sorted keys, compact
    separators; non-JSON values rendered with ``str``) and hashed with
    SHA-256. The first 32 hex characters (128 bits) are returned.
    """
    canonical = json.dumps(
        input,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]


def cache_key(user_id: str, tool_name: str, input_hash: str) -> str:
    return f"tool_{user_id}_{tool_name}_{input_hash}"


class ToolMemory(BaseMemory):
    """Caches tool execution results per user, tool and input.

    The cache is bounded globally (``max_size`` entries across all users,
    oldest evicted first) and entries expire after ``max_age``.

    Example:
        ```python
        tools = ToolMemory()

        await tools.cache_tool_result(
            "u1", "weather", {"city": "Oslo"}, output={"temp": -3},
            execution_time=0.42, success=True,
        )

        hit = await tools.get_cached_result("u1", "weather", hash_input({"city": "Oslo"}))
        if hit is not None:
            print(hit.output, hit.hit_count)
        ```
    """

    memory_type = MemoryType.TOOL

    def __init__(self, max_size: int = 1000, max_age: timedelta = timedelta(hours=6)):
        self.max_size = max_size
        self.max_age = max_age
        self._cache: BoundedTTLMap[ToolCacheEntry] = BoundedTTLMap(
            max_size=max_size,
            default_ttl=max_age,
            scope=EvictionScope.GLOBAL,
        )

    hash_input = staticmethod(hash_input)

    async def cache_tool_result(
        self,
        user_id: str,
        tool_name: str,
        input: Mapping[str, Any],
        output: Any,
        execution_time: float = 0.0,
        success: bool = True,
        error: str = "",
    ) -> ToolCacheEntry:
        """Cache the result of one tool execution and return the cache entry."""
        now = utcnow()
        input_hash = hash_input(input)
        cache_entry = ToolCacheEntry(
            id=cache_key(user_id, tool_name, input_hash),
            user_id=user_id,
            tool_name=tool_name,
            input_hash=input_hash,
            input=dict(input),
            output=output,
            execution_time=execution_time,
            success=success,
            error=error,
            created_at=now,
            expires_at=now + self.max_age,
        )
        self._put(cache_entry)
        return cache_entry

    async def get_cached_result(
        self,
        user_id: str,
        tool_name: str,
        input_hash: str,
    ) -> Optional[ToolCacheEntry]:
        """Look up a cached result; None on a miss.

        An expired entry is evicted and reported as a miss. A hit bumps
        ``hit_count`` and ``last_hit``; the returned object is a snapshot.
        """
        now = utcnow()

        def record_hit(entry: ToolCacheEntry) -> None:
            entry.hit_count += 1
            entry.last_hit = now

        cached = self._cache.take(cache_key(user_id, tool_name, input_hash), now, record_hit)
        if cached is None:
            logger.debug("Cache miss", tool_name=tool_name, user_id=user_id)
            return None

        logger.debug(
            "Cache hit",
            tool_name=tool_name,
            user_id=user_id,
            hit_count=cached.hit_count,
        )
        return dataclasses.replace(cached)

    async def store(self, entry: MemoryEntry) -> None:
        """Store a memory entry carrying a ``ToolPayload``.

        The entry's id is replaced by the cache key.
        """
        cache_entry = self._from_memory_entry(entry, hit_count=entry.access_count)
        entry.id = cache_entry.id
        self._put(cache_entry)

    async def search(self, query: MemoryQuery) -> list[MemorySearchResult]:
        """Search the user's live cached results."""
        now = utcnow()
        results = []

        for cache_entry in self._cache.live_items(query.user_id, now):
            description = cache_entry.description

            if query.content and query.content.lower() not in description.lower():
                continue
            if query.time_range is not None and not query.time_range.contains(cache_entry.created_at):
                continue

            results.append(MemorySearchResult(
                entry=self._to_memory_entry(cache_entry),
                similarity=token_overlap(description, query.content),
                relevance=self._relevance(cache_entry, now),
            ))

        logger.debug(
            "Tool memory search completed",
            user_id=query.user_id,
            results=len(results),
        )
        return results

    async def update(self, entry: MemoryEntry) -> None:
        """Replace an existing cache entry from a memory entry."""
        if entry.id not in self._cache:
            raise EntryNotFoundError(entry.id, self.memory_type)

        cache_entry = self._from_memory_entry(entry, hit_count=entry.access_count)
        cache_entry.id = entry.id
        cache_entry.last_hit = entry.last_access

        if not self._cache.replace(entry.id, cache_entry):
            raise EntryNotFoundError(entry.id, self.memory_type)
        logger.debug("Updated tool cache entry", id=entry.id)

    async def delete(self, entry_id: str) -> None:
        if self._cache.pop(entry_id) is None:
            raise EntryNotFoundError(entry_id, self.memory_type)
        logger.debug("Deleted tool cache entry", id=entry_id)

    async def clear(self, user_id: str, older_than: Optional[datetime] = None) -> None:
        removed = self._cache.clear_owner(user_id, older_than)
        logger.info("Cleared tool cache", user_id=user_id, deleted_count=removed)

    async def get_stats(self, user_id: str) -> MemoryTypeStats:
        entries = self._cache.live_items(user_id)
        if not entries:
            return MemoryTypeStats()

        created = [e.created_at for e in entries]
        return MemoryTypeStats(
            entry_count=len(entries),
            total_size=sum(len(str(e.output)) for e in entries),
            oldest_entry=min(created),
            newest_entry=max(created),
            average_importance=TOOL_IMPORTANCE,
        )

    async def cleanup(self) -> None:
        expired = self._cache.sweep_expired()
        logger.info("Tool memory cleanup completed", expired_entries=expired)

    def __len__(self) -> int:
        return len(self._cache)

    def _put(self, cache_entry: ToolCacheEntry) -> None:
        evicted = self._cache.put(cache_entry.id, cache_entry)
        if evicted:
            logger.debug("Enforced tool cache size limit", removed_entries=len(evicted))
        logger.debug(
            "Stored tool cache entry",
            cache_key=cache_entry.id,
            tool_name=cache_entry.tool_name,
            user_id=cache_entry.user_id,
        )

    def _from_memory_entry(self, entry: MemoryEntry, hit_count: int = 0) -> ToolCacheEntry:
        payload = entry.payload
        if not isinstance(payload, ToolPayload):
            raise MalformedEntryError(
                f"tool memory entry {entry.id or '<new>'} has no tool payload"
            )

        now = utcnow()
        input_hash = payload.input_hash or hash_input(payload.input)
        return ToolCacheEntry(
            id=cache_key(entry.user_id, payload.tool_name, input_hash),
            user_id=entry.user_id,
            tool_name=payload.tool_name,
            input_hash=input_hash,
            input=dict(payload.input),
            output=payload.output,
            execution_time=payload.execution_time,
            success=payload.success,
            error=payload.error,
            hit_count=hit_count,
            created_at=entry.created_at or now,
            expires_at=entry.expires_at or self._cache.default_expiry(now),
            metadata=dict(entry.metadata),
        )

    @staticmethod
    def _to_memory_entry(cache_entry: ToolCacheEntry) -> MemoryEntry:
        return MemoryEntry(
            id=cache_entry.id,
            type=MemoryType.TOOL,
            user_id=cache_entry.user_id,
            content=cache_entry.description,
            payload=ToolPayload(
                tool_name=cache_entry.tool_name,
                input_hash=cache_entry.input_hash,
                input=cache_entry.input,
                output=cache_entry.output,
                execution_time=cache_entry.execution_time,
                success=cache_entry.success,
                error=cache_entry.error,
            ),
            importance=TOOL_IMPORTANCE,
            access_count=cache_entry.hit_count,
            last_access=cache_entry.last_hit,
            created_at=cache_entry.created_at,
            expires_at=cache_entry.expires_at,
            metadata=dict(cache_entry.metadata),
        )

    @staticmethod
    def _relevance(cache_entry: ToolCacheEntry, now: datetime) -> float:
        hit_score = min(1.0, cache_entry.hit_count / 10.0)
        recency = linear_recency(cache_entry.created_at, now, hours=24.0)
        success_score = 1.0 if cache_entry.success else 0.0
        return hit_score * 0.4 + recency * 0.3 + success_score * 0.3
