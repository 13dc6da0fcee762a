"""Personalization memory: user preferences and contextual state."""

import json
from datetime import datetime, timedelta
from typing import Any, Optional

from recallflow.core.errors import MalformedEntryError
from recallflow.embeddings.base import EmbeddingGenerator
from recallflow.memory.base import hyperbolic_recency
from recallflow.memory.durable import DurableMemory
from recallflow.memory.types import (
    ContextPayload,
    MemoryEntry,
    MemoryQuery,
    MemoryType,
    PreferencePayload,
    UserContext,
    UserPreference,
)
from recallflow.stores.base import PersistentVectorStore, VectorRecord

PREFERENCE = "preference"
CONTEXT = "context"

PREFERENCE_PREFIX = "User preference: "
CONTEXT_PREFIX = "User context: "


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, default=str)


class PersonalizationMemory(DurableMemory):
    """Durable store for what a user likes and what state they are in.

    Every entry is either a *preference* (``PreferencePayload``) or a
    *context* (``ContextPayload``); anything else is rejected. The entry's
    content is rewritten to a readable sentence that is embedded for
    semantic recall. Preferences and contexts get stable ids, so storing
    the same key again replaces the earlier value.

    Relevance is ``0.6 * similarity + 0.3 * importance + 0.1 * recency``
    with a slow recency decay (``1 / (1 + 0.01 * days)``).

    Example:
        ```python
        memory = PersonalizationMemory(store=store, embedder=embedder)

        await memory.store_preference("u1", "ui", "theme", "dark", description="Prefers dark mode")
        await memory.store_context("u1", "location", "home", {"city": "Lisbon"}, importance=0.6)

        themes = await memory.get_user_preferences("u1", category="ui")
        ```
    """

    memory_type = MemoryType.PERSONALIZATION
    content_type = "personalization"
    id_prefix = "pers"
    reserved_keys = ("type",)

    def __init__(
        self,
        store: Optional[PersistentVectorStore],
        embedder: Optional[EmbeddingGenerator] = None,
        similarity_threshold: float = 0.6,
        limit: int = 20,
        retention: timedelta = timedelta(days=180),
    ):
        super().__init__(
            store,
            embedder,
            similarity_threshold=similarity_threshold,
            limit=limit,
            retention=retention,
        )

    async def store_preference(
        self,
        user_id: str,
        category: str,
        key: str,
        value: Any,
        description: str = "",
        importance: float = 0.5,
        metadata: Optional[dict[str, Any]] = None,
    ) -> MemoryEntry:
        """Store (or replace) one preference and return the written entry."""
        entry = MemoryEntry(
            type=MemoryType.PERSONALIZATION,
            user_id=user_id,
            payload=PreferencePayload(
                category=category,
                key=key,
                value=value,
                description=description,
            ),
            importance=importance,
            metadata=metadata or {},
        )
        await self.store(entry)
        return entry

    async def store_context(
        self,
        user_id: str,
        context_type: str,
        context_key: str,
        context_value: dict[str, Any],
        importance: float = 0.5,
        expires_at: Optional[datetime] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> MemoryEntry:
        """Store (or replace) one piece of user context and return the written entry."""
        entry = MemoryEntry(
            type=MemoryType.PERSONALIZATION,
            user_id=user_id,
            payload=ContextPayload(
                context_type=context_type,
                context_key=context_key,
                context_value=context_value,
            ),
            importance=importance,
            expires_at=expires_at,
            metadata=metadata or {},
        )
        await self.store(entry)
        return entry

    async def get_user_preferences(self, user_id: str, category: str = "") -> list[UserPreference]:
        """The user's preferences, optionally restricted to one category."""
        results = await self.search(MemoryQuery(user_id=user_id, limit=100))

        preferences = []
        for result in results:
            entry = result.entry
            payload = entry.payload
            if not isinstance(payload, PreferencePayload):
                continue
            if category and payload.category != category:
                continue

            preferences.append(UserPreference(
                id=entry.id,
                user_id=entry.user_id,
                category=payload.category,
                key=payload.key,
                value=payload.value,
                value_type=payload.value_type,
                description=payload.description,
                created_at=entry.created_at,
                metadata=dict(entry.metadata),
            ))

        return preferences

    async def get_user_context(self, user_id: str, context_type: str = "") -> list[UserContext]:
        """The user's context records, optionally restricted to one type."""
        results = await self.search(MemoryQuery(user_id=user_id, limit=50))

        contexts = []
        for result in results:
            entry = result.entry
            payload = entry.payload
            if not isinstance(payload, ContextPayload):
                continue
            if context_type and payload.context_type != context_type:
                continue

            contexts.append(UserContext(
                id=entry.id,
                user_id=entry.user_id,
                context_type=payload.context_type,
                context_key=payload.context_key,
                context_value=dict(payload.context_value),
                importance=entry.importance,
                expires_at=entry.expires_at,
                created_at=entry.created_at,
                metadata=dict(entry.metadata),
            ))

        return contexts

    def _prepare(self, entry: MemoryEntry) -> dict[str, Any]:
        payload = entry.payload

        if isinstance(payload, PreferencePayload):
            if not payload.description and entry.content and not entry.content.startswith(PREFERENCE_PREFIX):
                payload = payload.model_copy(update={"description": entry.content})
                entry.payload = payload
            entry.content = (
                f"{PREFERENCE_PREFIX}{payload.key} = {_render(payload.value)} ({payload.description})"
            )
            return {"type": PREFERENCE}

        if isinstance(payload, ContextPayload):
            entry.content = (
                f"{CONTEXT_PREFIX}{payload.context_key} ({payload.context_type}) = "
                f"{json.dumps(payload.context_value, sort_keys=True, default=str)}"
            )
            return {"type": CONTEXT}

        raise MalformedEntryError(
            f"personalization entry {entry.id or '<new>'} is neither a preference nor a context"
        )

    def _new_id(self, entry: MemoryEntry) -> str:
        payload = entry.payload
        if isinstance(payload, PreferencePayload):
            return f"pref_{entry.user_id}_{payload.category}_{payload.key}"
        return f"ctx_{entry.user_id}_{payload.context_type}_{payload.context_key}"

    async def _list_candidates(self, query: MemoryQuery) -> list[tuple[VectorRecord, float]]:
        records = await self.store_backend.list_records(self.content_type, {"user_id": query.user_id})
        records.sort(key=lambda record: record.created_at, reverse=True)
        return [(record, 1.0) for record in records]

    def _relevance(self, entry: MemoryEntry, similarity: float, now: datetime) -> float:
        recency = hyperbolic_recency(entry.created_at, 0.01, now)
        return similarity * 0.6 + entry.importance * 0.3 + recency * 0.1
