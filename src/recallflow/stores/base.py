"""Persistent vector store contract."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from recallflow.core.types import Embedding, utcnow


@dataclass
class VectorRecord:
    """One persisted row: text, optional vector and a JSON metadata object."""

    content_type: str
    content_id: str
    content_text: str
    embedding: Optional[Embedding] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@runtime_checkable
class PersistentVectorStore(Protocol):
    """Durable store partitioned by ``content_type``.

    Implementations must tolerate concurrent calls; the memory sub-stores
    hold no locks of their own around them.
    """

    async def insert(
        self,
        content_type: str,
        content_id: str,
        content_text: str,
        embedding: Optional[Embedding],
        metadata: dict[str, Any],
        created_at: Optional[datetime] = None,
    ) -> str:
        """Insert or replace a record, returning its content id."""
        ...

    async def get(self, content_type: str, content_id: str) -> Optional[VectorRecord]:
        ...

    async def search_similar(
        self,
        embedding: Embedding,
        content_type: str,
        limit: int,
        min_similarity: float,
    ) -> list[tuple[VectorRecord, float]]:
        """Records at or above ``min_similarity``, most similar first."""
        ...

    async def search_text(self, content_type: str, text: str, limit: int) -> list[VectorRecord]:
        """Keyword search; may return nothing if no text index exists."""
        ...

    async def list_records(
        self,
        content_type: str,
        predicate: Optional[Mapping[str, Any]] = None,
    ) -> list[VectorRecord]:
        ...

    async def delete_by_id(self, content_type: str, content_id: str) -> bool:
        """Returns False when nothing was deleted."""
        ...

    async def delete_by_metadata(
        self,
        predicate: Mapping[str, Any],
        content_type: Optional[str] = None,
    ) -> int:
        ...

    async def delete_older_than(self, content_type: str, timestamp: datetime) -> int:
        ...

    async def count_by_type(self, content_type: str) -> int:
        ...

    async def close(self) -> None:
        ...


def cosine_similarity(a: Embedding, b: Embedding) -> float:
    """Cosine similarity clamped to [0, 1]; 0.0 for mismatched or zero vectors."""
    if len(a) != len(b) or not a:
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return max(0.0, min(1.0, dot / (norm_a * norm_b)))


def matches_predicate(metadata: Mapping[str, Any], predicate: Optional[Mapping[str, Any]]) -> bool:
    """JSON containment on the top level: every predicate key must be equal."""
    if not predicate:
        return True
    return all(key in metadata and metadata[key] == value for key, value in predicate.items())
