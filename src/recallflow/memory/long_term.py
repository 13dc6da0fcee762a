"""Long-term memory implementation."""

from datetime import datetime, timedelta
from typing import Optional

from recallflow.embeddings.base import EmbeddingGenerator
from recallflow.memory.base import days_since, hyperbolic_recency
from recallflow.memory.durable import DurableMemory
from recallflow.memory.types import MemoryEntry, MemoryType
from recallflow.stores.base import PersistentVectorStore


class LongTermMemory(DurableMemory):
    """Long-term memory with semantic search.

    Entries are embedded on the way in and recalled by vector similarity.
    Relevance blends similarity (0.5), importance (0.2), recency (0.2,
    ``1 / (1 + 0.1 * days)``) and access frequency (0.1,
    ``min(1, access_count / (days + 1))``).

    Example:
        ```python
        memory = LongTermMemory(store=SQLiteVectorStore("recall.db"), embedder=embedder)

        await memory.store(MemoryEntry(
            type=MemoryType.LONG_TERM,
            user_id="u1",
            content="The user's daughter is called Mia",
            importance=0.9,
        ))

        results = await memory.search(MemoryQuery(user_id="u1", content="daughter name"))
        ```
    """

    memory_type = MemoryType.LONG_TERM
    content_type = "memory"
    id_prefix = "lt"

    def __init__(
        self,
        store: Optional[PersistentVectorStore],
        embedder: Optional[EmbeddingGenerator] = None,
        similarity_threshold: float = 0.7,
        limit: int = 10,
        retention: timedelta = timedelta(days=90),
    ):
        super().__init__(
            store,
            embedder,
            similarity_threshold=similarity_threshold,
            limit=limit,
            retention=retention,
        )

    def _relevance(self, entry: MemoryEntry, similarity: float, now: datetime) -> float:
        days = days_since(entry.created_at, now)
        recency = hyperbolic_recency(entry.created_at, 0.1, now)
        access_frequency = min(1.0, entry.access_count / (days + 1))

        return (
            similarity * 0.5
            + entry.importance * 0.2
            + recency * 0.2
            + access_frequency * 0.1
        )
