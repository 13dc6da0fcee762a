"""Persistent vector stores."""

from typing import Optional

from recallflow.core.config import StoreBackend, StoreConfig
from recallflow.stores.base import (
    PersistentVectorStore,
    VectorRecord,
    cosine_similarity,
    matches_predicate,
)
from recallflow.stores.memory import InMemoryVectorStore
from recallflow.stores.sqlite import SQLiteVectorStore


def create_vector_store(config: StoreConfig) -> Optional[PersistentVectorStore]:
    """Build the store selected by ``config.backend``; None disables persistence."""
    if config.backend == StoreBackend.SQLITE:
        return SQLiteVectorStore(config.path)
    if config.backend == StoreBackend.MEMORY:
        return InMemoryVectorStore()
    return None


__all__ = [
    "PersistentVectorStore",
    "VectorRecord",
    "InMemoryVectorStore",
    "SQLiteVectorStore",
    "cosine_similarity",
    "matches_predicate",
    "create_vector_store",
]
