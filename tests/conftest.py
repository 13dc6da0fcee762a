"""Test configuration for RecallFlow."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from recallflow.core.errors import EmbeddingError
from recallflow.core.types import utcnow
from recallflow.embeddings import HashingEmbeddingGenerator
from recallflow.memory.types import MemoryEntry, MemoryType
from recallflow.stores import InMemoryVectorStore, SQLiteVectorStore


@pytest.fixture
def embedder():
    """Deterministic offline embedder."""
    return HashingEmbeddingGenerator(dimensions=128)


@pytest.fixture
def failing_embedder():
    """An embedder whose every call fails."""
    embedder = MagicMock()
    embedder.embed_text = AsyncMock(side_effect=EmbeddingError("embedding service down"))
    return embedder


@pytest.fixture
def vector_store():
    """Fresh in-process vector store."""
    return InMemoryVectorStore()


@pytest_asyncio.fixture
async def sqlite_store(tmp_path):
    """SQLite vector store in a temporary directory."""
    store = SQLiteVectorStore(str(tmp_path / "recall.db"))
    yield store
    await store.close()


@pytest.fixture
def failing_store():
    """A vector store whose every call fails."""
    store = MagicMock()
    for name in (
        "insert",
        "get",
        "search_similar",
        "search_text",
        "list_records",
        "delete_by_id",
        "delete_by_metadata",
        "delete_older_than",
        "count_by_type",
    ):
        setattr(store, name, AsyncMock(side_effect=ConnectionError("database unreachable")))
    store.close = AsyncMock()
    return store


@pytest.fixture
def make_entry():
    """Factory for memory entries with sensible defaults."""

    def _make(
        memory_type: MemoryType = MemoryType.SHORT_TERM,
        user_id: str = "u1",
        content: str = "hello world",
        age: timedelta = timedelta(0),
        **kwargs,
    ) -> MemoryEntry:
        return MemoryEntry(
            type=memory_type,
            user_id=user_id,
            content=content,
            created_at=utcnow() - age,
            **kwargs,
        )

    return _make
