"""Tests for persistent vector stores."""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from recallflow.core.types import utcnow
from recallflow.stores import (
    InMemoryVectorStore,
    PersistentVectorStore,
    SQLiteVectorStore,
    cosine_similarity,
    matches_predicate,
)


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    """Each store implementation in turn."""
    if request.param == "memory":
        backend = InMemoryVectorStore()
    else:
        backend = SQLiteVectorStore(str(tmp_path / "vectors.db"))
    yield backend
    await backend.close()


class TestHelpers:
    """Tests for similarity and predicate helpers."""

    def test_cosine_similarity(self):
        """Test identical, orthogonal and degenerate vectors."""
        assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
        assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0

    def test_matches_predicate(self):
        """Test top-level containment."""
        metadata = {"user_id": "u1", "type": "preference"}

        assert matches_predicate(metadata, None)
        assert matches_predicate(metadata, {"user_id": "u1"})
        assert not matches_predicate(metadata, {"user_id": "u2"})
        assert not matches_predicate(metadata, {"missing": None})


class TestVectorStores:
    """Contract tests run against every store implementation."""

    @pytest.mark.asyncio
    async def test_protocol(self, store):
        """Test that the store satisfies the protocol."""
        assert isinstance(store, PersistentVectorStore)

    @pytest.mark.asyncio
    async def test_insert_and_get(self, store):
        """Test a round trip through the store."""
        created = utcnow() - timedelta(days=2)
        await store.insert("memory", "m1", "hello", [0.1, 0.2], {"user_id": "u1", "n": 1}, created_at=created)

        record = await store.get("memory", "m1")

        assert record.content_text == "hello"
        assert record.embedding == pytest.approx([0.1, 0.2])
        assert record.metadata == {"user_id": "u1", "n": 1}
        assert abs(record.created_at - created) < timedelta(milliseconds=1)
        assert await store.get("personalization", "m1") is None

    @pytest.mark.asyncio
    async def test_insert_is_upsert(self, store):
        """Test that inserting the same id replaces the record."""
        await store.insert("memory", "m1", "first", None, {})
        await store.insert("memory", "m1", "second", None, {})

        assert (await store.get("memory", "m1")).content_text == "second"
        assert await store.count_by_type("memory") == 1

    @pytest.mark.asyncio
    async def test_search_similar(self, store):
        """Test threshold, ordering, limit and type isolation."""
        await store.insert("memory", "x", "x", [1.0, 0.0], {})
        await store.insert("memory", "xy", "xy", [1.0, 1.0], {})
        await store.insert("memory", "y", "y", [0.0, 1.0], {})
        await store.insert("memory", "none", "no vector", None, {})
        await store.insert("personalization", "px", "x", [1.0, 0.0], {})

        hits = await store.search_similar([1.0, 0.0], "memory", limit=10, min_similarity=0.5)

        assert [record.content_id for record, _ in hits] == ["x", "xy"]
        assert hits[0][1] == pytest.approx(1.0)
        assert hits[1][1] == pytest.approx(0.7071, abs=1e-3)

        top = await store.search_similar([1.0, 0.0], "memory", limit=1, min_similarity=0.0)
        assert [record.content_id for record, _ in top] == ["x"]

    @pytest.mark.asyncio
    async def test_search_text(self, store):
        """Test keyword search on record text."""
        await store.insert("memory", "fr", "The capital of France is Paris", None, {})
        await store.insert("memory", "de", "Berlin is in Germany", None, {})

        records = await store.search_text("memory", "paris", limit=10)

        assert [record.content_id for record in records] == ["fr"]
        assert await store.search_text("memory", "   ", limit=10) == []
        assert await store.search_text("personalization", "paris", limit=10) == []

    @pytest.mark.asyncio
    async def test_list_records(self, store):
        """Test listing with a metadata predicate."""
        await store.insert("memory", "a", "a", None, {"user_id": "u1"})
        await store.insert("memory", "b", "b", None, {"user_id": "u2"})

        assert len(await store.list_records("memory")) == 2
        records = await store.list_records("memory", {"user_id": "u2"})
        assert [record.content_id for record in records] == ["b"]

    @pytest.mark.asyncio
    async def test_delete_by_id(self, store):
        """Test that deleting reports whether anything was removed."""
        await store.insert("memory", "a", "a", None, {})

        assert await store.delete_by_id("memory", "a") is True
        assert await store.delete_by_id("memory", "a") is False

    @pytest.mark.asyncio
    async def test_delete_by_metadata(self, store):
        """Test predicate deletes, scoped and unscoped."""
        await store.insert("memory", "a", "a", None, {"user_id": "u1"})
        await store.insert("memory", "b", "b", None, {"user_id": "u2"})
        await store.insert("personalization", "c", "c", None, {"user_id": "u1"})

        assert await store.delete_by_metadata({"user_id": "u1"}, content_type="memory") == 1
        assert await store.count_by_type("personalization") == 1

        assert await store.delete_by_metadata({"user_id": "u1"}) == 1
        assert await store.count_by_type("personalization") == 0
        assert await store.count_by_type("memory") == 1

    @pytest.mark.asyncio
    async def test_delete_older_than(self, store):
        """Test age-based deletes within one content type."""
        now = utcnow()
        await store.insert("memory", "old", "old", None, {}, created_at=now - timedelta(days=100))
        await store.insert("memory", "new", "new", None, {}, created_at=now)
        await store.insert("personalization", "other", "old", None, {}, created_at=now - timedelta(days=100))

        assert await store.delete_older_than("memory", now - timedelta(days=90)) == 1
        assert await store.get("memory", "new") is not None
        assert await store.get("personalization", "other") is not None


class TestSQLiteVectorStore:
    """Tests specific to the SQLite store."""

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        """Test that records persist across connections."""
        path = str(tmp_path / "nested" / "recall.db")

        async with SQLiteVectorStore(path) as first:
            await first.insert("memory", "m1", "persisted", [0.5, 0.5], {"user_id": "u1"})

        second = SQLiteVectorStore(path)
        record = await second.get("memory", "m1")
        await second.close()

        assert record.content_text == "persisted"
        assert record.metadata["user_id"] == "u1"

    @pytest.mark.asyncio
    async def test_text_search_after_delete(self, sqlite_store):
        """Test that deleted records leave the text index."""
        await sqlite_store.insert("memory", "m1", "kyoto temples", None, {})
        await sqlite_store.delete_by_id("memory", "m1")

        assert await sqlite_store.search_text("memory", "kyoto", limit=5) == []

    @pytest.mark.asyncio
    async def test_like_fallback(self, sqlite_store):
        """Test keyword search without the FTS index."""
        await sqlite_store.insert("memory", "m1", "kyoto temples", None, {})
        sqlite_store._fts = False

        records = await sqlite_store.search_text("memory", "temples", limit=5)

        assert [record.content_id for record in records] == ["m1"]

    @pytest.mark.asyncio
    async def test_concurrent_first_use_opens_one_connection(self):
        """Test that simultaneous first calls share a single connection."""
        store = SQLiteVectorStore(":memory:")

        await asyncio.gather(*(
            store.insert("memory", f"m{i}", f"note {i}", None, {"user_id": "u1"})
            for i in range(5)
        ))
        conn = store._conn

        assert await store.count_by_type("memory") == 5
        assert store._conn is conn
        await store.close()
        assert store._conn is None
