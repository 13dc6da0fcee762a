"""Tests for the memory manager."""

from datetime import timedelta

import pytest

from recallflow.core.config import (
    EmbeddingConfig,
    EmbeddingProvider,
    MemoryConfig,
    RecallConfig,
    StoreBackend,
    StoreConfig,
)
from recallflow.core.errors import (
    EntryNotFoundError,
    MemoryBackendError,
    UnknownMemoryTypeError,
)
from recallflow.core.types import utcnow
from recallflow.memory.base import BaseMemory
from recallflow.memory.long_term import LongTermMemory
from recallflow.memory.manager import MemoryManager
from recallflow.memory.short_term import ShortTermMemory
from recallflow.memory.tool import hash_input
from recallflow.memory.types import MemoryEntry, MemoryQuery, MemoryType
from recallflow.stores import InMemoryVectorStore


class BrokenMemory(BaseMemory):
    """A sub-store whose every operation fails."""

    memory_type = MemoryType.LONG_TERM

    async def store(self, entry):
        raise RuntimeError("backend down")

    async def search(self, query):
        raise RuntimeError("backend down")

    async def update(self, entry):
        raise RuntimeError("backend down")

    async def delete(self, entry_id):
        raise RuntimeError("backend down")

    async def clear(self, user_id, older_than=None):
        raise RuntimeError("backend down")

    async def get_stats(self, user_id):
        raise RuntimeError("backend down")

    async def cleanup(self):
        raise RuntimeError("backend down")


def tool_entry(user_id="u1", tool_name="weather", input=None, output="sunny"):
    return MemoryEntry(
        type=MemoryType.TOOL,
        user_id=user_id,
        context={"tool_name": tool_name, "input": input or {"city": "Oslo"}, "output": output},
    )


@pytest.fixture
def manager():
    """A manager without a persistent store."""
    return MemoryManager()


class TestRouting:
    """Tests for type dispatch."""

    @pytest.mark.asyncio
    async def test_unknown_type_on_store(self, manager, make_entry):
        """Storing an entry of an unknown type is a routing error."""
        entry = make_entry()
        entry.type = "bogus"

        with pytest.raises(UnknownMemoryTypeError, match="unknown memory type"):
            await manager.store(entry)

    @pytest.mark.asyncio
    async def test_unknown_type_on_delete(self, manager):
        """Test that deletes are routed the same way."""
        with pytest.raises(UnknownMemoryTypeError, match="unknown memory type: bogus"):
            await manager.delete("x", "bogus")

    @pytest.mark.asyncio
    async def test_register_replaces_backend(self, manager, make_entry):
        """Test that registering a type swaps its backend."""
        replacement = ShortTermMemory(max_size=1)
        manager.register(MemoryType.SHORT_TERM, replacement)

        await manager.store(make_entry())
        await manager.store(make_entry())

        assert manager.short_term is replacement
        assert replacement.count("u1") == 1

    @pytest.mark.asyncio
    async def test_store_stamps_timestamps(self, manager):
        """Test that store fills created_at and last_access."""
        entry = MemoryEntry(type=MemoryType.SHORT_TERM, user_id="u1", content="hi")

        await manager.store(entry)

        assert entry.created_at is not None
        assert entry.last_access is not None
        assert manager.short_term.get(entry.id) is entry

    @pytest.mark.asyncio
    async def test_update_records_access(self, manager, make_entry):
        """Test that update bumps the access counter."""
        entry = make_entry()
        await manager.store(entry)
        first_access = entry.last_access

        await manager.update(entry)
        await manager.update(entry)

        assert entry.access_count == 2
        assert entry.last_access >= first_access

    @pytest.mark.asyncio
    async def test_point_errors_surface(self, manager):
        """Test that not-found errors reach the caller."""
        with pytest.raises(EntryNotFoundError):
            await manager.delete("st_u1_missing", MemoryType.SHORT_TERM)


class TestRetrieve:
    """Tests for fan-out search."""

    @pytest.mark.asyncio
    async def test_all_types_when_none_given(self, manager, make_entry):
        """Entries in short-term and tool memory both come back."""
        await manager.store(make_entry(content="planning a trip"))
        await manager.store(tool_entry())

        results = await manager.retrieve(MemoryQuery(user_id="u1", types=[]))

        assert {r.entry.type for r in results} == {MemoryType.SHORT_TERM, MemoryType.TOOL}
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_results_sorted_by_relevance(self, manager, make_entry):
        """Test that merged results never increase in relevance."""
        for importance in (0.1, 0.9, 0.5):
            await manager.store(make_entry(importance=importance))
        await manager.store(make_entry(importance=0.3, age=timedelta(hours=20)))
        await manager.store(tool_entry())
        await manager.store(tool_entry(tool_name="stocks"))

        results = await manager.retrieve(MemoryQuery(user_id="u1"))
        relevances = [r.relevance for r in results]

        assert len(results) == 6
        assert relevances == sorted(relevances, reverse=True)

    @pytest.mark.asyncio
    async def test_limit_and_type_selection(self, manager, make_entry):
        """Test truncation and restricting the searched types."""
        for _ in range(3):
            await manager.store(make_entry())
        await manager.store(tool_entry())

        assert len(await manager.retrieve(MemoryQuery(user_id="u1", limit=2))) == 2
        tool_only = await manager.retrieve(MemoryQuery(user_id="u1", types=[MemoryType.TOOL]))
        assert [r.entry.type for r in tool_only] == [MemoryType.TOOL]

    @pytest.mark.asyncio
    async def test_failing_backend_is_skipped(self, manager, make_entry):
        """Test that one failing sub-store does not fail the search."""
        manager.register(MemoryType.LONG_TERM, BrokenMemory())
        await manager.store(make_entry())

        results = await manager.retrieve(MemoryQuery(user_id="u1"))

        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_expired_entries_excluded(self, manager, make_entry):
        """Test that expired entries never come back from retrieve."""
        await manager.store(make_entry(expires_at=utcnow() - timedelta(seconds=1)))

        assert await manager.retrieve(MemoryQuery(user_id="u1")) == []


class TestMaintenance:
    """Tests for clear, stats and cleanup."""

    @pytest.mark.asyncio
    async def test_clear_all_types(self, manager, make_entry):
        """Test clearing every type for a user."""
        await manager.store(make_entry())
        await manager.store(tool_entry())
        await manager.store(make_entry(user_id="u2"))

        await manager.clear("u1")

        assert await manager.retrieve(MemoryQuery(user_id="u1")) == []
        assert len(await manager.retrieve(MemoryQuery(user_id="u2"))) == 1

    @pytest.mark.asyncio
    async def test_clear_selected_types(self, manager, make_entry):
        """Test that only the selected types are cleared."""
        await manager.store(make_entry())
        await manager.store(tool_entry())

        await manager.clear("u1", types=[MemoryType.TOOL])

        results = await manager.retrieve(MemoryQuery(user_id="u1"))
        assert [r.entry.type for r in results] == [MemoryType.SHORT_TERM]

    @pytest.mark.asyncio
    async def test_clear_aborts_on_failure(self, manager, make_entry):
        """Test that the first failure stops the clear and is wrapped."""
        manager.register(MemoryType.LONG_TERM, BrokenMemory())
        await manager.store(make_entry())
        await manager.store(tool_entry())

        with pytest.raises(MemoryBackendError, match="failed to clear long_term memory"):
            await manager.clear("u1")

        # short-term ran before the failure, tool after it
        assert manager.short_term.count("u1") == 0
        assert len(manager.tool) == 1

    @pytest.mark.asyncio
    async def test_stats_with_failing_backend(self, manager, make_entry):
        """Test that a failing type reports empty stats and totals still add up."""
        manager.register(MemoryType.LONG_TERM, BrokenMemory())
        await manager.store(make_entry(content="abcd"))
        await manager.store(tool_entry(output="xyz"))

        stats = await manager.get_stats("u1")

        assert stats.user_id == "u1"
        assert stats.short_term.entry_count == 1
        assert stats.tool.entry_count == 1
        assert stats.long_term.entry_count == 0
        assert stats.total_entries == 2
        assert stats.total_size == 7
        assert stats.for_type(MemoryType.TOOL) is stats.tool

    @pytest.mark.asyncio
    async def test_cleanup_never_raises(self, manager, make_entry):
        """Test that cleanup logs failures and still sweeps the others."""
        manager.register(MemoryType.LONG_TERM, BrokenMemory())
        await manager.store(make_entry(expires_at=utcnow() - timedelta(seconds=1)))

        await manager.cleanup()

        assert manager.short_term.count() == 0


class TestFromConfig:
    """Tests for building a manager from configuration."""

    @pytest.mark.asyncio
    async def test_end_to_end(self):
        """Test all four tiers on an in-memory store with hashing embeddings."""
        config = RecallConfig(
            memory=MemoryConfig(memory_size=2, tool_cache_size=5),
            embedding=EmbeddingConfig(provider=EmbeddingProvider.HASHING, dimensions=64),
            store=StoreConfig(backend=StoreBackend.MEMORY),
        )

        async with MemoryManager.from_config(config) as manager:
            assert manager.short_term.max_size == 2
            assert manager.tool.max_size == 5

            await manager.store(MemoryEntry(
                type=MemoryType.LONG_TERM,
                user_id="u1",
                content="The user's dog is named Biscuit",
                importance=0.8,
            ))
            await manager.personalization.store_preference("u1", "ui", "theme", "dark")
            await manager.tool.cache_tool_result("u1", "weather", {"city": "Oslo"}, output="sunny")

            results = await manager.retrieve(MemoryQuery(
                user_id="u1",
                content="The user's dog is named Biscuit",
                types=[MemoryType.LONG_TERM],
            ))
            assert len(results) == 1

            hit = await manager.tool.get_cached_result("u1", "weather", hash_input({"city": "Oslo"}))
            assert hit.hit_count == 1

            stats = await manager.get_stats("u1")
            assert stats.long_term.entry_count == 1
            assert stats.personalization.entry_count == 1
            assert stats.tool.entry_count == 1

    @pytest.mark.asyncio
    async def test_explicit_collaborators_win(self, embedder):
        """Test that passed-in store and embedder override the configuration."""
        store = InMemoryVectorStore()
        config = RecallConfig(store=StoreConfig(backend=StoreBackend.NONE))

        manager = MemoryManager.from_config(config, embedder=embedder, store=store)

        assert isinstance(manager.long_term, LongTermMemory)
        assert manager.long_term.store_backend is store
        assert manager.personalization.embedder is embedder
        await manager.close()

    @pytest.mark.asyncio
    async def test_without_store(self):
        """Test that durable tiers degrade when no store is configured."""
        config = RecallConfig(
            embedding=EmbeddingConfig(provider=EmbeddingProvider.NONE),
            store=StoreConfig(backend=StoreBackend.NONE),
        )
        manager = MemoryManager.from_config(config)

        await manager.store(MemoryEntry(type=MemoryType.LONG_TERM, user_id="u1", content="kept nowhere"))

        assert await manager.retrieve(MemoryQuery(user_id="u1", content="kept")) == []
        await manager.close()
