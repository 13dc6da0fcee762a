"""Tests for the tool result cache."""

from datetime import timedelta

import pytest

from recallflow.core.errors import EntryNotFoundError, MalformedEntryError
from recallflow.memory.tool import ToolMemory, cache_key, hash_input
from recallflow.memory.types import MemoryEntry, MemoryQuery, MemoryType, ToolPayload


class TestHashInput:
    """Tests for input hashing."""

    def test_deterministic(self):
        """Test that the same input always hashes the same."""
        assert hash_input({"a": 1}) == hash_input({"a": 1})
        assert len(hash_input({"a": 1})) == 32

    def test_key_order_independent(self):
        """Test that nested key order does not change the digest."""
        first = {"city": "Oslo", "opts": {"units": "metric", "days": 3}}
        second = {"opts": {"days": 3, "units": "metric"}, "city": "Oslo"}

        assert hash_input(first) == hash_input(second)

    def test_distinct_inputs(self):
        """Test that different inputs hash differently."""
        assert hash_input({"a": 1}) != hash_input({"a": 2})

    def test_non_json_values(self):
        """Test that non-JSON values are rendered rather than rejected."""
        digest = hash_input({"when": timedelta(hours=1)})

        assert digest == hash_input({"when": timedelta(hours=1)})


class TestToolCache:
    """Tests for caching and looking up tool results."""

    @pytest.mark.asyncio
    async def test_cache_then_hit(self):
        """A cached result is found and its hit count is one."""
        memory = ToolMemory()
        await memory.cache_tool_result("u1", "t", {"a": 1}, output="ok", execution_time=0.1)

        hit = await memory.get_cached_result("u1", "t", hash_input({"a": 1}))

        assert hit is not None
        assert hit.hit_count == 1
        assert hit.output == "ok"
        assert hit.last_hit is not None

    @pytest.mark.asyncio
    async def test_hit_count_is_monotonic(self):
        """Test that every hit increments the counter by one."""
        memory = ToolMemory()
        await memory.cache_tool_result("u1", "t", {"a": 1}, output="ok")
        input_hash = hash_input({"a": 1})

        counts = []
        last_hits = []
        for _ in range(3):
            hit = await memory.get_cached_result("u1", "t", input_hash)
            counts.append(hit.hit_count)
            last_hits.append(hit.last_hit)

        assert counts == [1, 2, 3]
        assert last_hits == sorted(last_hits)

    @pytest.mark.asyncio
    async def test_returned_entry_is_a_snapshot(self):
        """Test that mutating a returned hit does not touch the cache."""
        memory = ToolMemory()
        await memory.cache_tool_result("u1", "t", {"a": 1}, output="ok")
        input_hash = hash_input({"a": 1})

        hit = await memory.get_cached_result("u1", "t", input_hash)
        hit.hit_count = 100

        again = await memory.get_cached_result("u1", "t", input_hash)
        assert again.hit_count == 2

    @pytest.mark.asyncio
    async def test_miss_for_other_user_or_tool(self):
        """Test that the cache key includes user and tool."""
        memory = ToolMemory()
        await memory.cache_tool_result("u1", "t", {"a": 1}, output="ok")
        input_hash = hash_input({"a": 1})

        assert await memory.get_cached_result("u2", "t", input_hash) is None
        assert await memory.get_cached_result("u1", "other", input_hash) is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_evicted(self):
        """Test that an expired entry is a miss and is removed."""
        memory = ToolMemory(max_age=timedelta(seconds=-1))
        await memory.cache_tool_result("u1", "t", {"a": 1}, output="stale")

        assert len(memory) == 1
        assert await memory.get_cached_result("u1", "t", hash_input({"a": 1})) is None
        assert len(memory) == 0

    @pytest.mark.asyncio
    async def test_global_size_bound(self):
        """Test that the cache bound spans all users and evicts the oldest."""
        memory = ToolMemory(max_size=2)
        await memory.cache_tool_result("alice", "t", {"n": 1}, output=1)
        await memory.cache_tool_result("bob", "t", {"n": 2}, output=2)
        await memory.cache_tool_result("carol", "t", {"n": 3}, output=3)

        assert len(memory) == 2
        assert await memory.get_cached_result("alice", "t", hash_input({"n": 1})) is None
        assert await memory.get_cached_result("carol", "t", hash_input({"n": 3})) is not None


class TestToolMemoryContract:
    """Tests for the generic memory operations on the tool cache."""

    @pytest.mark.asyncio
    async def test_store_memory_entry(self):
        """Test storing a MemoryEntry with a tool payload."""
        memory = ToolMemory()
        entry = MemoryEntry(
            type=MemoryType.TOOL,
            user_id="u1",
            context={"tool_name": "search", "input": {"q": "kyoto"}, "output": ["a", "b"]},
        )

        await memory.store(entry)

        assert entry.id == cache_key("u1", "search", hash_input({"q": "kyoto"}))
        hit = await memory.get_cached_result("u1", "search", hash_input({"q": "kyoto"}))
        assert hit.output == ["a", "b"]

    @pytest.mark.asyncio
    async def test_store_rejects_non_tool_payload(self):
        """Test that entries without a tool payload are malformed."""
        memory = ToolMemory()
        entry = MemoryEntry(type=MemoryType.TOOL, user_id="u1", content="no payload")

        with pytest.raises(MalformedEntryError):
            await memory.store(entry)

    @pytest.mark.asyncio
    async def test_search_by_description(self):
        """Test the description filter and relevance weights."""
        memory = ToolMemory()
        await memory.cache_tool_result("u1", "weather", {"city": "Oslo"}, output=-3)
        await memory.cache_tool_result("u1", "stocks", {"sym": "X"}, output=None, success=False, error="timeout")

        results = await memory.search(MemoryQuery(user_id="u1", content="tool: weather"))

        assert len(results) == 1
        result = results[0]
        assert isinstance(result.entry.payload, ToolPayload)
        assert result.entry.payload.tool_name == "weather"
        # no hits yet: 0.3 recency + 0.3 success
        assert result.relevance == pytest.approx(0.6, abs=1e-3)

        failed = await memory.search(MemoryQuery(user_id="u1", content="success: false"))
        assert [r.entry.payload.tool_name for r in failed] == ["stocks"]

    @pytest.mark.asyncio
    async def test_update_delete_and_clear(self):
        """Test point operations and clearing."""
        memory = ToolMemory()
        cached = await memory.cache_tool_result("u1", "t", {"a": 1}, output="v1")

        entry = (await memory.search(MemoryQuery(user_id="u1")))[0].entry
        entry.payload = entry.payload.model_copy(update={"output": "v2"})
        await memory.update(entry)

        hit = await memory.get_cached_result("u1", "t", cached.input_hash)
        assert hit.output == "v2"

        await memory.delete(cached.id)
        with pytest.raises(EntryNotFoundError):
            await memory.delete(cached.id)

        missing = MemoryEntry(type=MemoryType.TOOL, id="tool_u1_t_nope", context={"tool_name": "t"})
        with pytest.raises(EntryNotFoundError):
            await memory.update(missing)

        await memory.cache_tool_result("u1", "t", {"a": 2}, output="x")
        await memory.clear("u1")
        assert len(memory) == 0

    @pytest.mark.asyncio
    async def test_stats_and_cleanup(self):
        """Test statistics and the expiry sweep."""
        memory = ToolMemory()
        await memory.cache_tool_result("u1", "t", {"a": 1}, output="abc")
        await memory.cache_tool_result("u1", "t", {"a": 2}, output=12345)

        stats = await memory.get_stats("u1")

        assert stats.entry_count == 2
        assert stats.total_size == 8
        assert stats.average_importance == 0.5

        expiring = ToolMemory(max_age=timedelta(seconds=-1))
        await expiring.cache_tool_result("u1", "t", {"a": 1}, output="abc")
        await expiring.cleanup()
        assert len(expiring) == 0
