"""
Memory system demo
==================

Walks through the four memory tiers behind one MemoryManager.

Runs offline with the hashing embedder and a SQLite file store:
    pip install -e .
    python examples/memory_demo.py
"""

import asyncio
import os
from datetime import timedelta

from recallflow import (
    CleanupScheduler,
    MemoryEntry,
    MemoryManager,
    MemoryQuery,
    MemoryType,
    configure_logging,
)
from recallflow.core.config import (
    EmbeddingConfig,
    EmbeddingProvider,
    RecallConfig,
    StoreConfig,
)
from recallflow.core.types import utcnow
from recallflow.memory.tool import hash_input

DB_PATH = "demo_memory.db"
USER = "demo-user"


def build_config() -> RecallConfig:
    return RecallConfig(
        embedding=EmbeddingConfig(provider=EmbeddingProvider.HASHING, dimensions=256),
        store=StoreConfig(path=DB_PATH),
    )


async def demo_short_term(manager: MemoryManager):
    """Conversation context."""
    print("\n" + "=" * 60)
    print("1. Short-term memory")
    print("=" * 60)

    messages = [
        ("I'm planning a trip to Lisbon in May", 0.7),
        ("Looking for a hotel near Alfama", 0.6),
        ("Budget is around 150 euros a night", 0.8),
    ]
    for content, importance in messages:
        await manager.store(MemoryEntry(
            type=MemoryType.SHORT_TERM,
            user_id=USER,
            session_id="trip",
            content=content,
            importance=importance,
        ))
        print(f"  + {content}")

    results = await manager.retrieve(MemoryQuery(
        user_id=USER,
        content="hotel",
        types=[MemoryType.SHORT_TERM],
    ))
    print("\nSearch 'hotel':")
    for r in results:
        print(f"  [{r.relevance:.3f}] {r.entry.content}")


async def demo_long_term(manager: MemoryManager):
    """Facts kept across sessions."""
    print("\n" + "=" * 60)
    print("2. Long-term memory")
    print("=" * 60)

    facts = [
        ("The user is a Python developer with three years of experience", 0.8),
        ("The user's dog is named Biscuit", 0.5),
        ("The user is allergic to peanuts", 0.9),
    ]
    for content, importance in facts:
        await manager.store(MemoryEntry(
            type=MemoryType.LONG_TERM,
            user_id=USER,
            content=content,
            importance=importance,
        ))
        print(f"  + {content}")

    query = "The user is allergic to peanuts"
    results = await manager.retrieve(MemoryQuery(
        user_id=USER,
        content=query,
        types=[MemoryType.LONG_TERM],
    ))
    print(f"\nSearch '{query}':")
    for r in results:
        print(f"  [sim {r.similarity:.2f} | rel {r.relevance:.3f}] {r.entry.content}")


async def demo_tool_cache(manager: MemoryManager):
    """Reusing tool results."""
    print("\n" + "=" * 60)
    print("3. Tool result cache")
    print("=" * 60)

    tool_input = {"city": "Lisbon", "days": 3}
    await manager.tool.cache_tool_result(
        USER,
        "weather_forecast",
        tool_input,
        output={"forecast": ["sunny", "sunny", "cloudy"]},
        execution_time=0.42,
    )

    # Key order does not change the hash
    input_hash = hash_input({"days": 3, "city": "Lisbon"})
    for _ in range(2):
        hit = await manager.tool.get_cached_result(USER, "weather_forecast", input_hash)
        print(f"  hit #{hit.hit_count}: {hit.output}")

    miss = await manager.tool.get_cached_result(USER, "weather_forecast", hash_input({"city": "Porto"}))
    print(f"  Porto cached: {miss is not None}")


async def demo_personalization(manager: MemoryManager):
    """Preferences and user context."""
    print("\n" + "=" * 60)
    print("4. Personalization")
    print("=" * 60)

    await manager.personalization.store_preference(
        USER, "ui", "theme", "dark", description="prefers dark mode", importance=0.7,
    )
    await manager.personalization.store_preference(USER, "travel", "seat", "aisle")
    await manager.personalization.store_context(
        USER,
        "location",
        "home",
        {"city": "Berlin", "timezone": "Europe/Berlin"},
        expires_at=utcnow() + timedelta(days=30),
    )

    print("\nPreferences:")
    for pref in await manager.personalization.get_user_preferences(USER):
        print(f"  {pref.category}.{pref.key} = {pref.value} ({pref.value_type})")

    print("\nContext:")
    for ctx in await manager.personalization.get_user_context(USER):
        print(f"  {ctx.context_type}/{ctx.context_key}: {ctx.context_value}")


async def demo_stats_and_cleanup(manager: MemoryManager):
    """Statistics and scheduled maintenance."""
    print("\n" + "=" * 60)
    print("5. Statistics and cleanup")
    print("=" * 60)

    stats = await manager.get_stats(USER)
    for memory_type in MemoryType:
        type_stats = stats.for_type(memory_type)
        print(f"  {memory_type.value:16s} entries={type_stats.entry_count:3d} size={type_stats.total_size}")
    print(f"  {'total':16s} entries={stats.total_entries:3d} size={stats.total_size}")

    scheduler = CleanupScheduler(manager, interval_seconds=0.2)
    await scheduler.start()
    await asyncio.sleep(0.5)
    await scheduler.stop()
    print(f"\nScheduled cleanup ran {scheduler.runs} times")

    await manager.clear(USER)
    stats = await manager.get_stats(USER)
    print(f"After clear: {stats.total_entries} entries")


async def main():
    """Run every demo."""
    configure_logging("WARNING", "console")

    print("=" * 60)
    print("RecallFlow memory demo")
    print("=" * 60)

    async with MemoryManager.from_config(build_config()) as manager:
        await demo_short_term(manager)
        await demo_long_term(manager)
        await demo_tool_cache(manager)
        await demo_personalization(manager)
        await demo_stats_and_cleanup(manager)

    print("\n" + "=" * 60)
    print("Done")
    print("=" * 60)

    if os.path.exists(DB_PATH):
        os.remove(DB_PATH)


if __name__ == "__main__":
    asyncio.run(main())
