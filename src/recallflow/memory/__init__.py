"""Multi-tier memory for RecallFlow.

Memory tiers
============

1. Short-term (ShortTermMemory) - bounded per-user buffer, expires after a day
2. Long-term (LongTermMemory) - durable, recalled by semantic similarity
3. Tool (ToolMemory) - cache of tool results keyed by tool and input
4. Personalization (PersonalizationMemory) - preferences and user context

MemoryManager routes every operation to the right tier and merges search
results by relevance.
"""

from recallflow.memory.types import (
    ALL_MEMORY_TYPES,
    ContextPayload,
    FreeformPayload,
    MemoryEntry,
    MemoryQuery,
    MemorySearchResult,
    MemoryStats,
    MemoryType,
    MemoryTypeStats,
    PreferencePayload,
    TimeRange,
    ToolCacheEntry,
    ToolPayload,
    UserContext,
    UserPreference,
)
from recallflow.memory.base import BaseMemory
from recallflow.memory.bounded import BoundedTTLMap, EvictionScope
from recallflow.memory.short_term import ShortTermMemory
from recallflow.memory.tool import ToolMemory, hash_input
from recallflow.memory.durable import DurableMemory
from recallflow.memory.long_term import LongTermMemory
from recallflow.memory.personalization import PersonalizationMemory
from recallflow.memory.manager import MemoryManager
from recallflow.memory.scheduler import CleanupScheduler

__all__ = [
    # Data model
    "ALL_MEMORY_TYPES",
    "ContextPayload",
    "FreeformPayload",
    "MemoryEntry",
    "MemoryQuery",
    "MemorySearchResult",
    "MemoryStats",
    "MemoryType",
    "MemoryTypeStats",
    "PreferencePayload",
    "TimeRange",
    "ToolCacheEntry",
    "ToolPayload",
    "UserContext",
    "UserPreference",
    # Sub-stores
    "BaseMemory",
    "BoundedTTLMap",
    "EvictionScope",
    "ShortTermMemory",
    "ToolMemory",
    "hash_input",
    "DurableMemory",
    "LongTermMemory",
    "PersonalizationMemory",
    # Routing and maintenance
    "MemoryManager",
    "CleanupScheduler",
]
