"""
RecallFlow - multi-tier memory for AI assistants.

This package provides:
- Short-term conversation buffers with size bounds and expiry
- Durable semantic memory on a pluggable vector store
- A tool result cache keyed by tool and input
- Per-user preferences and context
- One manager that routes, ranks and maintains all of them
"""

from recallflow.core.config import (
    EmbeddingConfig,
    MemoryConfig,
    RecallConfig,
    Settings,
    StoreConfig,
)
from recallflow.core.errors import (
    EntryNotFoundError,
    MalformedEntryError,
    MemoryBackendError,
    RecallError,
    UnknownMemoryTypeError,
)
from recallflow.core.logging import configure_logging
from recallflow.memory import (
    CleanupScheduler,
    MemoryEntry,
    MemoryManager,
    MemoryQuery,
    MemorySearchResult,
    MemoryStats,
    MemoryType,
)

__version__ = "0.1.0"
__all__ = [
    # Config
    "EmbeddingConfig",
    "MemoryConfig",
    "RecallConfig",
    "Settings",
    "StoreConfig",
    "configure_logging",
    # Errors
    "EntryNotFoundError",
    "MalformedEntryError",
    "MemoryBackendError",
    "RecallError",
    "UnknownMemoryTypeError",
    # Memory
    "CleanupScheduler",
    "MemoryEntry",
    "MemoryManager",
    "MemoryQuery",
    "MemorySearchResult",
    "MemoryStats",
    "MemoryType",
]
