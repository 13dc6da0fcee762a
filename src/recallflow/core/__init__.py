"""Core components for RecallFlow."""

from recallflow.core.config import (
    EmbeddingConfig,
    MemoryConfig,
    RecallConfig,
    Settings,
    StoreConfig,
    get_settings,
)
from recallflow.core.errors import (
    EmbeddingError,
    EntryNotFoundError,
    MalformedEntryError,
    MemoryBackendError,
    RecallError,
    UnknownMemoryTypeError,
)
from recallflow.core.logging import configure_logging

__all__ = [
    "EmbeddingConfig",
    "MemoryConfig",
    "RecallConfig",
    "Settings",
    "StoreConfig",
    "get_settings",
    "EmbeddingError",
    "EntryNotFoundError",
    "MalformedEntryError",
    "MemoryBackendError",
    "RecallError",
    "UnknownMemoryTypeError",
    "configure_logging",
]
