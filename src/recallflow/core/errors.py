"""Exception hierarchy for RecallFlow."""

from typing import Any


class RecallError(Exception):
    """Base class for all memory subsystem errors."""


class UnknownMemoryTypeError(RecallError, ValueError):
    """Raised when a memory type has no registered backend."""

    def __init__(self, memory_type: Any):
        self.memory_type = memory_type
        value = getattr(memory_type, "value", memory_type)
        super().__init__(f"unknown memory type: {value}")


class EntryNotFoundError(RecallError, KeyError):
    """Raised by point operations (update/delete) on a missing entry."""

    def __init__(self, entry_id: str, memory_type: Any = None):
        self.entry_id = entry_id
        self.memory_type = memory_type
        super().__init__(entry_id)

    def __str__(self) -> str:
        return f"entry not found: {self.entry_id}"


class MalformedEntryError(RecallError, ValueError):
    """Raised when an entry cannot be interpreted by its target store."""


class MemoryBackendError(RecallError):
    """Raised when a backend fails during a required operation."""


class EmbeddingError(RecallError):
    """Raised when an embedding cannot be generated."""
