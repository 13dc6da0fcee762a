"""Data model for the memory subsystem.

Every sub-store speaks in terms of ``MemoryEntry`` and ``MemoryQuery``. The
type-specific part of an entry lives in a tagged ``payload`` so that tool
results, preferences and user context are validated fields instead of loose
dictionary lookups; ``metadata`` stays free-form.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from recallflow.core.types import Embedding, ensure_utc, utcnow


class MemoryType(str, Enum):
    """Memory tiers, one sub-store each."""
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"
    TOOL = "tool"
    PERSONALIZATION = "personalization"


ALL_MEMORY_TYPES: tuple[MemoryType, ...] = tuple(MemoryType)


# ============================================================================
# Payload variants
# ============================================================================

def _infer_value_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (dict, list)):
        return "object"
    return "string"


class ToolPayload(BaseModel):
    """A tool invocation and its result."""

    kind: Literal["tool"] = "tool"
    tool_name: str
    input_hash: str = ""
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    execution_time: float = 0.0  # seconds
    success: bool = True
    error: str = ""


class PreferencePayload(BaseModel):
    """A user preference such as ``ui.theme = dark``."""

    kind: Literal["preference"] = "preference"
    category: str
    key: str
    value: Any = None
    value_type: str = ""
    description: str = ""

    @model_validator(mode="after")
    def _default_value_type(self) -> "PreferencePayload":
        if not self.value_type:
            self.value_type = _infer_value_type(self.value)
        return self


class ContextPayload(BaseModel):
    """Contextual state about a user (project, domain, session...)."""

    kind: Literal["context"] = "context"
    context_type: str
    context_key: str
    context_value: dict[str, Any] = Field(default_factory=dict)


class FreeformPayload(BaseModel):
    """Anything without a dedicated shape."""

    kind: Literal["freeform"] = "freeform"
    data: dict[str, Any] = Field(default_factory=dict)


Payload = Annotated[
    Union[ToolPayload, PreferencePayload, ContextPayload, FreeformPayload],
    Field(discriminator="kind"),
]


def payload_from_context(context: Optional[Mapping[str, Any]]) -> Optional[Payload]:
    """Classify a plain context mapping into a payload variant.

    An explicit ``kind`` wins. Otherwise ``tool_name`` marks a tool result,
    ``category`` a preference and ``context_type`` a user context; anything
    else is kept as free-form data.
    """
    if not context:
        return None

    data = dict(context)
    kind = data.get("kind")

    if kind == "tool" or (kind is None and "tool_name" in data):
        return ToolPayload.model_validate(data)

    if kind == "preference" or (kind is None and "category" in data):
        # Older callers put the value type under "type"
        if "value_type" not in data and isinstance(data.get("type"), str):
            data["value_type"] = data.pop("type")
        return PreferencePayload.model_validate(data)

    if kind == "context" or (kind is None and "context_type" in data):
        return ContextPayload.model_validate(data)

    if kind == "freeform":
        return FreeformPayload.model_validate(data)

    data.pop("kind", None)
    return FreeformPayload(data=data)


# ============================================================================
# Entries and queries
# ============================================================================

class MemoryEntry(BaseModel):
    """A single memory record.

    ``context`` may be passed on construction as a plain mapping; it is
    classified into ``payload`` (see ``payload_from_context``).

    Example:
        ```python
        entry = MemoryEntry(
            type=MemoryType.PERSONALIZATION,
            user_id="u1",
            content="Prefers dark mode",
            context={"category": "ui", "key": "theme", "value": "dark"},
            importance=0.7,
        )
        assert isinstance(entry.payload, PreferencePayload)
        ```
    """

    id: str = ""
    type: MemoryType
    user_id: str = ""
    session_id: str = ""
    content: str = ""
    payload: Optional[Payload] = None

    # For vector search
    embedding: Optional[Embedding] = None

    # Scoring
    importance: float = 0.0
    access_count: int = 0

    last_access: Optional[datetime] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _context_to_payload(cls, data: Any) -> Any:
        if isinstance(data, dict) and "context" in data:
            data = dict(data)
            context = data.pop("context")
            if data.get("payload") is None:
                data["payload"] = payload_from_context(context)
        return data

    @field_validator("last_access", "created_at", "expires_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def context(self) -> dict[str, Any]:
        """The payload as a plain mapping, including its ``kind``."""
        if self.payload is None:
            return {}
        return self.payload.model_dump()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > ensure_utc(self.expires_at)

    def age(self, now: Optional[datetime] = None) -> timedelta:
        """Time since creation; zero for entries that were never stamped."""
        if self.created_at is None:
            return timedelta(0)
        return (now or utcnow()) - ensure_utc(self.created_at)


class TimeRange(BaseModel):
    """Inclusive creation-time window."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        moment = ensure_utc(moment)
        return self.start <= moment <= self.end


class MemoryQuery(BaseModel):
    """A search request across one or more memory types."""

    user_id: str = ""
    session_id: str = ""
    types: list[MemoryType] = Field(default_factory=list)
    content: str = ""
    embedding: Optional[Embedding] = None

    # 0 means "use the store's default"
    similarity: float = 0.0
    limit: int = 0

    time_range: Optional[TimeRange] = None
    min_importance: float = 0.0


@dataclass
class MemorySearchResult:
    """A search hit with its raw similarity and blended relevance."""

    entry: MemoryEntry
    similarity: float
    relevance: float


class MemoryTypeStats(BaseModel):
    """Statistics for one memory type and one user."""

    entry_count: int = 0
    total_size: int = 0
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None
    average_importance: float = 0.0

    # Backend-wide record count for durable types (all users)
    type_total: Optional[int] = None


class MemoryStats(BaseModel):
    """Aggregated statistics across all memory types for one user."""

    user_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    total_entries: int = 0
    total_size: int = 0
    short_term: MemoryTypeStats = Field(default_factory=MemoryTypeStats)
    long_term: MemoryTypeStats = Field(default_factory=MemoryTypeStats)
    tool: MemoryTypeStats = Field(default_factory=MemoryTypeStats)
    personalization: MemoryTypeStats = Field(default_factory=MemoryTypeStats)

    def for_type(self, memory_type: MemoryType) -> MemoryTypeStats:
        return getattr(self, MemoryType(memory_type).value)


# ============================================================================
# Store-internal records
# ============================================================================

@dataclass
class ToolCacheEntry:
    """A cached tool execution result."""

    id: str
    user_id: str
    tool_name: str
    input_hash: str
    input: dict[str, Any] = field(default_factory=dict)
    output: Any = None
    execution_time: float = 0.0
    success: bool = True
    error: str = ""
    hit_count: int = 0
    last_hit: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def description(self) -> str:
        return f"Tool: {self.tool_name}, Success: {str(self.success).lower()}"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at


@dataclass
class UserPreference:
    """A user preference reconstructed from personalization memory."""

    id: str
    user_id: str
    category: str
    key: str
    value: Any
    value_type: str
    description: str = ""
    created_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class UserContext:
    """User context reconstructed from personalization memory."""

    id: str
    user_id: str
    context_type: str
    context_key: str
    context_value: dict[str, Any]
    importance: float = 0.0
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)
