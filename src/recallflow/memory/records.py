"""Conversion between ``MemoryEntry`` and persisted vector-store metadata.

Durable sub-stores write one flat JSON object per entry. Core fields use
fixed keys, payload fields are namespaced with ``context_`` and listed under
``context_keys``, and free-form metadata keys are stored as-is, so an entry
can be rebuilt losslessly from the record alone. A free-form key that
happens to start with ``context_`` stays free-form.
"""

from datetime import datetime
from typing import Any, Iterable, Optional

from recallflow.memory.types import (
    MemoryEntry,
    MemoryType,
    ensure_utc,
    payload_from_context,
)
from recallflow.stores.base import VectorRecord

CONTEXT_PREFIX = "context_"
CONTEXT_KEYS = "context_keys"

CORE_KEYS = frozenset({
    "memory_type",
    "entry_id",
    "user_id",
    "session_id",
    "importance",
    "access_count",
    "last_access",
    "created_at",
    "expires_at",
    CONTEXT_KEYS,
})


def format_time(value: Optional[datetime]) -> Optional[str]:
    """RFC 3339 string for a datetime, None passes through."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()


def parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def entry_to_metadata(entry: MemoryEntry, extra: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    """Flatten an entry into the metadata object written to the store.

    Core keys win over free-form metadata keys of the same name, and
    payload keys win over free-form keys they collide with.
    """
    metadata: dict[str, Any] = {
        "memory_type": entry.type.value,
        "entry_id": entry.id,
        "user_id": entry.user_id,
        "session_id": entry.session_id,
        "importance": entry.importance,
        "access_count": entry.access_count,
        "last_access": format_time(entry.last_access),
        "created_at": format_time(entry.created_at),
        "expires_at": format_time(entry.expires_at),
    }
    if extra:
        metadata.update(extra)

    for key, value in entry.metadata.items():
        if key not in CORE_KEYS:
            metadata.setdefault(key, value)

    context = entry.context
    for key, value in context.items():
        metadata[f"{CONTEXT_PREFIX}{key}"] = value
    if context:
        metadata[CONTEXT_KEYS] = list(context)

    return metadata


def record_to_entry(
    record: VectorRecord,
    default_type: MemoryType,
    reserved: Iterable[str] = (),
) -> MemoryEntry:
    """Rebuild an entry from a stored record.

    ``reserved`` names store-specific top-level keys that belong to neither
    the payload nor the free-form metadata.
    """
    source = record.metadata or {}
    skip = CORE_KEYS | set(reserved)
    payload_keys = {f"{CONTEXT_PREFIX}{key}": key for key in source.get(CONTEXT_KEYS) or ()}

    context: dict[str, Any] = {}
    metadata: dict[str, Any] = {}
    for key, value in source.items():
        if key in skip:
            continue
        if key in payload_keys:
            context[payload_keys[key]] = value
        else:
            metadata[key] = value

    try:
        memory_type = MemoryType(source.get("memory_type", default_type))
    except ValueError:
        memory_type = default_type

    return MemoryEntry(
        id=source.get("entry_id") or record.content_id,
        type=memory_type,
        user_id=str(source.get("user_id") or ""),
        session_id=str(source.get("session_id") or ""),
        content=record.content_text,
        payload=payload_from_context(context),
        embedding=record.embedding,
        importance=float(source.get("importance") or 0.0),
        access_count=int(source.get("access_count") or 0),
        last_access=parse_time(source.get("last_access")),
        created_at=parse_time(source.get("created_at")) or record.created_at,
        expires_at=parse_time(source.get("expires_at")),
        metadata=metadata,
    )
