"""Bounded, TTL-aware in-process map shared by the in-process sub-stores."""

import heapq
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Generic, Iterator, Optional, Protocol, TypeVar

from recallflow.memory.types import ensure_utc, utcnow


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Not reentrant: never take ``write()`` while holding ``read()`` on the
    same lock.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class Expiring(Protocol):
    """What the map needs to know about its values."""

    user_id: str
    created_at: Optional[datetime]
    expires_at: Optional[datetime]


V = TypeVar("V", bound=Expiring)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class EvictionScope(str, Enum):
    """Which entries count against ``max_size``."""
    OWNER = "owner"    # each user has their own bound
    GLOBAL = "global"  # one bound for the whole map


def oldest_first(item: Expiring) -> datetime:
    """Eviction key: smallest ``created_at`` goes first."""
    return ensure_utc(item.created_at) or _EPOCH


class BoundedTTLMap(Generic[V]):
    """A keyed map with a per-owner insertion index, size bound and expiry.

    Values are grouped by their ``user_id``. After every ``put`` the map
    evicts entries chosen by ``eviction_key`` (oldest ``created_at`` by
    default) until the owner's (or the whole map's) size is back at
    ``max_size``. Expired values stay in place until they are swept or hit
    by ``take``; readers filter them out.

    All public methods are thread-safe; no callback runs while the lock is
    held except the ``touch`` hook of ``take``.

    Example:
        ```python
        buffer = BoundedTTLMap(max_size=3, default_ttl=timedelta(hours=24))
        evicted = buffer.put(entry.id, entry)
        live = buffer.live_items("user-1")
        ```
    """

    def __init__(
        self,
        max_size: int,
        default_ttl: Optional[timedelta] = None,
        scope: EvictionScope = EvictionScope.OWNER,
        eviction_key: Callable[[V], datetime] = oldest_first,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.scope = scope
        self._eviction_key = eviction_key
        self._items: dict[str, V] = {}
        self._owners: dict[str, list[str]] = {}
        self._lock = ReadWriteLock()

    def default_expiry(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """Expiry for a value stored at ``now`` without its own TTL."""
        if self.default_ttl is None:
            return None
        return (now or utcnow()) + self.default_ttl

    def put(self, key: str, value: V) -> list[V]:
        """Insert or overwrite ``key`` and return the evicted values."""
        with self._lock.write():
            if key in self._items:
                self._remove(key)
            self._items[key] = value
            self._owners.setdefault(value.user_id, []).append(key)
            return self._enforce_size(value.user_id)

    def get(self, key: str) -> Optional[V]:
        """Return the value for ``key`` regardless of expiry."""
        with self._lock.read():
            return self._items.get(key)

    def replace(self, key: str, value: V) -> bool:
        """Overwrite an existing key in place. Returns False if absent."""
        with self._lock.write():
            current = self._items.get(key)
            if current is None:
                return False
            self._items[key] = value
            if current.user_id != value.user_id:
                self._unindex(key, current.user_id)
                self._owners.setdefault(value.user_id, []).append(key)
                self._enforce_size(value.user_id)
            return True

    def pop(self, key: str) -> Optional[V]:
        """Remove ``key`` and return its value, or None if absent."""
        with self._lock.write():
            if key not in self._items:
                return None
            return self._remove(key)

    def take(
        self,
        key: str,
        now: Optional[datetime] = None,
        touch: Optional[Callable[[V], None]] = None,
    ) -> Optional[V]:
        """Look up a live value, evicting it instead if it has expired.

        ``touch`` is applied to a live value under the write lock, so
        counters it bumps are never lost to concurrent hits.
        """
        now = now or utcnow()
        with self._lock.write():
            value = self._items.get(key)
            if value is None:
                return None
            if self._expired(value, now):
                self._remove(key)
                return None
            if touch is not None:
                touch(value)
            return value

    def live_items(self, owner: str, now: Optional[datetime] = None) -> list[V]:
        """The owner's unexpired values in insertion order."""
        now = now or utcnow()
        with self._lock.read():
            keys = self._owners.get(owner, [])
            return [
                self._items[key]
                for key in keys
                if not self._expired(self._items[key], now)
            ]

    def clear_owner(self, owner: str, older_than: Optional[datetime] = None) -> int:
        """Remove an owner's values, keeping those created after ``older_than``."""
        older_than = ensure_utc(older_than)
        with self._lock.write():
            removed = 0
            for key in list(self._owners.get(owner, [])):
                created = ensure_utc(self._items[key].created_at)
                if older_than is not None and created is not None and created > older_than:
                    continue
                self._remove(key)
                removed += 1
            return removed

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Remove every expired value, whoever owns it."""
        now = now or utcnow()
        with self._lock.write():
            expired = [key for key, value in self._items.items() if self._expired(value, now)]
            for key in expired:
                self._remove(key)
            return len(expired)

    def owner_count(self, owner: str) -> int:
        with self._lock.read():
            return len(self._owners.get(owner, []))

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock.read():
            return key in self._items

    # Callers below must hold the write lock

    def _enforce_size(self, owner: str) -> list[V]:
        if self.scope == EvictionScope.OWNER:
            keys = self._owners.get(owner, [])
        else:
            keys = list(self._items)

        excess = len(keys) - self.max_size
        if excess <= 0:
            return []

        victims = heapq.nsmallest(excess, keys, key=lambda k: self._eviction_key(self._items[k]))
        return [self._remove(key) for key in victims]

    def _remove(self, key: str) -> V:
        value = self._items.pop(key)
        self._unindex(key, value.user_id)
        return value

    def _unindex(self, key: str, owner: str) -> None:
        keys = self._owners.get(owner)
        if keys is None:
            return
        try:
            keys.remove(key)
        except ValueError:
            pass
        if not keys:
            del self._owners[owner]

    @staticmethod
    def _expired(value: Expiring, now: datetime) -> bool:
        expires_at = ensure_utc(value.expires_at)
        return expires_at is not None and now > expires_at
