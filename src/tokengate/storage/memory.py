"""In-process token backend.

Used when no Redis is configured and as the permanent fallback after Redis
fails. Expiry is lazy: every read compares ``now - stored_at`` with the entry
TTL and drops stale entries. ``sweep_expired()`` purges whatever was never
read again; ``TokenStore`` runs it periodically.

This implementation is thread-safe using an RLock, so the per-user limit is
enforced atomically with respect to other backend calls. The window between
enforcing the limit and writing the new records is not covered.

Cached introspection verdicts naming a ``user_id`` are indexed per user too,
so dropping a user's records also drops their cached verdicts.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from tokengate.models.entities import ACCESS_TOKEN_TYPE
from tokengate.storage.base import TokenRecord


@dataclass
class _Entry:
    value: TokenRecord
    stored_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


class InMemoryTokenBackend:
    """Dict-backed implementation of TokenBackend."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._tokens: dict[str, _Entry] = {}
        self._introspection: dict[str, _Entry] = {}
        self._user_index: dict[str, set[str]] = {}
        self._cache_index: dict[str, set[str]] = {}

    async def set(self, key: str, record: TokenRecord, ttl: int) -> None:
        with self._lock:
            previous = self._tokens.get(key)
            if previous is not None:
                self._unindex(key, previous.value)
            self._tokens[key] = _Entry(value=dict(record), stored_at=self._clock(), ttl=ttl)
            user_id = record.get("user_id")
            if user_id:
                self._user_index.setdefault(user_id, set()).add(key)

    async def get(self, key: str) -> Optional[TokenRecord]:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return None
            entry.value["last_accessed"] = self._clock()
            return dict(entry.value)

    async def delete(self, key: str) -> bool:
        with self._lock:
            entry = self._tokens.pop(key, None)
            if entry is None:
                return False
            self._unindex(key, entry.value)
            return not entry.expired(self._clock())

    async def count_for_user(self, user_id: str) -> int:
        with self._lock:
            return self._count_live_access(user_id)

    async def delete_for_user(self, user_id: str) -> int:
        with self._lock:
            return self._drop_user(user_id)

    async def enforce_user_limit(self, user_id: str, max_tokens: int) -> int:
        with self._lock:
            if self._count_live_access(user_id) < max_tokens:
                return 0
            return self._drop_user(user_id)

    async def cache_set(self, key: str, value: TokenRecord, ttl: int) -> None:
        with self._lock:
            previous = self._introspection.get(key)
            if previous is not None:
                self._uncache(key, previous.value)
            self._introspection[key] = _Entry(value=dict(value), stored_at=self._clock(), ttl=ttl)
            user_id = value.get("user_id")
            if user_id:
                self._cache_index.setdefault(user_id, set()).add(key)

    async def cache_get(self, key: str) -> Optional[TokenRecord]:
        with self._lock:
            entry = self._introspection.get(key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._introspection[key]
                self._uncache(key, entry.value)
                return None
            return dict(entry.value)

    async def cache_delete(self, key: str) -> None:
        with self._lock:
            entry = self._introspection.pop(key, None)
            if entry is not None:
                self._uncache(key, entry.value)

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None

    def sweep_expired(self) -> int:
        """Drop every expired token and cache entry. Returns the number removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            for key in [k for k, e in self._tokens.items() if e.expired(now)]:
                self._unindex(key, self._tokens.pop(key).value)
                removed += 1
            for key in [k for k, e in self._introspection.items() if e.expired(now)]:
                self._uncache(key, self._introspection.pop(key).value)
                removed += 1
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    def _live_entry(self, key: str) -> Optional[_Entry]:
        entry = self._tokens.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._tokens[key]
            self._unindex(key, entry.value)
            return None
        return entry

    def _count_live_access(self, user_id: str) -> int:
        count = 0
        for key in list(self._user_index.get(user_id, ())):
            entry = self._live_entry(key)
            if entry is not None and entry.value.get("type") == ACCESS_TOKEN_TYPE:
                count += 1
        return count

    def _drop_user(self, user_id: str) -> int:
        keys = self._user_index.pop(user_id, set())
        now = self._clock()
        removed = 0
        for key in keys:
            entry = self._tokens.pop(key, None)
            if entry is not None and not entry.expired(now):
                removed += 1
        for key in self._cache_index.pop(user_id, set()):
            self._introspection.pop(key, None)
        return removed

    def _unindex(self, key: str, record: TokenRecord) -> None:
        user_id = record.get("user_id")
        if not user_id:
            return
        keys = self._user_index.get(user_id)
        if keys is None:
            return
        keys.discard(key)
        if not keys:
            del self._user_index[user_id]

    def _uncache(self, key: str, value: TokenRecord) -> None:
        user_id = value.get("user_id")
        if not user_id:
            return
        keys = self._cache_index.get(user_id)
        if keys is None:
            return
        keys.discard(key)
        if not keys:
            del self._cache_index[user_id]
