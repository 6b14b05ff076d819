"""Token backend protocol.

A backend is a TTL-capable key-value map for token records, with a per-user
index and a separate namespace for cached introspection verdicts. Records are
plain JSON-serializable dicts; ``user_id`` and ``type`` fields drive the index.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

TokenRecord = dict[str, Any]


@runtime_checkable
class TokenBackend(Protocol):
    """Storage operations ``TokenStore`` relies on.

    Implementations raise ``TokenStorageError`` for operational failures and
    nothing else.
    """

    name: str

    async def set(self, key: str, record: TokenRecord, ttl: int) -> None:
        """Store ``record`` under ``key`` for ``ttl`` seconds and index it by user."""
        ...

    async def get(self, key: str) -> Optional[TokenRecord]:
        """Return the live record and touch its ``last_accessed``; None if absent."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove a record. Returns True if one existed."""
        ...

    async def count_for_user(self, user_id: str) -> int:
        """Number of live access-token records indexed for ``user_id``."""
        ...

    async def delete_for_user(self, user_id: str) -> int:
        """Remove every record indexed for ``user_id``. Returns the number removed."""
        ...

    async def enforce_user_limit(self, user_id: str, max_tokens: int) -> int:
        """Atomically remove all of a user's records if live access tokens >= ``max_tokens``.

        Returns the number of records removed (0 when under the limit).
        """
        ...

    async def cache_set(self, key: str, value: TokenRecord, ttl: int) -> None: ...

    async def cache_get(self, key: str) -> Optional[TokenRecord]: ...

    async def cache_delete(self, key: str) -> None: ...

    async def ping(self) -> None:
        """Raise ``TokenStorageError`` if the backend is unreachable."""
        ...

    async def close(self) -> None: ...
