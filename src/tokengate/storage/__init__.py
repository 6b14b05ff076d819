"""Token storage backends.

This package provides:
- TokenBackend protocol (from storage.base)
- InMemoryTokenBackend (from storage.memory)
- RedisTokenBackend (from storage.redis_backend)
- TokenStore, the degraded-mode facade used by every service (from storage.store)

Factory:
- create_token_store() builds a TokenStore from OAuthSettings.storage_backend
  ("memory" or "redis").
"""

from __future__ import annotations

import time
from typing import Callable

from tokengate.config import OAuthSettings
from tokengate.storage.base import TokenBackend, TokenRecord
from tokengate.storage.errors import TokenStorageError
from tokengate.storage.memory import InMemoryTokenBackend
from tokengate.storage.redis_backend import RedisTokenBackend
from tokengate.storage.store import TokenStore


def create_token_store(
    settings: OAuthSettings, *, clock: Callable[[], float] = time.time
) -> TokenStore:
    """Create a TokenStore for ``settings``.

    "redis" builds a RedisTokenBackend without connecting; reachability is
    checked by ``TokenStore.start()``, which degrades to memory on failure.
    """
    backend: TokenBackend
    if settings.storage_backend == "redis":
        backend = RedisTokenBackend.from_url(
            settings.redis_url,
            password=settings.redis_password,
            key_prefix=settings.key_prefix,
            index_ttl=settings.refresh_token_ttl,
        )
    else:
        backend = InMemoryTokenBackend(clock=clock)
    return TokenStore(backend, sweep_interval=settings.sweep_interval, clock=clock)


__all__ = [
    "InMemoryTokenBackend",
    "RedisTokenBackend",
    "TokenBackend",
    "TokenRecord",
    "TokenStorageError",
    "TokenStore",
    "create_token_store",
]
