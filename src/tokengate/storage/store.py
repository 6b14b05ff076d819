"""TokenStore: the single stateful dependency of the token services.

``TokenStore`` fronts a primary backend (Redis or memory). The first
``TokenStorageError`` from the primary switches the process to an
``InMemoryTokenBackend`` for good: the failure is logged once, counted in
``tokengate_storage_fallbacks_total``, and the failed operation is replayed on
the fallback. Callers never see a storage exception.

Example:
    >>> store = TokenStore(InMemoryTokenBackend())
    >>> await store.store("jti-1", {"user_id": "u1", "type": "access_token"}, ttl=3600)
    True
    >>> (await store.get("jti-1"))["user_id"]
    'u1'
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tokengate.observability import get_logger, get_metrics
from tokengate.storage.base import TokenBackend, TokenRecord
from tokengate.storage.errors import TokenStorageError
from tokengate.storage.memory import InMemoryTokenBackend

logger = get_logger(__name__)

T = TypeVar("T")


class TokenStore:
    """Token records, per-user index and introspection cache with degraded-mode fallback.

    Args:
        backend: Primary backend.
        sweep_interval: Seconds between expiry sweeps of the in-memory backend; 0 disables.
        clock: Time source for ``created_at``/``last_accessed`` and the fallback backend.
    """

    def __init__(
        self,
        backend: TokenBackend,
        *,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend: TokenBackend = backend
        self._failed_backend: Optional[TokenBackend] = None
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._degraded = False
        self._started = False
        self._sweep_task: Optional[asyncio.Task[None]] = None

    @property
    def backend_name(self) -> str:
        return self._backend.name

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def backend(self) -> TokenBackend:
        return self._backend

    async def start(self) -> None:
        """Check the primary backend and launch the expiry sweeper if needed."""
        self._started = True
        try:
            await self._backend.ping()
        except TokenStorageError as exc:
            self._degrade(exc)
        logger.info("tokengate.storage.started", backend=self.backend_name)
        self._ensure_sweeper()

    async def shutdown(self) -> None:
        """Stop the sweeper and close the active backend and any failed primary."""
        self._started = False
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        if self._failed_backend is not None:
            await self._close(self._failed_backend)
            self._failed_backend = None
        await self._close(self._backend)

    async def _close(self, backend: TokenBackend) -> None:
        try:
            await backend.close()
        except TokenStorageError as exc:
            logger.warning("tokengate.storage.close_failed", backend=backend.name, error=str(exc))

    async def store(self, token_id: str, data: dict[str, Any], ttl: int) -> bool:
        """Persist a record for ``ttl`` seconds, stamping ``created_at``/``last_accessed``."""
        now = self._clock()
        record: TokenRecord = {**data}
        record.setdefault("created_at", now)
        record["last_accessed"] = now
        await self._call(lambda b: b.set(token_id, record, ttl))
        return True

    async def get(self, token_id: str) -> Optional[TokenRecord]:
        return await self._call(lambda b: b.get(token_id))

    async def revoke(self, token_id: str) -> bool:
        return await self._call(lambda b: b.delete(token_id))

    async def revoke_all_for_user(self, user_id: str) -> int:
        removed = await self._call(lambda b: b.delete_for_user(user_id))
        logger.info("tokengate.storage.user_tokens_revoked", user_id=user_id, count=removed)
        return removed

    async def count_for_user(self, user_id: str) -> int:
        return await self._call(lambda b: b.count_for_user(user_id))

    async def enforce_user_limit(self, user_id: str, max_tokens: int) -> int:
        """Revoke all of ``user_id``'s records if they hold ``max_tokens`` or more live tokens."""
        removed = await self._call(lambda b: b.enforce_user_limit(user_id, max_tokens))
        if removed:
            logger.info(
                "tokengate.storage.user_limit_enforced",
                user_id=user_id,
                max_tokens=max_tokens,
                revoked=removed,
            )
        return removed

    async def cache_introspection(self, token_hash: str, result: dict[str, Any], ttl: int) -> None:
        await self._call(lambda b: b.cache_set(token_hash, result, ttl))

    async def get_cached_introspection(self, token_hash: str) -> Optional[dict[str, Any]]:
        return await self._call(lambda b: b.cache_get(token_hash))

    async def evict_introspection(self, token_hash: str) -> None:
        await self._call(lambda b: b.cache_delete(token_hash))

    async def _call(self, operation: Callable[[TokenBackend], Awaitable[T]]) -> T:
        try:
            return await operation(self._backend)
        except TokenStorageError as exc:
            self._degrade(exc)
            return await operation(self._backend)

    def _degrade(self, exc: TokenStorageError) -> None:
        if self._degraded:
            # the fallback never raises TokenStorageError
            raise exc
        self._failed_backend = self._backend
        failed = self._backend.name
        self._backend = InMemoryTokenBackend(clock=self._clock)
        self._degraded = True
        get_metrics().increment_counter("tokengate_storage_fallbacks_total", {"backend": failed})
        logger.warning(
            "tokengate.storage.degraded",
            backend=failed,
            fallback=self._backend.name,
            operation=exc.operation,
            error=str(exc),
        )
        if self._started:
            self._ensure_sweeper()

    def _ensure_sweeper(self) -> None:
        if self._sweep_task is not None or self._sweep_interval <= 0:
            return
        if not isinstance(self._backend, InMemoryTokenBackend):
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            backend = self._backend
            if not isinstance(backend, InMemoryTokenBackend):
                continue
            try:
                removed = backend.sweep_expired()
            except Exception as exc:
                logger.error("tokengate.storage.sweep_failed", error=str(exc), exc_info=exc)
                continue
            if removed:
                logger.debug("tokengate.storage.swept", removed=removed)
