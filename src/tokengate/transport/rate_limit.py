"""Per-address rate limiting for the OAuth endpoints.

``create_app`` builds two ``OAuthRateLimiter`` instances on top of the
``limits`` package: one shared by every ``/oauth`` route
(``100 per 15 minutes`` by default) and a stricter one stacked on
``/oauth/introspect`` (``60 per minute``). Both are FastAPI dependencies, so a
limited request is rejected before client authentication runs.

Counters live in ``memory://`` storage private to each limiter unless a
``storage_uri`` such as ``redis://host:6379`` is given; with per-process
storage and N workers the effective rate is roughly N times the limit.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Sequence

from fastapi import Request
from fastapi.responses import JSONResponse
from limits import RateLimitItem, parse_many
from limits.storage import Storage, storage_from_string
from limits.strategies import MovingWindowRateLimiter

from tokengate.observability import get_logger, get_metrics

logger = get_logger(__name__)

HTTP_TOO_MANY_REQUESTS = 429
FALLBACK_CLIENT_ADDRESS = "127.0.0.1"

KeyFunc = Callable[[Request], str]


class RateLimitExceeded(Exception):
    """A request went over one of the limiter's limits.

    Attributes:
        detail: Which limit was exceeded.
        retry_after: Seconds until the oldest hit in the window expires.
        limit: The limit, as rendered by ``limits``.
    """

    def __init__(self, detail: str, *, retry_after: int = 60, limit: str = "") -> None:
        super().__init__(detail)
        self.detail = detail
        self.retry_after = retry_after
        self.limit = limit


def get_remote_address(request: Request) -> str:
    if request.client is None:
        return FALLBACK_CLIENT_ADDRESS
    return str(request.client.host)


def _private_memory_uri(label: str) -> str:
    return f"memory://{label}-{uuid.uuid4().hex}"


class OAuthRateLimiter:
    """Moving-window limiter keyed by ``"{name}:{client address}"``.

    Every configured limit is tested before any is hit, so a rejected request
    consumes no quota.

    Example:
        >>> limiter = OAuthRateLimiter(limits=["60 per minute"], name="introspect")
        >>> app.post("/oauth/introspect", dependencies=[Depends(limiter)])
    """

    def __init__(
        self,
        *,
        limits: Sequence[str],
        name: str = "oauth",
        key_func: KeyFunc = get_remote_address,
        storage_uri: str | None = None,
    ) -> None:
        self._name = name
        self._key_func = key_func
        self._items: list[RateLimitItem] = [item for spec in limits for item in parse_many(spec)]
        self._storage: Storage = storage_from_string(storage_uri or _private_memory_uri(name))
        self._strategy = MovingWindowRateLimiter(self._storage)

    @property
    def limits(self) -> list[RateLimitItem]:
        return list(self._items)

    def check(self, request: Request) -> None:
        """Count ``request`` against every limit.

        Raises:
            RateLimitExceeded: If any limit is already exhausted for this caller.
        """
        key = f"{self._name}:{self._key_func(request)}"
        for item in self._items:
            if not self._strategy.test(item, key):
                reset_at, _remaining = self._strategy.get_window_stats(item, key)
                raise RateLimitExceeded(
                    f"Rate limit exceeded: {item}",
                    retry_after=max(1, int(reset_at - time.time())),
                    limit=str(item),
                )
        for item in self._items:
            self._strategy.hit(item, key)

    async def __call__(self, request: Request) -> None:
        self.check(request)

    def reset(self) -> None:
        self._storage.reset()


def create_limiter(
    limits: Sequence[str],
    *,
    name: str = "oauth",
    key_func: KeyFunc | None = None,
    storage_uri: str | None = None,
) -> OAuthRateLimiter:
    """Limiter for the running server; private memory storage unless ``storage_uri`` is set."""
    logger.debug(
        "tokengate.rate_limit.created",
        limiter=name,
        limits=list(limits),
        storage=storage_uri.split("://", 1)[0] if storage_uri else "memory",
    )
    return OAuthRateLimiter(
        limits=limits,
        name=name,
        key_func=key_func or get_remote_address,
        storage_uri=storage_uri,
    )


def rate_limit_handler(request: Request, exc: Exception) -> JSONResponse:
    """Exception handler: 429 ``too_many_requests`` with ``Retry-After``."""
    retry_after = exc.retry_after if isinstance(exc, RateLimitExceeded) else 60
    get_metrics().increment_counter(
        "tokengate_requests_error_total", {"path": request.url.path, "error": "too_many_requests"}
    )
    logger.warning(
        "tokengate.rate_limit.exceeded",
        path=request.url.path,
        client=get_remote_address(request),
        limit=getattr(exc, "limit", ""),
    )
    return JSONResponse(
        status_code=HTTP_TOO_MANY_REQUESTS,
        content={
            "error": "too_many_requests",
            "error_description": "Too many requests, please try again later",
        },
        headers={"Retry-After": str(retry_after)},
    )


__all__ = [
    "OAuthRateLimiter",
    "RateLimitExceeded",
    "create_limiter",
    "get_remote_address",
    "rate_limit_handler",
]
