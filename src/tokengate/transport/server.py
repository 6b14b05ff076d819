"""FastAPI application exposing the OAuth 2.0 endpoints.

This module provides ``create_app``, which wires the token services into:

- POST /oauth/token        refresh_token and client_credentials grants
- POST /oauth/introspect   RFC 7662 introspection
- POST /oauth/revoke       RFC 7009 revocation
- POST /oauth/demo/issue   token pair for an arbitrary username (demo helper)
- GET  /oauth/tokeninfo    identity behind a bearer token (scope "read")
- GET  /oauth/health       liveness and storage status
- GET  /oauth/metrics      Prometheus-compatible metrics

Example:
    >>> from tokengate.config import OAuthSettings
    >>> from tokengate.transport.server import create_app
    >>> app = create_app(OAuthSettings.from_env())
    >>> # uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

import json
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from tokengate import __version__
from tokengate.auth.client_auth import resolve_client_credentials
from tokengate.auth.scopes import DEMO_DEFAULT_SCOPE, SCOPE_READ, is_subset, parse_scope
from tokengate.config import OAuthSettings
from tokengate.errors import (
    InvalidRequestError,
    InvalidScopeError,
    OAuthError,
    ServerError,
    UnauthorizedClientError,
    UnsupportedGrantTypeError,
)
from tokengate.models.entities import DEFAULT_SCOPE, Client, Identity, TokenPayload
from tokengate.observability import bind_context, get_logger, get_metrics
from tokengate.services import OAuthServices, build_services
from tokengate.transport.rate_limit import (
    OAuthRateLimiter,
    RateLimitExceeded,
    create_limiter,
    rate_limit_handler,
)

logger = get_logger(__name__)

OAUTH_PREFIX = "/oauth"
GRANT_REFRESH_TOKEN = "refresh_token"
GRANT_CLIENT_CREDENTIALS = "client_credentials"
SUPPORTED_GRANT_TYPES = (GRANT_REFRESH_TOKEN, GRANT_CLIENT_CREDENTIALS)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}
ERROR_INTERNAL = "Internal server error"
UNMATCHED_ROUTE = "unmatched"

Params = dict[str, str]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def read_params(request: Request) -> Params:
    """Request parameters from a form-encoded or JSON body.

    Raises:
        InvalidRequestError: If a JSON body is not an object or holds a
            non-string value.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        raw = await request.body()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidRequestError("Request body is not valid JSON") from exc
        if not isinstance(data, dict):
            raise InvalidRequestError("Request body must be a JSON object")
        params: Params = {}
        for key, value in data.items():
            if value is None:
                continue
            if not isinstance(value, str):
                raise InvalidRequestError(f"Parameter {key} must be a string")
            params[key] = value
        return params
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


def route_label(request: Request) -> str:
    """Path template of the matched route, or ``"unmatched"``."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path if isinstance(path, str) else UNMATCHED_ROUTE


def _authenticate_client(services: OAuthServices, request: Request, params: Params) -> Client:
    credentials = resolve_client_credentials(
        request.headers.get("Authorization"), params, request.query_params
    )
    return services.authenticator.authenticate_credentials(credentials)


def _require_param(params: Params, name: str) -> str:
    value = params.get(name, "").strip()
    if not value:
        raise InvalidRequestError(f"Missing {name} parameter")
    return value


def _client_scope(client: Client, requested: str) -> str:
    scopes = parse_scope(requested)
    if not scopes or not is_subset(scopes, client.scopes):
        raise InvalidScopeError(f"Scope '{requested}' is not allowed for this client")
    return " ".join(scopes)


def create_app(
    settings: Optional[OAuthSettings] = None,
    *,
    services: Optional[OAuthServices] = None,
    rate_limit: Optional[str] = None,
    introspect_rate_limit: Optional[str] = None,
) -> FastAPI:
    """Create and configure the authorization server application.

    Args:
        settings: Server configuration. Defaults to ``OAuthSettings.from_env()``,
            which raises ``ConfigurationError`` without a signing secret.
        services: Prebuilt services (tests inject a store or clock this way).
            Built from ``settings`` when omitted.
        rate_limit: Overrides ``settings.oauth_rate_limit``.
        introspect_rate_limit: Overrides ``settings.introspect_rate_limit``.

    Returns:
        Configured FastAPI application. The token store is started and shut
        down by the application lifespan.
    """
    if services is None:
        services = build_services(settings or OAuthSettings.from_env())
    settings = services.settings

    oauth_limiter: OAuthRateLimiter = create_limiter(
        [rate_limit or settings.oauth_rate_limit],
        name="oauth",
        storage_uri=settings.rate_limit_storage_uri,
    )
    introspect_limiter: OAuthRateLimiter = create_limiter(
        [introspect_rate_limit or settings.introspect_rate_limit],
        name="introspect",
        storage_uri=settings.rate_limit_storage_uri,
    )

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        await services.store.start()
        try:
            yield
        finally:
            await services.store.shutdown()

    app = FastAPI(
        title="tokengate",
        description="OAuth 2.0 authorization server",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=_lifespan,
    )
    app.state.services = services
    app.state.oauth_limiter = oauth_limiter
    app.state.introspect_limiter = introspect_limiter

    _register_error_handlers(app)

    @app.middleware("http")
    async def _record_request(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        started = time.perf_counter()
        bind_context(request_id=request.headers.get("X-Request-ID") or uuid.uuid4().hex)
        response = await call_next(request)
        if request.url.path.startswith(OAUTH_PREFIX):
            labels = {"path": route_label(request), "method": request.method}
            metrics = get_metrics()
            metrics.increment_counter(
                "tokengate_requests_total", {**labels, "status": str(response.status_code)}
            )
            metrics.observe_histogram(
                "tokengate_request_duration_seconds", time.perf_counter() - started, labels
            )
        return response

    rate_limited = [Depends(oauth_limiter)]

    @app.post(f"{OAUTH_PREFIX}/token", dependencies=rate_limited)
    async def token(request: Request) -> JSONResponse:
        """Token endpoint for the refresh_token and client_credentials grants."""
        params = await read_params(request)
        logger.debug("tokengate.server.token_request", params=params)
        client = _authenticate_client(services, request, params)
        grant_type = _require_param(params, "grant_type")
        if grant_type not in SUPPORTED_GRANT_TYPES:
            raise UnsupportedGrantTypeError(grant_type)
        if not client.allows_grant(grant_type):
            raise UnauthorizedClientError(
                f"Client is not authorized to use grant type '{grant_type}'"
            )

        if grant_type == GRANT_REFRESH_TOKEN:
            refresh_token = _require_param(params, "refresh_token")
            tokens = await services.refresh.refresh(
                refresh_token, client, scope=params.get("scope") or None
            )
        else:
            scope = _client_scope(client, params.get("scope") or DEFAULT_SCOPE)
            tokens = await services.issuer.issue_tokens(
                TokenPayload(
                    user_id=f"client:{client.id}",
                    username=f"service-account:{client.id}",
                    client_id=client.id,
                    scope=scope,
                ),
                include_refresh=False,
                grant_type=GRANT_CLIENT_CREDENTIALS,
            )
        return JSONResponse(content=tokens.to_body(), headers=NO_STORE_HEADERS)

    @app.post(
        f"{OAUTH_PREFIX}/introspect",
        dependencies=[*rate_limited, Depends(introspect_limiter)],
    )
    async def introspect(request: Request) -> JSONResponse:
        """RFC 7662 introspection; unknown or inactive tokens give ``{"active": false}``."""
        params = await read_params(request)
        client = _authenticate_client(services, request, params)
        token_value = _require_param(params, "token")
        result = await services.introspection.inspect(token_value, client)
        return JSONResponse(content=result.to_body(), headers=NO_STORE_HEADERS)

    @app.post(f"{OAUTH_PREFIX}/revoke", dependencies=rate_limited)
    async def revoke(request: Request) -> Response:
        """RFC 7009 revocation; 200 with an empty body whether or not the token existed."""
        params = await read_params(request)
        client = _authenticate_client(services, request, params)
        token_value = _require_param(params, "token")
        await services.revocation.revoke(
            token_value,
            client.id,
            client.secret,
            token_type_hint=params.get("token_type_hint"),
        )
        return Response(status_code=200)

    if settings.enable_demo_issue:

        @app.post(f"{OAUTH_PREFIX}/demo/issue", dependencies=rate_limited)
        async def demo_issue(request: Request) -> JSONResponse:
            """Issue a token pair for an arbitrary username (demo and testing helper)."""
            params = await read_params(request)
            client = _authenticate_client(services, request, params)
            username = _require_param(params, "username")
            scope = _client_scope(client, params.get("scope") or DEMO_DEFAULT_SCOPE)
            user_id = str(uuid.uuid4())
            tokens = await services.issuer.issue_tokens(
                TokenPayload(user_id=user_id, username=username, client_id=client.id, scope=scope),
                grant_type="demo",
            )
            body: dict[str, Any] = tokens.to_body()
            body["message"] = "Demo tokens issued successfully"
            body["user"] = {"id": user_id, "username": username}
            return JSONResponse(content=body, headers=NO_STORE_HEADERS)

    else:
        logger.info("tokengate.server.demo_issue_disabled")

    @app.get(f"{OAUTH_PREFIX}/tokeninfo", dependencies=rate_limited)
    async def tokeninfo(
        identity: Identity = Depends(services.guard.require_auth(SCOPE_READ)),
    ) -> JSONResponse:
        """Return the identity behind the presented bearer token."""
        return JSONResponse(
            content={
                "user": identity.model_dump(),
                "message": "Token is valid",
                "timestamp": _utc_timestamp(),
            }
        )

    @app.get(f"{OAUTH_PREFIX}/health", dependencies=rate_limited)
    async def health() -> JSONResponse:
        """Liveness probe with the active storage backend."""
        return JSONResponse(
            content={
                "status": "healthy",
                "service": "oauth",
                "timestamp": _utc_timestamp(),
                "version": __version__,
                "storage": services.store.backend_name,
                "degraded": services.store.degraded,
            }
        )

    @app.get(f"{OAUTH_PREFIX}/metrics")
    async def metrics_endpoint() -> PlainTextResponse:
        """Return Prometheus-compatible metrics."""
        return PlainTextResponse(
            content=get_metrics().export_prometheus(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    logger.info(
        "tokengate.server.created",
        storage=settings.storage_backend,
        clients=len(services.registry),
        rate_limit=rate_limit or settings.oauth_rate_limit,
        introspect_rate_limit=introspect_rate_limit or settings.introspect_rate_limit,
    )
    return app


def _register_error_handlers(app: FastAPI) -> None:
    def oauth_error_handler(request: Request, exc: Exception) -> JSONResponse:
        if not isinstance(exc, OAuthError):
            return _server_error(request, exc)
        get_metrics().increment_counter(
            "tokengate_requests_error_total", {"path": route_label(request), "error": exc.error}
        )
        logger.info(
            "tokengate.server.oauth_error",
            path=request.url.path,
            error=exc.error,
            status_code=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers or None,
        )

    def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        return _server_error(request, exc)

    app.add_exception_handler(OAuthError, oauth_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


def _server_error(request: Request, exc: Exception) -> JSONResponse:
    error = ServerError(ERROR_INTERNAL)
    get_metrics().increment_counter(
        "tokengate_requests_error_total", {"path": route_label(request), "error": error.error}
    )
    logger.error(
        "tokengate.server.unhandled_error",
        path=request.url.path,
        exc_type=type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


__all__ = ["create_app", "read_params", "route_label"]
