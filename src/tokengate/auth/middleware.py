"""Bearer-token guards for protected resource routes.

``AuthGuard`` hands out FastAPI dependencies:

- ``require_auth(*scopes)``: verify the bearer token directly; 401 when it is
  missing, malformed or invalid, 403 when it holds none of ``scopes``.
- ``optional_auth()``: same resolution, but never fails; the identity is None
  when no valid token was presented.
- ``require_active_token(*scopes)``: resolve through introspection instead of
  direct verification.

The resolved ``Identity`` is returned and also stored on ``request.state.identity``.

Example:
    >>> guard = AuthGuard(settings, verifier, introspection)
    >>> @app.get("/forecast")
    ... async def forecast(identity: Identity = Depends(guard.require_auth("read"))):
    ...     return {"user": identity.username}
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from fastapi import Request

from tokengate.auth.introspection import TOKEN_USE_ACCESS, IntrospectionService
from tokengate.auth.scopes import has_any_scope, parse_scope
from tokengate.auth.token_ref import is_malformed
from tokengate.auth.verifier import TokenVerifier
from tokengate.config import OAuthSettings
from tokengate.errors import HttpsRequiredError, InsufficientScopeError, InvalidTokenError
from tokengate.models.entities import AccessTokenClaims, Identity
from tokengate.models.responses import IntrospectionResponse
from tokengate.observability import get_logger, get_metrics

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "
ERROR_MISSING_TOKEN = "Missing or invalid authorization header"
ERROR_MALFORMED_TOKEN = "Malformed JWT token"
ERROR_INACTIVE_TOKEN = "Token is not active"

IdentityDependency = Callable[[Request], Awaitable[Identity]]
OptionalIdentityDependency = Callable[[Request], Awaitable[Optional[Identity]]]


def extract_bearer_token(request: Request) -> Optional[str]:
    """Extract the Bearer token from the Authorization header."""
    auth = request.headers.get("Authorization")
    if not auth or not auth.startswith(BEARER_PREFIX):
        return None
    return auth[len(BEARER_PREFIX) :].strip() or None


def is_secure_request(request: Request) -> bool:
    """True for HTTPS requests, directly or behind a TLS-terminating proxy."""
    if request.url.scheme == "https":
        return True
    forwarded = request.headers.get("X-Forwarded-Proto", "")
    return forwarded.split(",")[0].strip().lower() == "https"


def identity_from_claims(claims: AccessTokenClaims) -> Identity:
    scopes = parse_scope(claims.scope)
    return Identity(
        id=claims.sub,
        username=claims.username,
        client_id=claims.client_id,
        scopes=scopes,
        token_id=claims.jti,
        token_type=claims.token_type,
        issued_at=claims.iat,
        expires_at=claims.exp,
        audience=claims.aud,
        issuer=claims.iss,
        permissions=scopes,
    )


def identity_from_introspection(result: IntrospectionResponse) -> Identity:
    return Identity(
        id=result.sub or result.user_id,
        username=result.username,
        client_id=result.client_id,
        scopes=parse_scope(result.scope),
        token_id=result.jti,
        token_type=result.token_type,
        issued_at=result.iat,
        expires_at=result.exp,
        audience=result.aud,
        issuer=result.iss,
        permissions=result.permissions or [],
    )


class AuthGuard:
    """Factory for bearer-token dependencies bound to one verifier."""

    def __init__(
        self,
        settings: OAuthSettings,
        verifier: TokenVerifier,
        introspection: IntrospectionService,
    ) -> None:
        self._settings = settings
        self._verifier = verifier
        self._introspection = introspection

    def require_auth(self, *required_scopes: str) -> IdentityDependency:
        """Dependency: verified identity holding at least one of ``required_scopes``."""
        scopes = list(required_scopes)

        async def _dependency(request: Request) -> Identity:
            self._check_transport(request)
            token = self._bearer_token(request)
            verification = await self._verifier.verify_access(token)
            if not verification.valid or verification.claims is None:
                self._fail(request, verification.reason or "invalid")
                raise InvalidTokenError(verification.description or "Invalid token")
            identity = identity_from_claims(verification.claims)
            self._check_scopes(request, identity, scopes)
            request.state.identity = identity
            return identity

        return _dependency

    def optional_auth(self) -> OptionalIdentityDependency:
        """Dependency: verified identity when one is presented, else None."""

        async def _dependency(request: Request) -> Optional[Identity]:
            request.state.identity = None
            token = extract_bearer_token(request)
            if token is None or is_malformed(token):
                return None
            verification = await self._verifier.verify_access(token)
            if not verification.valid or verification.claims is None:
                return None
            identity = identity_from_claims(verification.claims)
            request.state.identity = identity
            return identity

        return _dependency

    def require_active_token(self, *required_scopes: str) -> IdentityDependency:
        """Dependency: like ``require_auth`` but resolved through introspection.

        Only access tokens qualify; a refresh token presented as a bearer
        credential is rejected.
        """
        scopes = list(required_scopes)

        async def _dependency(request: Request) -> Identity:
            self._check_transport(request)
            token = self._bearer_token(request)
            result = await self._introspection.inspect(token)
            if not result.active or result.token_use != TOKEN_USE_ACCESS:
                self._fail(request, "inactive")
                raise InvalidTokenError(ERROR_INACTIVE_TOKEN)
            identity = identity_from_introspection(result)
            self._check_scopes(request, identity, scopes)
            request.state.identity = identity
            return identity

        return _dependency

    def _check_transport(self, request: Request) -> None:
        if self._settings.require_https and not is_secure_request(request):
            logger.warning("tokengate.auth.https_required", path=request.url.path)
            raise HttpsRequiredError()

    def _bearer_token(self, request: Request) -> str:
        token = extract_bearer_token(request)
        if token is None:
            self._fail(request, "missing_token")
            raise InvalidTokenError(ERROR_MISSING_TOKEN)
        if is_malformed(token):
            self._fail(request, "malformed")
            raise InvalidTokenError(ERROR_MALFORMED_TOKEN)
        return token

    def _check_scopes(self, request: Request, identity: Identity, required: list[str]) -> None:
        if has_any_scope(identity.scopes, required):
            return
        self._fail(request, "insufficient_scope")
        raise InsufficientScopeError(required, identity.scopes)

    def _fail(self, request: Request, reason: str) -> None:
        get_metrics().increment_counter("tokengate_auth_failures_total", {"reason": reason})
        logger.warning("tokengate.auth.rejected", path=request.url.path, reason=reason)
