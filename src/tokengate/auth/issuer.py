"""Issuance of access/refresh token pairs.

An access token is a signed JWT whose ``jti`` keys a store record; the token
stops verifying the moment that record is gone. A refresh token is
``token_entropy`` random bytes, hex-encoded, stored only under its hash.
"""

from __future__ import annotations

import secrets
import time
import uuid
from typing import Any, Callable

from tokengate.auth.hashing import hash_token, short_key
from tokengate.auth.signing import TokenSigner
from tokengate.config import OAuthSettings
from tokengate.models.entities import (
    ACCESS_TOKEN_TYPE,
    DEFAULT_SCOPE,
    REFRESH_TOKEN_TYPE,
    AccessTokenClaims,
    RefreshTokenRecord,
    TokenPayload,
)
from tokengate.models.responses import TokenResponse
from tokengate.observability import get_logger, get_metrics
from tokengate.storage import TokenStore

logger = get_logger(__name__)


class TokenIssuer:
    """Builds, signs and persists token pairs.

    Args:
        settings: Lifetimes, claims and per-user limit configuration.
        store: Token store the records are written to.
        signer: Signer shared with ``TokenVerifier``.
        clock: Time source (epoch seconds).
    """

    def __init__(
        self,
        settings: OAuthSettings,
        store: TokenStore,
        signer: TokenSigner,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._store = store
        self._signer = signer
        self._clock = clock

    async def issue_tokens(
        self, payload: TokenPayload, *, include_refresh: bool = True, grant_type: str = "refresh_token"
    ) -> TokenResponse:
        """Issue a new access token and, unless ``include_refresh`` is False, a refresh token.

        When the user already holds ``max_tokens_per_user`` live access tokens,
        every record of that user is revoked before the new pair is written.
        """
        settings = self._settings
        if payload.user_id and settings.revoke_old_tokens:
            await self._store.enforce_user_limit(payload.user_id, settings.max_tokens_per_user)

        scope = payload.scope or DEFAULT_SCOPE
        now = self._clock()
        iat = int(now)
        claims = AccessTokenClaims(
            jti=str(uuid.uuid4()),
            sub=payload.user_id,
            aud=payload.client_id or settings.audience,
            iss=settings.issuer,
            iat=iat,
            exp=iat + settings.access_token_ttl,
            nbf=iat + settings.not_before_offset,
            scope=scope,
            username=payload.username,
            client_id=payload.client_id,
        )
        access_token = self._signer.encode(claims.model_dump(exclude_none=True))
        await self._store.store(
            claims.jti,
            self._access_record(payload, claims, now),
            settings.access_token_ttl,
        )

        refresh_token = None
        token_hash = None
        if include_refresh:
            refresh_token = secrets.token_hex(settings.token_entropy)
            token_hash = hash_token(refresh_token, settings.hash_algorithm)
            record = RefreshTokenRecord(
                token_id=str(uuid.uuid4()),
                user_id=payload.user_id,
                client_id=payload.client_id,
                username=payload.username,
                scope=scope,
                type=REFRESH_TOKEN_TYPE,
                expires_in=settings.refresh_token_ttl,
                created_at=now,
            )
            await self._store.store(
                token_hash, record.model_dump(exclude_none=True), settings.refresh_token_ttl
            )

        get_metrics().increment_counter("tokengate_tokens_issued_total", {"grant_type": grant_type})
        logger.info(
            "tokengate.issuer.tokens_issued",
            jti=claims.jti,
            user_id=payload.user_id,
            client_id=payload.client_id,
            scope=scope,
            refresh_hash_prefix=short_key(token_hash) if token_hash else None,
        )
        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=settings.access_token_ttl,
            scope=scope,
        )

    def _access_record(
        self, payload: TokenPayload, claims: AccessTokenClaims, now: float
    ) -> dict[str, Any]:
        return {
            "user_id": payload.user_id,
            "client_id": payload.client_id,
            "username": payload.username,
            "scope": claims.scope,
            "type": ACCESS_TOKEN_TYPE,
            "expires_in": self._settings.access_token_ttl,
            "created_at": now,
            "jti": claims.jti,
            "iat": claims.iat,
            "exp": claims.exp,
            "aud": claims.aud,
        }
