"""Verification of access and refresh tokens.

A signed access token is valid only while both hold: the signature and time
window check out, and the store still has a record for its ``jti``. The
second condition is what makes revocation of a signed token immediate.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from joserfc.errors import JoseError
from pydantic import ValidationError

from tokengate.auth.hashing import hash_token, short_key
from tokengate.auth.signing import TokenSigner
from tokengate.auth.token_ref import has_signed_shape
from tokengate.config import OAuthSettings
from tokengate.models.entities import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    AccessTokenClaims,
    RefreshTokenRecord,
)
from tokengate.observability import get_logger
from tokengate.storage import TokenStore

logger = get_logger(__name__)

REASON_MALFORMED = "malformed"
REASON_INVALID_SIGNATURE = "invalid_signature"
REASON_EXPIRED = "expired"
REASON_NOT_YET_VALID = "not_yet_valid"
REASON_INVALID_ISSUER = "invalid_issuer"
REASON_NOT_FOUND = "not_found"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a verification.

    Attributes:
        valid: Whether the token is currently usable.
        reason: Machine-readable failure reason (None when valid).
        description: Human-readable failure text for ``error_description``.
        claims: Verified access-token claims.
        record: Live store record backing the token.
        refresh: Parsed refresh-token record.
    """

    valid: bool
    reason: Optional[str] = None
    description: Optional[str] = None
    claims: Optional[AccessTokenClaims] = None
    record: Optional[dict[str, Any]] = None
    refresh: Optional[RefreshTokenRecord] = None

    @classmethod
    def failure(cls, reason: str, description: str) -> VerificationResult:
        return cls(valid=False, reason=reason, description=description)


class TokenVerifier:
    """Checks presented tokens against their signature and the token store."""

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

    def decode_claims(self, token: str) -> Optional[dict[str, Any]]:
        """Signature-checked claims, ignoring the time window. None if not a valid JWS."""
        try:
            return self._signer.decode(token)
        except (JoseError, ValueError):
            return None

    async def verify_access(self, token: str) -> VerificationResult:
        """Verify a signed access token: signature, time window, issuer, then store liveness.

        An expired token has its store record removed and is reported as
        ``expired`` rather than ``not_found``.
        """
        if not has_signed_shape(token):
            return VerificationResult.failure(REASON_MALFORMED, "Malformed access token")
        raw_claims = self.decode_claims(token)
        if raw_claims is None:
            return VerificationResult.failure(REASON_INVALID_SIGNATURE, "Invalid token signature")
        try:
            claims = AccessTokenClaims.model_validate(raw_claims)
        except ValidationError:
            return VerificationResult.failure(REASON_MALFORMED, "Token claims are incomplete")

        now = self._clock()
        if now >= claims.exp:
            await self._store.revoke(claims.jti)
            logger.info("tokengate.verifier.token_expired", jti=claims.jti)
            return VerificationResult.failure(REASON_EXPIRED, "Token expired")
        if now < claims.nbf:
            return VerificationResult.failure(REASON_NOT_YET_VALID, "Token not yet valid")
        if claims.iss != self._settings.issuer:
            return VerificationResult.failure(REASON_INVALID_ISSUER, "Token issuer mismatch")

        record = await self._store.get(claims.jti)
        if record is None or record.get("type") != ACCESS_TOKEN_TYPE:
            logger.debug("tokengate.verifier.token_not_found", jti=claims.jti)
            return VerificationResult.failure(REASON_NOT_FOUND, "Token not found or revoked")
        return VerificationResult(valid=True, claims=claims, record=record)

    async def verify_refresh(self, token: str) -> VerificationResult:
        """Verify an opaque refresh token by its hashed key and record age."""
        token_hash = hash_token(token, self._settings.hash_algorithm)
        record = await self._store.get(token_hash)
        if record is None or record.get("type") != REFRESH_TOKEN_TYPE:
            return VerificationResult.failure(REASON_NOT_FOUND, "Invalid refresh token")
        try:
            refresh = RefreshTokenRecord.model_validate(record)
        except ValidationError:
            await self._store.revoke(token_hash)
            return VerificationResult.failure(REASON_MALFORMED, "Invalid refresh token")
        if refresh.is_expired(self._clock()):
            await self._store.revoke(token_hash)
            logger.info("tokengate.verifier.refresh_expired", hash_prefix=short_key(token_hash))
            return VerificationResult.failure(REASON_EXPIRED, "Refresh token expired")
        return VerificationResult(valid=True, record=record, refresh=refresh)
