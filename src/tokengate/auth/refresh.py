"""Refresh-token grant: verify, rotate, reissue."""

from __future__ import annotations

from typing import Optional

from tokengate.auth.hashing import hash_token
from tokengate.auth.issuer import TokenIssuer
from tokengate.auth.scopes import format_scope, is_subset, parse_scope
from tokengate.auth.verifier import TokenVerifier
from tokengate.config import OAuthSettings
from tokengate.errors import InvalidGrantError, InvalidScopeError
from tokengate.models.entities import Client, TokenPayload
from tokengate.models.responses import TokenResponse
from tokengate.observability import get_logger, get_metrics
from tokengate.storage import TokenStore

logger = get_logger(__name__)


class RefreshFlow:
    """Exchanges a refresh token for a new token pair.

    With rotation on, the presented refresh token is revoked before the new
    pair is issued, so each refresh token works once.
    """

    def __init__(
        self,
        settings: OAuthSettings,
        store: TokenStore,
        verifier: TokenVerifier,
        issuer: TokenIssuer,
    ) -> None:
        self._settings = settings
        self._store = store
        self._verifier = verifier
        self._issuer = issuer

    async def refresh(
        self, refresh_token: str, client: Client, scope: Optional[str] = None
    ) -> TokenResponse:
        """Issue a new pair for the user behind ``refresh_token``.

        Args:
            refresh_token: Raw refresh token from the request.
            client: The already authenticated client.
            scope: Optional narrower scope; must be a subset of the stored one.

        Raises:
            InvalidGrantError: Unknown, expired or rotated-out token, or one
                issued to a different client.
            InvalidScopeError: ``scope`` asks for more than the token holds.
        """
        verification = await self._verifier.verify_refresh(refresh_token)
        record = verification.refresh
        if not verification.valid or record is None:
            raise InvalidGrantError(verification.description or "Invalid refresh token")
        if record.client_id and record.client_id != client.id:
            logger.warning(
                "tokengate.refresh.client_mismatch",
                token_client_id=record.client_id,
                client_id=client.id,
            )
            raise InvalidGrantError("Refresh token was issued to another client")

        granted = record.scope
        if scope:
            requested = parse_scope(scope)
            if not is_subset(requested, parse_scope(record.scope)):
                raise InvalidScopeError("Requested scope exceeds the scope of the refresh token")
            granted = format_scope(requested)

        if self._settings.token_rotation:
            token_hash = hash_token(refresh_token, self._settings.hash_algorithm)
            # only the request that removes the record may use it
            if not await self._store.revoke(token_hash):
                raise InvalidGrantError("Invalid refresh token")
            get_metrics().increment_counter("tokengate_tokens_revoked_total", {"reason": "rotation"})

        return await self._issuer.issue_tokens(
            TokenPayload(
                user_id=record.user_id,
                username=record.username,
                client_id=record.client_id or client.id,
                scope=granted,
            ),
            grant_type="refresh_token",
        )
