"""Token revocation (RFC 7009).

Revocation always succeeds once the client is authenticated, whether or not
the token existed, so the endpoint cannot be used to probe for live tokens.
"""

from __future__ import annotations

from typing import Optional

from tokengate.auth.client_auth import ClientAuthenticator
from tokengate.auth.hashing import short_key
from tokengate.auth.introspection import IntrospectionService
from tokengate.auth.token_ref import SignedTokenRef, resolve_token_ref
from tokengate.auth.verifier import TokenVerifier
from tokengate.config import OAuthSettings
from tokengate.observability import get_logger, get_metrics
from tokengate.storage import TokenStore

logger = get_logger(__name__)


class RevocationService:
    """Removes the store record behind an access or refresh token."""

    def __init__(
        self,
        settings: OAuthSettings,
        store: TokenStore,
        verifier: TokenVerifier,
        authenticator: ClientAuthenticator,
        introspection: IntrospectionService,
    ) -> None:
        self._settings = settings
        self._store = store
        self._verifier = verifier
        self._authenticator = authenticator
        self._introspection = introspection

    async def revoke(
        self,
        token: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        token_type_hint: Optional[str] = None,
    ) -> None:
        """Revoke ``token`` for an authenticated client.

        A correctly signed token is revoked by its ``jti`` even when expired;
        anything else is revoked by its hashed key. ``token_type_hint`` is
        accepted and ignored, since the token's shape already decides the key.

        Raises:
            InvalidClientError: If client authentication fails.
        """
        client = self._authenticator.authenticate(client_id, client_secret)
        ref = resolve_token_ref(token, self._settings.hash_algorithm)

        key = ref.hash_key
        if isinstance(ref, SignedTokenRef):
            claims = self._verifier.decode_claims(ref.raw)
            if claims is not None and isinstance(claims.get("jti"), str):
                key = claims["jti"]

        removed = await self._store.revoke(key)
        await self._introspection.evict(token)
        if removed:
            get_metrics().increment_counter("tokengate_tokens_revoked_total", {"reason": "revoke"})
        logger.info(
            "tokengate.revocation.revoked",
            client_id=client.id,
            key=key if key != ref.hash_key else short_key(key),
            existed=removed,
            hint=token_type_hint,
        )
