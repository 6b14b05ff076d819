"""Token introspection (RFC 7662).

Failures are closed: an unauthenticated caller, an unknown token and any
verification failure all produce ``{"active": false}``. Every verdict,
negative ones included, is cached under the token hash for
``introspection_cache_ttl`` seconds, so a token revoked by rotation or by the
per-user limit may still read as active until its cache entry lapses.
``RevocationService`` evicts the entry of a token it revokes.
"""

from __future__ import annotations

from typing import Optional

from tokengate.auth.client_auth import ClientAuthenticator
from tokengate.auth.scopes import parse_scope
from tokengate.auth.token_ref import OpaqueTokenRef, SignedTokenRef, TokenRef, resolve_token_ref
from tokengate.auth.verifier import TokenVerifier
from tokengate.config import OAuthSettings
from tokengate.errors import InvalidClientError
from tokengate.models.entities import Client
from tokengate.models.responses import IntrospectionResponse
from tokengate.observability import get_logger, get_metrics
from tokengate.storage import TokenStore

logger = get_logger(__name__)

TOKEN_USE_ACCESS = "access"
TOKEN_USE_REFRESH = "refresh"


class IntrospectionService:
    """Answers "is this token active, and what does it allow?"."""

    def __init__(
        self,
        settings: OAuthSettings,
        store: TokenStore,
        verifier: TokenVerifier,
        authenticator: ClientAuthenticator,
    ) -> None:
        self._settings = settings
        self._store = store
        self._verifier = verifier
        self._authenticator = authenticator

    async def introspect(
        self, token: str, client_id: Optional[str], client_secret: Optional[str]
    ) -> IntrospectionResponse:
        """Authenticate the caller, then report the token's state.

        A caller that fails authentication gets an inactive verdict, which is
        not cached.
        """
        try:
            client = self._authenticator.authenticate(client_id, client_secret)
        except InvalidClientError:
            return IntrospectionResponse.inactive()
        return await self.inspect(token, client)

    async def inspect(self, token: str, client: Optional[Client] = None) -> IntrospectionResponse:
        """Report the token's state for an already trusted caller."""
        ref = resolve_token_ref(token, self._settings.hash_algorithm)
        metrics = get_metrics()
        metrics.increment_counter("tokengate_introspections_total")

        cache_enabled = self._settings.introspection_cache_enabled
        if cache_enabled:
            cached = await self._store.get_cached_introspection(ref.hash_key)
            if cached is not None:
                metrics.increment_counter("tokengate_introspection_cache_hits_total")
                return IntrospectionResponse.model_validate(cached)

        result = await self._evaluate(ref, client)
        if cache_enabled:
            await self._store.cache_introspection(
                ref.hash_key, result.to_body(), self._settings.introspection_cache_ttl
            )
        logger.debug("tokengate.introspection.evaluated", active=result.active, jti=result.jti)
        return result

    async def evict(self, token: str) -> None:
        """Drop the cached verdict for ``token``."""
        ref = resolve_token_ref(token, self._settings.hash_algorithm)
        await self._store.evict_introspection(ref.hash_key)

    async def _evaluate(self, ref: TokenRef, client: Optional[Client]) -> IntrospectionResponse:
        if isinstance(ref, SignedTokenRef):
            return await self._evaluate_access(ref, client)
        if isinstance(ref, OpaqueTokenRef):
            return await self._evaluate_refresh(ref, client)
        return IntrospectionResponse.inactive()

    async def _evaluate_access(
        self, ref: SignedTokenRef, client: Optional[Client]
    ) -> IntrospectionResponse:
        verification = await self._verifier.verify_access(ref.raw)
        claims = verification.claims
        if not verification.valid or claims is None:
            return IntrospectionResponse.inactive()
        return IntrospectionResponse(
            active=True,
            scope=claims.scope,
            client_id=claims.client_id,
            username=claims.username,
            token_type=claims.token_type,
            exp=claims.exp,
            iat=claims.iat,
            nbf=claims.nbf,
            sub=claims.sub,
            aud=claims.aud,
            iss=claims.iss,
            jti=claims.jti,
            user_id=claims.sub,
            token_use=TOKEN_USE_ACCESS,
            auth_time=claims.iat,
            permissions=parse_scope(claims.scope),
            client_name=client.name if client else claims.client_id,
            issued_for=claims.aud,
        )

    async def _evaluate_refresh(
        self, ref: OpaqueTokenRef, client: Optional[Client]
    ) -> IntrospectionResponse:
        verification = await self._verifier.verify_refresh(ref.raw)
        record = verification.refresh
        if not verification.valid or record is None:
            return IntrospectionResponse.inactive()
        issued_at = int(record.created_at)
        return IntrospectionResponse(
            active=True,
            scope=record.scope,
            client_id=record.client_id,
            username=record.username,
            token_type=record.type,
            exp=int(record.expires_at),
            iat=issued_at,
            nbf=issued_at,
            sub=record.user_id,
            aud=self._settings.audience,
            iss=self._settings.issuer,
            jti=ref.hash_key,
            user_id=record.user_id,
            token_use=TOKEN_USE_REFRESH,
            auth_time=issued_at,
            permissions=parse_scope(record.scope),
            client_name=client.name if client else record.client_id,
            issued_for=self._settings.audience,
        )
