"""Wiring of the token services for one process.

Everything stateful hangs off a single ``OAuthServices`` built at startup and
handed to ``create_app``; tests build their own with a fake store or clock.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

from tokengate.auth.client_auth import ClientAuthenticator
from tokengate.auth.clients import ClientRegistry
from tokengate.auth.introspection import IntrospectionService
from tokengate.auth.issuer import TokenIssuer
from tokengate.auth.middleware import AuthGuard
from tokengate.auth.refresh import RefreshFlow
from tokengate.auth.revocation import RevocationService
from tokengate.auth.signing import TokenSigner
from tokengate.auth.verifier import TokenVerifier
from tokengate.config import OAuthSettings
from tokengate.storage import TokenStore, create_token_store


@dataclass(frozen=True)
class OAuthServices:
    settings: OAuthSettings
    store: TokenStore
    registry: ClientRegistry
    authenticator: ClientAuthenticator
    issuer: TokenIssuer
    verifier: TokenVerifier
    introspection: IntrospectionService
    revocation: RevocationService
    refresh: RefreshFlow
    guard: AuthGuard


def build_services(
    settings: OAuthSettings,
    *,
    store: Optional[TokenStore] = None,
    clock: Callable[[], float] = time.time,
) -> OAuthServices:
    """Construct every service once, sharing one store, signer and clock."""
    if store is None:
        store = create_token_store(settings, clock=clock)
    registry = ClientRegistry(settings.clients)
    authenticator = ClientAuthenticator(registry)
    signer = TokenSigner(settings.jwt_secret, settings.algorithm)
    issuer = TokenIssuer(settings, store, signer, clock=clock)
    verifier = TokenVerifier(settings, store, signer, clock=clock)
    introspection = IntrospectionService(settings, store, verifier, authenticator)
    revocation = RevocationService(settings, store, verifier, authenticator, introspection)
    refresh = RefreshFlow(settings, store, verifier, issuer)
    guard = AuthGuard(settings, verifier, introspection)
    return OAuthServices(
        settings=settings,
        store=store,
        registry=registry,
        authenticator=authenticator,
        issuer=issuer,
        verifier=verifier,
        introspection=introspection,
        revocation=revocation,
        refresh=refresh,
        guard=guard,
    )
