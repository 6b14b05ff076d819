"""Token lifecycle services for tokengate.

Client authentication, issuance, verification, introspection (RFC 7662),
revocation (RFC 7009), the refresh grant and bearer-token route guards.
"""

from tokengate.auth.client_auth import (
    ClientAuthenticator,
    ClientCredentials,
    resolve_client_credentials,
)
from tokengate.auth.clients import ClientRegistry
from tokengate.auth.hashing import hash_token
from tokengate.auth.introspection import IntrospectionService
from tokengate.auth.issuer import TokenIssuer
from tokengate.auth.middleware import AuthGuard, extract_bearer_token
from tokengate.auth.refresh import RefreshFlow
from tokengate.auth.revocation import RevocationService
from tokengate.auth.scopes import SCOPE_READ, SCOPE_WRITE, has_any_scope, parse_scope
from tokengate.auth.signing import TokenSigner
from tokengate.auth.token_ref import OpaqueTokenRef, SignedTokenRef, TokenRef, resolve_token_ref
from tokengate.auth.verifier import TokenVerifier, VerificationResult

__all__ = [
    "SCOPE_READ",
    "SCOPE_WRITE",
    "AuthGuard",
    "ClientAuthenticator",
    "ClientCredentials",
    "ClientRegistry",
    "IntrospectionService",
    "OpaqueTokenRef",
    "RefreshFlow",
    "RevocationService",
    "SignedTokenRef",
    "TokenIssuer",
    "TokenRef",
    "TokenSigner",
    "TokenVerifier",
    "VerificationResult",
    "extract_bearer_token",
    "has_any_scope",
    "hash_token",
    "parse_scope",
    "resolve_token_ref",
]
