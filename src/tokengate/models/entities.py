"""Core entities of the authorization server.

Client:
    A registered API client, immutable after process start.
TokenPayload:
    What a token is issued for (user, client, scope); the input to issuance.
AccessTokenClaims:
    The claim set signed into every access token.
RefreshTokenRecord:
    The store record behind an opaque refresh token.
Identity:
    The caller resolved from a verified bearer token, attached to requests.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import ConfigDict, Field

from tokengate.models.base import TokenGateBaseModel

ACCESS_TOKEN_TYPE = "access_token"
REFRESH_TOKEN_TYPE = "refresh_token"
DEFAULT_SCOPE = "read"


class Client(TokenGateBaseModel):
    """A registered OAuth client.

    Attributes:
        id: Client identifier presented as ``client_id``.
        secret: Shared secret; excluded from repr so it never reaches logs.
        name: Display name, echoed as ``client_name`` by introspection.
        scopes: Scopes this client may request.
        grant_types: Grant types this client may use at the token endpoint.
        redirect_uris: Registered redirect URIs (authorization-code clients).
        is_confidential: Whether the client can keep its secret confidential.
    """

    id: str = Field(..., min_length=1)
    secret: str = Field(..., min_length=1, repr=False)
    name: str
    scopes: list[str] = Field(default_factory=list)
    grant_types: list[str] = Field(default_factory=list)
    redirect_uris: list[str] = Field(default_factory=list)
    is_confidential: bool = True

    def allows_grant(self, grant_type: str) -> bool:
        return grant_type in self.grant_types


class TokenPayload(TokenGateBaseModel):
    """Subject of an issuance: who the tokens are for and what they allow."""

    user_id: Optional[str] = None
    username: Optional[str] = None
    client_id: Optional[str] = None
    scope: str = DEFAULT_SCOPE


class AccessTokenClaims(TokenGateBaseModel):
    """Claims carried by a signed access token."""

    # Foreign claims are tolerated on decode; the signature already vouches for them.
    model_config = ConfigDict(frozen=True, extra="ignore")

    jti: str
    sub: Optional[str] = None
    aud: str
    iss: str
    iat: int
    exp: int
    nbf: int
    scope: str = DEFAULT_SCOPE
    username: Optional[str] = None
    client_id: Optional[str] = None
    token_type: Literal["access_token"] = ACCESS_TOKEN_TYPE


class RefreshTokenRecord(TokenGateBaseModel):
    """Store record behind an opaque refresh token.

    ``created_at + expires_in`` is the authoritative expiry; the store TTL
    only backs it up.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    token_id: str
    user_id: Optional[str] = None
    client_id: Optional[str] = None
    username: Optional[str] = None
    scope: str = DEFAULT_SCOPE
    type: Literal["refresh_token"] = REFRESH_TOKEN_TYPE
    expires_in: int
    created_at: float
    last_accessed: Optional[float] = None

    @property
    def expires_at(self) -> float:
        return self.created_at + self.expires_in

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.expires_in


class Identity(TokenGateBaseModel):
    """Caller identity resolved from a verified bearer token."""

    id: Optional[str] = None
    username: Optional[str] = None
    client_id: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)
    token_id: Optional[str] = None
    token_type: Optional[str] = None
    issued_at: Optional[int] = None
    expires_at: Optional[int] = None
    audience: Optional[str] = None
    issuer: Optional[str] = None
    permissions: list[str] = Field(default_factory=list)
