"""Response bodies of the token and introspection endpoints."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import Field

from tokengate.models.base import TokenGateBaseModel


class TokenResponse(TokenGateBaseModel):
    """RFC 6749 section 5.1 token response.

    ``refresh_token`` is None for grants that do not hand out refresh
    capability (client credentials) and is then omitted from the body.
    """

    access_token: str
    refresh_token: Optional[str] = Field(default=None, repr=False)
    token_type: str = "Bearer"
    expires_in: int
    scope: str

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class IntrospectionResponse(TokenGateBaseModel):
    """RFC 7662 introspection response.

    An inactive verdict serializes to exactly ``{"active": false}``.
    """

    active: bool
    scope: Optional[str] = None
    client_id: Optional[str] = None
    username: Optional[str] = None
    token_type: Optional[str] = None
    exp: Optional[int] = None
    iat: Optional[int] = None
    nbf: Optional[int] = None
    sub: Optional[str] = None
    aud: Optional[str] = None
    iss: Optional[str] = None
    jti: Optional[str] = None
    user_id: Optional[str] = None
    token_use: Optional[str] = None
    auth_time: Optional[int] = None
    permissions: Optional[list[str]] = None
    client_name: Optional[str] = None
    issued_for: Optional[str] = None

    @classmethod
    def inactive(cls) -> IntrospectionResponse:
        return cls(active=False)

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)
