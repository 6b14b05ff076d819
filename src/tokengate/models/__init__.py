"""Pydantic models for tokengate entities and response bodies."""

from tokengate.models.base import TokenGateBaseModel
from tokengate.models.entities import (
    ACCESS_TOKEN_TYPE,
    DEFAULT_SCOPE,
    REFRESH_TOKEN_TYPE,
    AccessTokenClaims,
    Client,
    Identity,
    RefreshTokenRecord,
    TokenPayload,
)
from tokengate.models.responses import IntrospectionResponse, TokenResponse

__all__ = [
    "ACCESS_TOKEN_TYPE",
    "DEFAULT_SCOPE",
    "REFRESH_TOKEN_TYPE",
    "AccessTokenClaims",
    "Client",
    "Identity",
    "IntrospectionResponse",
    "RefreshTokenRecord",
    "TokenGateBaseModel",
    "TokenPayload",
    "TokenResponse",
]
