"""OAuth 2.0 error taxonomy for tokengate.

Every error a handler can answer with is an ``OAuthError`` carrying the
RFC 6749 section 5.2 error code, a human-readable description and the HTTP
status it maps to. ``create_app`` renders them as
``{"error": ..., "error_description": ...}``.

``ConfigurationError`` is separate: it is raised only while loading settings
and stops the process before any request is served.
"""

from __future__ import annotations

from typing import Any


class ConfigurationError(Exception):
    """Raised when the server configuration is missing or invalid.

    A missing signing secret is the canonical case: the server refuses to
    start rather than signing tokens with a default key.
    """


class OAuthError(Exception):
    """Base exception for all OAuth protocol errors.

    Attributes:
        error: RFC 6749 error code (e.g. ``invalid_grant``)
        description: Human-readable error description
        status_code: HTTP status code for the response
        details: Extra fields merged into the response body
        headers: Extra response headers (e.g. ``WWW-Authenticate``)
    """

    error = "server_error"
    status_code = 500

    def __init__(
        self,
        description: str,
        *,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(description)
        self.description = description
        self.details = details or {}
        self.headers = headers or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to ``{error, error_description, **details}``."""
        return {
            "error": self.error,
            "error_description": self.description,
            **self.details,
        }


class InvalidRequestError(OAuthError):
    """A required parameter is missing or malformed."""

    error = "invalid_request"
    status_code = 400


class InvalidClientError(OAuthError):
    """Client authentication failed (unknown client, wrong or absent secret)."""

    error = "invalid_client"
    status_code = 401

    def __init__(self, description: str = "Client authentication required") -> None:
        super().__init__(description, headers={"WWW-Authenticate": "Basic"})


class InvalidGrantError(OAuthError):
    """The refresh token is invalid, expired, revoked or bound to another client."""

    error = "invalid_grant"
    status_code = 400


class UnauthorizedClientError(OAuthError):
    """The authenticated client may not use the requested grant type."""

    error = "unauthorized_client"
    status_code = 400


class UnsupportedGrantTypeError(OAuthError):
    """The grant type is not one this server implements."""

    error = "unsupported_grant_type"
    status_code = 400

    def __init__(self, grant_type: str) -> None:
        super().__init__(f"Grant type '{grant_type}' is not supported")
        self.grant_type = grant_type


class InvalidScopeError(OAuthError):
    """The requested scope exceeds what the client or grant allows."""

    error = "invalid_scope"
    status_code = 400


class InvalidTokenError(OAuthError):
    """The bearer token is missing, malformed, expired or revoked."""

    error = "invalid_token"
    status_code = 401

    def __init__(self, description: str) -> None:
        super().__init__(description, headers={"WWW-Authenticate": "Bearer"})


class InsufficientScopeError(OAuthError):
    """The bearer token holds none of the scopes the route requires.

    Attributes:
        required_scopes: Scopes the route accepts (any one suffices)
        token_scopes: Scopes the presented token carries
    """

    error = "insufficient_scope"
    status_code = 403

    def __init__(self, required_scopes: list[str], token_scopes: list[str]) -> None:
        super().__init__(
            f"Required scope: {' or '.join(required_scopes)}",
            details={"required_scopes": required_scopes, "token_scopes": token_scopes},
        )
        self.required_scopes = required_scopes
        self.token_scopes = token_scopes


class HttpsRequiredError(OAuthError):
    """A protected route was called over plain HTTP while HTTPS is required."""

    error = "forbidden"
    status_code = 403

    def __init__(self) -> None:
        super().__init__("HTTPS is required for this endpoint")


class ServerError(OAuthError):
    """Unexpected failure; never exposes internals to the caller."""

    error = "server_error"
    status_code = 500
