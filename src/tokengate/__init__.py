"""tokengate: embedded OAuth 2.0 authorization server.

Issues signed access tokens and opaque refresh tokens, verifies them against a
revocable token store, and serves RFC 7662 introspection and RFC 7009
revocation for API clients.

Example:
    >>> from tokengate.config import OAuthSettings
    >>> from tokengate.transport.server import create_app
    >>> app = create_app(OAuthSettings.from_env())
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
