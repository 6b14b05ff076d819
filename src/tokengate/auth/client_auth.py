"""Client authentication for the OAuth endpoints.

Credentials are looked up in this order:

1. ``Authorization: Basic base64(client_id:client_secret)``
2. ``Authorization: Bearer <client_secret>`` with ``client_id`` in the form or query
3. ``client_id`` / ``client_secret`` form fields
4. ``client_id`` / ``client_secret`` query parameters

Each field is taken from the first location that supplies it.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Mapping, Optional

from tokengate.auth.clients import ClientRegistry
from tokengate.errors import InvalidClientError
from tokengate.models.entities import Client
from tokengate.observability import get_logger, get_metrics

logger = get_logger(__name__)

BASIC_PREFIX = "Basic "
BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class ClientCredentials:
    """Client id and secret as presented by the caller (either may be missing)."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = field(default=None, repr=False)

    @property
    def complete(self) -> bool:
        return bool(self.client_id) and bool(self.client_secret)


def _decode_basic(value: str) -> tuple[Optional[str], Optional[str]]:
    try:
        decoded = base64.b64decode(value.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None, None
    client_id, sep, secret = decoded.partition(":")
    if not sep:
        return client_id or None, None
    return client_id or None, secret or None


def resolve_client_credentials(
    authorization: Optional[str],
    form: Mapping[str, str],
    query: Mapping[str, str],
) -> ClientCredentials:
    """Collect client credentials from the header, form body and query string."""
    client_id: Optional[str] = None
    client_secret: Optional[str] = None

    if authorization and authorization.startswith(BASIC_PREFIX):
        client_id, client_secret = _decode_basic(authorization[len(BASIC_PREFIX) :])

    if not client_secret and authorization and authorization.startswith(BEARER_PREFIX):
        client_secret = authorization[len(BEARER_PREFIX) :].strip() or None
        client_id = client_id or form.get("client_id") or query.get("client_id")

    client_id = client_id or form.get("client_id") or query.get("client_id")
    client_secret = client_secret or form.get("client_secret") or query.get("client_secret")
    return ClientCredentials(client_id=client_id or None, client_secret=client_secret or None)


class ClientAuthenticator:
    """Checks client credentials against the registry."""

    def __init__(self, registry: ClientRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> ClientRegistry:
        return self._registry

    def authenticate(self, client_id: Optional[str], client_secret: Optional[str]) -> Client:
        """Return the registered client for a matching id and secret.

        Raises:
            InvalidClientError: If either value is missing, the id is unknown,
                or the secret does not match.
        """
        if not client_id or not client_secret:
            self._record_failure("missing_credentials", client_id)
            raise InvalidClientError()
        client = self._registry.get(client_id)
        if client is None:
            self._record_failure("unknown_client", client_id)
            raise InvalidClientError("Invalid client")
        # plain equality, see DESIGN.md on constant-time comparison
        if client.secret != client_secret:
            self._record_failure("bad_secret", client_id)
            raise InvalidClientError("Invalid client credentials")
        return client

    def authenticate_credentials(self, credentials: ClientCredentials) -> Client:
        return self.authenticate(credentials.client_id, credentials.client_secret)

    def _record_failure(self, reason: str, client_id: Optional[str]) -> None:
        get_metrics().increment_counter("tokengate_auth_failures_total", {"reason": reason})
        logger.warning("tokengate.client_auth.failed", reason=reason, client_id=client_id)
