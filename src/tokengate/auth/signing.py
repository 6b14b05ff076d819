"""HMAC signing of access tokens with joserfc."""

from __future__ import annotations

from typing import Any

from joserfc import jwt as jose_jwt
from joserfc.jwk import OctKey

TOKEN_TYP = "JWT"


class TokenSigner:
    """Signs and decodes compact JWS access tokens with one shared secret.

    ``decode`` checks the signature and algorithm only; time-window and
    issuer checks belong to ``TokenVerifier``.
    """

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._key = OctKey.import_key(secret)
        self._algorithm = algorithm

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def encode(self, claims: dict[str, Any]) -> str:
        header = {"alg": self._algorithm, "typ": TOKEN_TYP}
        return jose_jwt.encode(header, claims, self._key, algorithms=[self._algorithm])

    def decode(self, token: str) -> dict[str, Any]:
        """Return the claims of a correctly signed token.

        Raises:
            JoseError: Bad signature, unexpected algorithm or malformed token.
            ValueError: Undecodable segments.
        """
        decoded = jose_jwt.decode(token, self._key, algorithms=[self._algorithm])
        return dict(decoded.claims)
