"""One-way key derivation for secrets kept in the token store.

Refresh tokens and introspection cache entries are never stored under their
raw value: the store key is a hex digest of it.
"""

from __future__ import annotations

import hashlib

DEFAULT_HASH_ALGORITHM = "sha256"


def hash_token(raw: str, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """Return the hex digest of ``raw`` under ``algorithm``.

    Raises:
        ValueError: If ``algorithm`` is not available in hashlib.
    """
    return hashlib.new(algorithm, raw.encode("utf-8")).hexdigest()


def short_key(hashed: str) -> str:
    """Prefix of a hashed key, safe to put in log lines."""
    return hashed[:12]
