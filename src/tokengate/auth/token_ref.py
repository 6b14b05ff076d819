"""Classification of presented tokens.

A raw token string is resolved once, at the boundary, into either a
``SignedTokenRef`` (compact JWS shape: three dot-separated non-empty segments)
or an ``OpaqueTokenRef`` (anything else). Services dispatch on the type
instead of treating decode failures as control flow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from tokengate.auth.hashing import DEFAULT_HASH_ALGORITHM, hash_token

JWS_SEGMENT_COUNT = 3


@dataclass(frozen=True)
class SignedTokenRef:
    """A token shaped like a signed access token (not yet verified)."""

    raw: str = field(repr=False)
    hash_key: str


@dataclass(frozen=True)
class OpaqueTokenRef:
    """A token with no structure; only its hash is a valid store key."""

    raw: str = field(repr=False)
    hash_key: str


TokenRef = Union[SignedTokenRef, OpaqueTokenRef]


def has_signed_shape(raw: str) -> bool:
    segments = raw.split(".")
    return len(segments) == JWS_SEGMENT_COUNT and all(segments)


def is_malformed(raw: str) -> bool:
    """True for empty tokens and for a three-segment token with an empty segment."""
    if not raw or not raw.strip():
        return True
    segments = raw.split(".")
    return len(segments) == JWS_SEGMENT_COUNT and not all(segments)


def resolve_token_ref(raw: str, algorithm: str = DEFAULT_HASH_ALGORITHM) -> TokenRef:
    """Classify ``raw`` and attach its hashed store key."""
    hashed = hash_token(raw, algorithm)
    if has_signed_shape(raw):
        return SignedTokenRef(raw=raw, hash_key=hashed)
    return OpaqueTokenRef(raw=raw, hash_key=hashed)
