"""Scope parsing and any-of matching.

Scopes travel as space-separated strings (RFC 6749 section 3.3). A route
requiring several scopes accepts a token that holds at least one of them.
"""

from __future__ import annotations

from typing import Any, Iterable

SCOPE_READ = "read"
SCOPE_WRITE = "write"

DEMO_DEFAULT_SCOPE = "read write"


def parse_scope(claim: Any) -> list[str]:
    """Normalize a scope claim to a list of strings, preserving order.

    Args:
        claim: Space-separated string, list, or None.

    Returns:
        List of scope strings (empty if claim is None or invalid).
    """
    if claim is None:
        return []
    if isinstance(claim, list):
        return [str(s) for s in claim if str(s)]
    if isinstance(claim, str):
        return [s for s in claim.split() if s]
    return []


def format_scope(scopes: Iterable[str]) -> str:
    """Join scopes back into the wire form, dropping duplicates."""
    return " ".join(dict.fromkeys(scopes))


def has_any_scope(token_scopes: Iterable[str], required: Iterable[str]) -> bool:
    """True when ``required`` is empty or shares at least one scope with the token."""
    required_set = set(required)
    if not required_set:
        return True
    return not required_set.isdisjoint(token_scopes)


def is_subset(requested: Iterable[str], allowed: Iterable[str]) -> bool:
    return set(requested) <= set(allowed)
