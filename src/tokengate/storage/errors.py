"""Storage-layer exceptions."""

from __future__ import annotations


class TokenStorageError(Exception):
    """A backend operation failed (connection refused, timeout, protocol error).

    Backends wrap their client library's errors in this type; ``TokenStore``
    catches it and degrades to the in-memory backend.

    Attributes:
        operation: Backend method that failed (e.g. ``"set"``).
        backend: Backend name (e.g. ``"redis"``).
    """

    def __init__(self, message: str, *, operation: str, backend: str) -> None:
        super().__init__(message)
        self.operation = operation
        self.backend = backend
