"""Configuration for the tokengate authorization server.

``OAuthSettings`` holds the whole configuration surface. Build it from the
environment with ``OAuthSettings.from_env()`` or construct it directly (tests,
embedding applications). The signing secret has no default: a process without
``TOKENGATE_JWT_SECRET`` fails at startup with ``ConfigurationError``.

Environment Variables:
    TOKENGATE_JWT_SECRET: HMAC signing secret (required)
    TOKENGATE_ACCESS_TOKEN_EXPIRY / TOKENGATE_REFRESH_TOKEN_EXPIRY: lifetimes in seconds
    TOKENGATE_JWT_ALGORITHM: HS256, HS384 or HS512
    TOKENGATE_ISSUER / TOKENGATE_AUDIENCE: iss / aud claim values
    TOKENGATE_TOKEN_STORAGE: "memory" or "redis"
    TOKENGATE_REDIS_URL / TOKENGATE_REDIS_PASSWORD / TOKENGATE_REDIS_KEY_PREFIX
    TOKENGATE_TOKEN_ROTATION / TOKENGATE_REVOKE_OLD_TOKENS / TOKENGATE_MAX_TOKENS_PER_USER
    TOKENGATE_REQUIRE_HTTPS, TOKENGATE_TOKEN_ENTROPY, TOKENGATE_HASH_ALGORITHM
    TOKENGATE_INTROSPECTION_CACHE / TOKENGATE_INTROSPECTION_CACHE_TTL
    TOKENGATE_CLIENT_ID / TOKENGATE_CLIENT_SECRET / TOKENGATE_CLIENTS_FILE
"""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from tokengate.errors import ConfigurationError
from tokengate.models.entities import Client

ENV_PREFIX = "TOKENGATE_"

SUPPORTED_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})
STORAGE_BACKENDS = frozenset({"memory", "redis"})

DEFAULT_ACCESS_TOKEN_TTL = 3600
DEFAULT_REFRESH_TOKEN_TTL = 604800
DEFAULT_INTROSPECTION_CACHE_TTL = 300
DEFAULT_CLIENT_ID = "weather-api-client"
DEFAULT_CLIENT_SECRET = "default-client-secret"
DEFAULT_OAUTH_RATE_LIMIT = "100 per 15 minutes"
DEFAULT_INTROSPECT_RATE_LIMIT = "60 per minute"

_TRUTHY = ("true", "1", "yes", "on")
_FALSY = ("false", "0", "no", "off")


def default_client(
    client_id: str = DEFAULT_CLIENT_ID, secret: str = DEFAULT_CLIENT_SECRET
) -> Client:
    """The client every deployment ships with."""
    return Client(
        id=client_id,
        secret=secret,
        name="Weather API Client",
        scopes=["read", "write"],
        grant_types=["authorization_code", "refresh_token", "client_credentials"],
        is_confidential=True,
    )


@dataclass(frozen=True)
class OAuthSettings:
    """Configuration surface of the authorization server.

    Attributes:
        jwt_secret: HMAC key for access-token signatures. Required.
        access_token_ttl: Access-token lifetime in seconds.
        refresh_token_ttl: Refresh-token lifetime in seconds.
        algorithm: JWS algorithm for access tokens.
        not_before_offset: Seconds added to ``iat`` to form ``nbf``.
        issuer: ``iss`` claim and introspection ``iss`` value.
        audience: Default ``aud`` claim when no client id is known.
        storage_backend: "redis" prefers Redis with in-memory fallback; "memory" never connects.
        redis_url: Redis connection URL.
        redis_password: Optional Redis password.
        key_prefix: Prefix for every Redis key.
        token_rotation: Revoke the presented refresh token when it is used.
        revoke_old_tokens: Enforce ``max_tokens_per_user`` at issuance.
        max_tokens_per_user: Live access tokens a user may hold before all are revoked.
        require_https: Reject protected resource requests made over plain HTTP.
        token_entropy: Random bytes in an opaque refresh token.
        hash_algorithm: hashlib algorithm deriving store keys from raw secrets.
        introspection_cache_enabled: Cache introspection verdicts.
        introspection_cache_ttl: Lifetime of a cached verdict in seconds.
        sweep_interval: Seconds between in-memory expiry sweeps; 0 disables the sweeper.
        enable_demo_issue: Expose ``POST /oauth/demo/issue``.
        oauth_rate_limit: ``limits`` string applied per client address to all OAuth routes.
        introspect_rate_limit: Additional limit for ``/oauth/introspect``.
        rate_limit_storage_uri: ``limits`` storage URI shared by workers (e.g. ``redis://``);
            unset keeps counters in process memory.
        clients: Registered clients.
    """

    jwt_secret: str = field(repr=False)
    access_token_ttl: int = DEFAULT_ACCESS_TOKEN_TTL
    refresh_token_ttl: int = DEFAULT_REFRESH_TOKEN_TTL
    algorithm: str = "HS256"
    not_before_offset: int = 0
    issuer: str = "weather-api-oauth"
    audience: str = "weather-api"
    storage_backend: str = "memory"
    redis_url: str = "redis://localhost:6379"
    redis_password: Optional[str] = field(default=None, repr=False)
    key_prefix: str = "oauth:"
    token_rotation: bool = True
    revoke_old_tokens: bool = True
    max_tokens_per_user: int = 5
    require_https: bool = False
    token_entropy: int = 32
    hash_algorithm: str = "sha256"
    introspection_cache_enabled: bool = True
    introspection_cache_ttl: int = DEFAULT_INTROSPECTION_CACHE_TTL
    sweep_interval: float = 60.0
    enable_demo_issue: bool = True
    oauth_rate_limit: str = DEFAULT_OAUTH_RATE_LIMIT
    introspect_rate_limit: str = DEFAULT_INTROSPECT_RATE_LIMIT
    rate_limit_storage_uri: Optional[str] = None
    clients: tuple[Client, ...] = field(default_factory=lambda: (default_client(),))

    def __post_init__(self) -> None:
        if not self.jwt_secret:
            raise ConfigurationError(
                f"{ENV_PREFIX}JWT_SECRET is not set; refusing to start without a signing secret"
            )
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise ConfigurationError(
                f"Unsupported signing algorithm {self.algorithm!r}. "
                f"Use one of: {', '.join(sorted(SUPPORTED_ALGORITHMS))}"
            )
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ConfigurationError(
                f"Unknown {ENV_PREFIX}TOKEN_STORAGE={self.storage_backend!r}. Use 'memory' or 'redis'."
            )
        if self.hash_algorithm not in hashlib.algorithms_available:
            raise ConfigurationError(f"Unknown hash algorithm {self.hash_algorithm!r}")
        for name in ("access_token_ttl", "refresh_token_ttl", "introspection_cache_ttl"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.max_tokens_per_user < 1:
            raise ConfigurationError("max_tokens_per_user must be at least 1")
        if self.token_entropy < 16:
            raise ConfigurationError("token_entropy must be at least 16 bytes")
        if self.sweep_interval < 0:
            raise ConfigurationError("sweep_interval must not be negative")
        if not self.clients:
            raise ConfigurationError("At least one client must be registered")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OAuthSettings:
        """Load settings from ``TOKENGATE_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ`` (tests).

        Raises:
            ConfigurationError: If the secret is missing or a value is invalid.
        """
        env = _Env(os.environ if environ is None else environ)
        clients = [
            default_client(
                env.str("CLIENT_ID", DEFAULT_CLIENT_ID),
                env.str("CLIENT_SECRET", DEFAULT_CLIENT_SECRET),
            )
        ]
        clients_file = env.str("CLIENTS_FILE", "")
        if clients_file:
            clients.extend(load_clients_file(Path(clients_file)))

        return cls(
            jwt_secret=env.str("JWT_SECRET", ""),
            access_token_ttl=env.int("ACCESS_TOKEN_EXPIRY", DEFAULT_ACCESS_TOKEN_TTL),
            refresh_token_ttl=env.int("REFRESH_TOKEN_EXPIRY", DEFAULT_REFRESH_TOKEN_TTL),
            algorithm=env.str("JWT_ALGORITHM", "HS256").upper(),
            not_before_offset=env.int("NOT_BEFORE", 0),
            issuer=env.str("ISSUER", "weather-api-oauth"),
            audience=env.str("AUDIENCE", "weather-api"),
            storage_backend=env.str("TOKEN_STORAGE", "memory").lower(),
            redis_url=env.str("REDIS_URL", "redis://localhost:6379"),
            redis_password=env.str("REDIS_PASSWORD", "") or None,
            key_prefix=env.str("REDIS_KEY_PREFIX", "oauth:"),
            token_rotation=env.bool("TOKEN_ROTATION", True),
            revoke_old_tokens=env.bool("REVOKE_OLD_TOKENS", True),
            max_tokens_per_user=env.int("MAX_TOKENS_PER_USER", 5),
            require_https=env.bool("REQUIRE_HTTPS", False),
            token_entropy=env.int("TOKEN_ENTROPY", 32),
            hash_algorithm=env.str("HASH_ALGORITHM", "sha256").lower(),
            introspection_cache_enabled=env.bool("INTROSPECTION_CACHE", True),
            introspection_cache_ttl=env.int(
                "INTROSPECTION_CACHE_TTL", DEFAULT_INTROSPECTION_CACHE_TTL
            ),
            sweep_interval=env.float("SWEEP_INTERVAL", 60.0),
            enable_demo_issue=env.bool("ENABLE_DEMO_ISSUE", True),
            oauth_rate_limit=env.str("RATE_LIMIT", DEFAULT_OAUTH_RATE_LIMIT),
            introspect_rate_limit=env.str("INTROSPECT_RATE_LIMIT", DEFAULT_INTROSPECT_RATE_LIMIT),
            rate_limit_storage_uri=env.str("RATE_LIMIT_STORAGE_URI", "") or None,
            clients=tuple(clients),
        )


def load_clients_file(path: Path) -> list[Client]:
    """Read additional clients from a JSON file holding a list of client objects.

    Raises:
        ConfigurationError: If the file is unreadable or a client is invalid.
    """
    try:
        data: Any = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read clients file {path}: {exc}") from exc
    if not isinstance(data, list):
        raise ConfigurationError(f"Clients file {path} must contain a JSON list")
    try:
        return [Client.model_validate(item) for item in data]
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid client in {path}: {exc}") from exc


class _Env:
    """Typed reads of ``TOKENGATE_*`` variables."""

    def __init__(self, environ: Mapping[str, str]) -> None:
        self._environ = environ

    def str(self, name: str, default: str) -> str:
        return self._environ.get(ENV_PREFIX + name, default).strip()

    def int(self, name: str, default: int) -> int:
        raw = self._environ.get(ENV_PREFIX + name)
        if raw is None or not raw.strip():
            return default
        try:
            return int(raw)
        except ValueError as exc:
            raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc

    def float(self, name: str, default: float) -> float:
        raw = self._environ.get(ENV_PREFIX + name)
        if raw is None or not raw.strip():
            return default
        try:
            return float(raw)
        except ValueError as exc:
            raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from exc

    def bool(self, name: str, default: bool) -> bool:
        raw = self._environ.get(ENV_PREFIX + name)
        if raw is None or not raw.strip():
            return default
        value = raw.strip().lower()
        if value in _TRUTHY:
            return True
        if value in _FALSY:
            return False
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be a boolean, got {raw!r}")
