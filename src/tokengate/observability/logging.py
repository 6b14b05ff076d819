"""structlog setup for tokengate.

Every log line goes through the same processor chain, whether it was emitted
through ``get_logger`` or through a plain ``logging`` logger (uvicorn, redis).
The chain redacts credential-bearing fields before rendering, so a raw token,
client secret or Authorization header never reaches the output even when a
caller logs a whole request form.

Environment Variables:
    TOKENGATE_LOG_FORMAT: "json" for one JSON object per line, "console" for
        human-readable colored output (default)
    TOKENGATE_LOG_LEVEL: DEBUG, INFO (default), WARNING or ERROR
    TOKENGATE_SERVICE_NAME: value of the ``service`` field on every line

Example:
    >>> from tokengate.observability.logging import configure_logging, get_logger
    >>> configure_logging(log_format="json", log_level="DEBUG")
    >>> get_logger(__name__).info("tokengate.issuer.tokens_issued", jti="3f0c...")
"""

import logging
import os
import sys
from typing import Any, MutableMapping, Optional

import structlog
from structlog.typing import Processor

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "console"
DEFAULT_SERVICE_NAME = "tokengate"

ENV_LOG_FORMAT = "TOKENGATE_LOG_FORMAT"
ENV_LOG_LEVEL = "TOKENGATE_LOG_LEVEL"
ENV_SERVICE_NAME = "TOKENGATE_SERVICE_NAME"

REDACTED_PLACEHOLDER = "***REDACTED***"

_SENSITIVE_FRAGMENTS = ("password", "token", "secret", "authorization")

# Field names that contain a sensitive fragment but never carry a credential.
_SAFE_KEYS = frozenset({"token_type", "token_use", "token_type_hint", "token_client_id"})

_configured = False


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    if lowered in _SAFE_KEYS:
        return False
    return any(fragment in lowered for fragment in _SENSITIVE_FRAGMENTS)


def sanitize_for_logging(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with credential-bearing values replaced.

    Keys containing password, token, secret or authorization (case-insensitive)
    are redacted, except for descriptive fields such as ``token_type``. Nested
    dicts and dicts inside lists are sanitized too.

    Example:
        >>> sanitize_for_logging({"grant_type": "refresh_token", "refresh_token": "9f2c"})
        {'grant_type': 'refresh_token', 'refresh_token': '***REDACTED***'}
    """
    clean: dict[str, Any] = {}
    for key, value in data.items():
        if _is_sensitive_key(key):
            clean[key] = REDACTED_PLACEHOLDER
        elif isinstance(value, dict):
            clean[key] = sanitize_for_logging(value)
        elif isinstance(value, list):
            clean[key] = [
                sanitize_for_logging(item) if isinstance(item, dict) else item for item in value
            ]
        else:
            clean[key] = value
    return clean


def redact_sensitive_fields(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor applying ``sanitize_for_logging`` to every event."""
    return sanitize_for_logging(dict(event_dict))


def _setting(explicit: Optional[str], env_name: str, default: str) -> str:
    if explicit:
        return explicit
    return os.environ.get(env_name, default)


def _processor_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        redact_sensitive_fields,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=True, exception_formatter=structlog.dev.plain_traceback
    )


def configure_logging(
    log_format: Optional[str] = None,
    log_level: Optional[str] = None,
    service_name: Optional[str] = None,
    force: bool = False,
) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Arguments override the ``TOKENGATE_LOG_*`` environment variables. Once
    configured, later calls are ignored unless ``force`` is True (the CLI
    forces its ``--log-level``).
    """
    global _configured
    if _configured and not force:
        return

    fmt = _setting(log_format, ENV_LOG_FORMAT, DEFAULT_LOG_FORMAT).lower()
    level = _setting(log_level, ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL).upper()
    service = _setting(service_name, ENV_SERVICE_NAME, DEFAULT_SERVICE_NAME)

    chain = _processor_chain()
    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(fmt),
            ],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level))

    structlog.contextvars.bind_contextvars(service=service)
    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for ``name``; configures defaults on first use."""
    if not _configured:
        configure_logging()
    return structlog.stdlib.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Attach fields (e.g. ``request_id``) to every later line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
