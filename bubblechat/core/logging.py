"""
core/logging.py
---------------
structlog configuration for the API process.

DEBUG=true  → coloured console output
DEBUG=false → one JSON object per line

Credentials travel through almost every request (bearer tokens, rotated
tokens, device push tokens), so a redaction processor runs before rendering
and shortens any value logged under a credential key. Call sites may still
use preview() to log a prefix explicitly.
"""

import logging
import sys
import uuid

import structlog

from bubblechat.core.config import settings

CREDENTIAL_KEYS = frozenset(
    {"token", "new_token", "app_key", "push_token", "fcm_token", "authorization"}
)

# Libraries that are only interesting when debugging.
NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "openai")


def preview(secret: str | None, length: int = 12) -> str | None:
    """Shorten a token-like value so it can be logged."""
    if not secret:
        return None
    if secret.endswith("..."):
        return secret
    return secret[:length] + "..."


def redact_credentials(_, __, event_dict: dict) -> dict:
    for key in CREDENTIAL_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = preview(value)
    return event_dict


def bind_request_context(method: str, path: str) -> str:
    """Start a fresh per-request log context; returns the request id."""
    request_id = uuid.uuid4().hex[:12]
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)
    return request_id


def configure_logging() -> None:
    log_level = logging.DEBUG if settings.DEBUG else logging.getLevelName(settings.LOG_LEVEL)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    if not settings.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.DEBUG
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_credentials,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__):
    return structlog.get_logger(name)
