from __future__ import annotations

import logging
import os
import re
import uuid
from typing import Any, Dict, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars

_REDACTED = "[redacted]"
_CREDENTIAL_KEYS = ("password", "secret", "token", "authorization")
# header.payload.signature in base64url; bearer tokens must never reach a log line
_JWT_SHAPE = re.compile(r"^[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}$")


def bind_request_context(request_id: Optional[str] = None, **fields: Any) -> str:
    """Start a fresh log context for one request and return its request id.

    Anything bound here is merged into every log line emitted while the
    request is handled and is what error envelopes report as ``request_id``.
    """
    clear_contextvars()
    rid = (request_id or "").strip()[:128] or str(uuid.uuid4())
    bind_contextvars(request_id=rid, **fields)
    return rid


def clear_request_context() -> None:
    clear_contextvars()


def get_correlation_id() -> Optional[str]:
    """Request id bound for the current context, if any."""
    return get_contextvars().get("request_id")


def _mask_value(key: str, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    lowered = key.lower()
    if any(marker in lowered for marker in _CREDENTIAL_KEYS):
        return _REDACTED
    if lowered == "email" and "@" in value:
        return "***@" + value.rpartition("@")[2]
    if _JWT_SHAPE.match(value):
        return _REDACTED
    return value


def _mask_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Replace credentials, token-shaped strings and email local parts."""
    for key, value in list(event_dict.items()):
        if key == "event":
            continue
        event_dict[key] = _mask_value(key, value)
    return event_dict


def configure_logging(level: str = "INFO", *, renderer: str = "json") -> None:
    """Install the structlog pipeline.

    ``renderer`` is ``json`` for one JSON object per line or ``console`` for
    coloured developer output. Unknown levels fall back to INFO.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _mask_credentials,
        structlog.processors.StackInfoRenderer(),
    ]
    if renderer == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.extend(
            [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    renderer=os.getenv("LOG_FORMAT", "json").strip().lower(),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
