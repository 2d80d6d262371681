"""Structured logging setup.

Learn: every module logs through structlog.get_logger() with dotted event
names ("auth.login_failed", "request.completed"). configure_logging() is
called once from the app factory; the request id middleware binds the
request id into structlog's contextvars so it shows up on every line.
"""

import logging
import sys
from typing import Any, Mapping

import structlog

SENSITIVE_KEYS = ("password", "token", "authorization", "secret", "api_key", "x-api-key")

REDACTED = "[redacted]"


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Route stdlib and structlog output to stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # uvicorn's access log duplicates request.completed
    logging.getLogger("uvicorn.access").disabled = True

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def redact(data: Any) -> Any:
    """Return a copy of data with sensitive values masked, for log context."""
    if isinstance(data, Mapping):
        return {
            key: REDACTED
            if any(s in str(key).lower() for s in SENSITIVE_KEYS)
            else redact(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact(item) for item in data]
    return data
