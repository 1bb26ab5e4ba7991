"""Structured logging configuration.

Purpose: JSON-formatted logs with request tracing, so one remote call's
request and reply lines can be matched (client and reference server share the
X-Request-ID header and bind it into the log context).

Pattern: structlog with standard library integration. Store passwords,
client phones and bearer tokens never reach the output.
"""
import contextlib
import logging
import sys
import uuid
from typing import Any, Iterator, MutableMapping, Optional, TextIO

import structlog

REQUEST_ID_HEADER = "X-Request-ID"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

SENSITIVE_KEYS = frozenset({
    "password",
    "phone",
    "client_phone",
    "token",
    "calendar_token",
    "authorization",
})

REDACTED = "***"


def redact_sensitive(logger: Any, method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """structlog processor: mask values of sensitive keys."""
    for key in event_dict:
        if key.lower() in SENSITIVE_KEYS and event_dict[key] not in (None, ""):
            event_dict[key] = REDACTED
    return event_dict


def setup_structured_logging(log_level: str = "INFO", stream: Optional[TextIO] = None):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Output stream (default: stdout)

    Raises:
        ValueError: Unknown log level
    """
    level = log_level.upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"Unknown log level '{log_level}'")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_sensitive,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # force: the CLI and tests reconfigure within one process
    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, level),
        force=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get logger instance with structured logging.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def generate_request_id() -> str:
    """Generate unique request ID."""
    return f"req-{uuid.uuid4().hex[:12]}"


@contextlib.contextmanager
def request_context(request_id: Optional[str] = None) -> Iterator[str]:
    """
    Bind a request ID to every log line emitted inside the block.

    Yields:
        The request ID (minted when not given)
    """
    request_id = request_id or generate_request_id()
    with structlog.contextvars.bound_contextvars(request_id=request_id):
        yield request_id


class RequestIDMiddleware:
    """WSGI middleware: reuse the caller's request ID (or mint one), bind it and echo it back."""

    def __init__(self, app):
        self.app = app

    def __call__(self, environ, start_response):
        request_id = environ.get("HTTP_X_REQUEST_ID") or generate_request_id()
        environ["REQUEST_ID"] = request_id

        def custom_start_response(status, headers, exc_info=None):
            headers.append((REQUEST_ID_HEADER, request_id))
            return start_response(status, headers, exc_info)

        with request_context(request_id):
            return self.app(environ, custom_start_response)
