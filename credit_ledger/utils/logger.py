"""Structured logging for the credit ledger.

Request context (request id, client ip) bound by the HTTP middleware and the
owner or maintenance job being worked on are kept in ``structlog.contextvars``
and stamped onto every event emitted while they are bound.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import structlog
from fastapi import Request
from structlog.stdlib import ProcessorFormatter

_CONTEXT_KEYS = ("request_id", "ip_address", "job", "owner")

# Libraries whose INFO output drowns out ledger events
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "redis")


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # First hop is the original client
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


def add_ledger_context(
    logger: structlog.BoundLogger, method_name: str, event_dict: dict
) -> dict:
    context_vars = structlog.contextvars.get_contextvars()
    for key in _CONTEXT_KEYS:
        value = context_vars.get(key)
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


@contextmanager
def log_context(**values) -> Iterator[None]:
    """Bind ``owner``/``job`` style context for the duration of the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield


def setup_logging(is_production: bool = False, level: str = "INFO"):
    """Console output in development, JSON lines in production."""
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    shared_processors: list = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_ledger_context,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if is_production:
        renderer = structlog.processors.JSONRenderer(sort_keys=False)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True, pad_event=8)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processor=renderer))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    # uvicorn access lines are replaced by the request middleware
    logging.getLogger("uvicorn").handlers = []
    logging.getLogger("uvicorn.access").handlers = []
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return structlog.get_logger("credit_ledger")


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance with optional name."""
    return structlog.get_logger(name)
