"""
Structured logging with structlog.

Application code logs through get_logger(); the grounding services log
through stdlib logging and end up in the same handler. Request and
conversation ids live in context variables and are copied onto every
entry logged while they are set.
"""
import logging
import sys
from contextvars import ContextVar
from typing import Any, Optional

import structlog
from config import settings


conversation_id_var: ContextVar[Optional[str]] = ContextVar("conversation_id", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

_CORRELATION_VARS = (
    ("conversation_id", conversation_id_var),
    ("request_id", request_id_var),
    ("user_id", user_id_var),
)

# Chatty at INFO: one line per HTTP request or pool event
QUIET_LOGGERS = ("httpx", "httpcore", "asyncpg")


def set_correlation_context(
    conversation_id: Optional[str] = None,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """Bind ids for the rest of the request or turn; None leaves a value as is."""
    values = {"conversation_id": conversation_id, "request_id": request_id, "user_id": user_id}
    for name, var in _CORRELATION_VARS:
        if values[name] is not None:
            var.set(values[name])


def clear_correlation_context() -> None:
    for _, var in _CORRELATION_VARS:
        var.set(None)


def add_correlation_ids(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Structlog processor copying the bound ids onto the entry."""
    for name, var in _CORRELATION_VARS:
        value = var.get()
        if value:
            event_dict.setdefault(name, value)
    return event_dict


def configure_logging(level: Optional[str] = None, structured: Optional[bool] = None) -> None:
    """
    Configure stdlib logging and structlog.

    Args:
        level: Log level name; defaults to LOG_LEVEL
        structured: JSON output instead of the console renderer; defaults
            to ENABLE_STRUCTURED_LOGGING
    """
    level_name = (level or settings.log_level).upper()
    structured = settings.enable_structured_logging if structured is None else structured

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if structured
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_correlation_ids,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Structured logger for name (typically __name__)."""
    return structlog.get_logger(name)


configure_logging()
