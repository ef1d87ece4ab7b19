"""Structured logging with per-session context using structlog and contextvars."""

import logging
from contextvars import ContextVar

import structlog

# Context variables for the bulk session and subject currently being processed
current_session_id: ContextVar[str | None] = ContextVar("current_session_id", default=None)
current_subject_id: ContextVar[str | None] = ContextVar("current_subject_id", default=None)

_configured = False


def setup_structured_logging(level: str = "INFO") -> None:
    """Configure structlog with JSON output and per-session context.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    global _configured
    if _configured:
        return

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
    )

    _configured = True


def bind_session_context(session_id: str, subject_id: str | None = None) -> None:
    """Bind bulk session context for all subsequent logs in this async context.

    Args:
        session_id: Bulk session identifier
        subject_id: Identifier of the subject currently being researched
    """
    current_session_id.set(session_id)
    current_subject_id.set(subject_id)
    structlog.contextvars.bind_contextvars(session_id=session_id, subject_id=subject_id)


def clear_session_context() -> None:
    """Clear session context after a bulk run stops."""
    current_session_id.set(None)
    current_subject_id.set(None)
    structlog.contextvars.clear_contextvars()


def get_session_logger(name: str = "mcp_server_company_research") -> structlog.stdlib.BoundLogger:
    """Get a structlog logger carrying the bound session context."""
    return structlog.get_logger(name)


def get_current_session_id() -> str | None:
    """Get the current bulk session ID from context."""
    return current_session_id.get()


def get_current_subject_id() -> str | None:
    """Get the current subject ID from context."""
    return current_subject_id.get()
