"""Logging utilities for the Explainer Relay.

Structured logging through structlog on top of the standard library, with
either JSON lines or log4j-style lines, and a per-request correlation id
carried in a context variable.
"""

import json
import logging
import os
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import structlog

correlation_id_context: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "asyncio",
    "redis",
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
)


def _log4j_formatter(logger: Any, name: str, event_dict: Dict[str, Any]) -> str:
    """Format logs in log4j style: timestamp [level]: message {json_context}"""
    timestamp = event_dict.pop("timestamp", "")
    level = event_dict.pop("level", "info")
    event = event_dict.pop("event", "")
    event_dict.pop("logger", None)

    if event_dict:
        context_json = json.dumps(event_dict, sort_keys=True, separators=(",", ":"), default=str)
        return f"{timestamp} [{level}]: {event} {context_json}"
    return f"{timestamp} [{level}]: {event}"


def _add_system_context(logger: Any, name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add process id, hostname and the current correlation id."""
    event_dict["pid"] = os.getpid()
    event_dict["hostname"] = os.uname().nodename

    correlation_id = correlation_id_context.get()
    if correlation_id:
        event_dict.setdefault("correlation_id", correlation_id)

    return event_dict


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set correlation ID for the current context, generating one if needed."""
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    correlation_id_context.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID."""
    return correlation_id_context.get()


def clear_correlation_id() -> None:
    """Clear the current correlation ID."""
    correlation_id_context.set(None)


def _processor_chain(json_output: bool, include_system_context: bool) -> List[Any]:
    chain: List[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if include_system_context:
        chain.append(_add_system_context)
    chain.append(structlog.processors.UnicodeDecoder())
    chain.append(structlog.processors.JSONRenderer(sort_keys=True) if json_output else _log4j_formatter)
    return chain


def configure_logging(log_level: str = "INFO", json_output: bool = True, include_system_context: bool = True) -> None:
    """Configure structured logging.

    Args:
        log_level: The minimum log level to output (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output pure JSON format. If False, use log4j-style format.
        include_system_context: If True, include PID, hostname and correlation id.
    """
    logging.getLogger().handlers.clear()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    structlog.configure(
        processors=_processor_chain(json_output, include_system_context),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger, optionally bound to some initial context."""
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


def create_contextual_logger(
    name: str,
    correlation_id: Optional[str] = None,
    **context: Any
) -> structlog.stdlib.BoundLogger:
    """Create a logger bound to a correlation ID and additional context.

    Args:
        name: The logger name (typically __name__ or module path)
        correlation_id: Optional correlation ID. Without one, the id current
            at log time is added by the system context processor.
        **context: Additional context fields to bind to the logger
    """
    bind_context: Dict[str, Any] = dict(context)
    if correlation_id:
        bind_context["correlation_id"] = correlation_id
    return get_logger(name, **bind_context)


def log_exception(
    logger: structlog.stdlib.BoundLogger,
    exception: BaseException,
    message: str = "An error occurred",
    **additional_context: Any
) -> None:
    """Log an exception with its type, message and stack trace."""
    context = {
        "exception_type": type(exception).__name__,
        "exception_message": str(exception),
        **additional_context
    }

    logger.error(message, exc_info=exception, **context)
