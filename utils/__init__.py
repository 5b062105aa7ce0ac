"""Utility modules for the Explainer Relay."""

from .logging import (
    configure_logging,
    create_contextual_logger,
    get_logger,
    log_exception,
    set_correlation_id,
    get_correlation_id,
    clear_correlation_id,
)
from .timeutils import next_utc_midnight, utc_day_stamp, utc_now

__all__ = [
    "configure_logging",
    "create_contextual_logger",
    "get_logger",
    "log_exception",
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "next_utc_midnight",
    "utc_day_stamp",
    "utc_now",
]
