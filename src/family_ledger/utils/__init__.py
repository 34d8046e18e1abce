"""Utility modules for Family Ledger."""

from .logging_utils import (
    RequestLoggingMiddleware,
    log_application_lifecycle,
    log_error_with_context,
    log_performance,
    log_security_event,
)

__all__ = [
    # Performance logging
    "log_performance",
    # Security logging
    "log_security_event",
    # Request logging
    "RequestLoggingMiddleware",
    # Application lifecycle logging
    "log_application_lifecycle",
    "log_error_with_context",
]
