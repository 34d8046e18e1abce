"""Logging utilities for comprehensive application logging.

This module provides decorators, middleware, and helpers for request tracing, performance timing,
security events, and error context.
"""

import asyncio
from datetime import datetime, timezone
import functools
import os
import time
import traceback
from typing import Any, Callable, Dict, Optional
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from family_ledger.config import settings
from family_ledger.managers.logging_manager import get_logger

SLOW_OPERATION_SECONDS = 2.0
SLOW_REQUEST_SECONDS = 1.0

_SENSITIVE_KEYS = {
    "password",
    "token",
    "secret",
    "key",
    "auth",
    "credential",
    "hash",
    "digest",
    "signature",
    "image",
}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request/response logging middleware for FastAPI.

    Logs every request and response as a structured dict with timing, status code, and client info.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.logger = get_logger(name="Family_Ledger_Requests", prefix="[REQUEST]")

    def _base_event(self, event: str, request_id: str, request: Request, client_ip: str) -> Dict[str, Any]:
        return {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": request_id,
            "method": request.method,
            "path": str(request.url.path),
            "client_ip": client_ip,
            "user_agent": request.headers.get("user-agent", "unknown"),
            "process": os.getpid(),
            "app": settings.APP_NAME,
            "env": settings.ENV,
        }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        start_time = time.time()
        client_ip = self._get_client_ip(request)

        log_data = self._base_event("request_received", request_id, request, client_ip)
        log_data["query_params"] = str(request.url.query) if request.url.query else None
        self.logger.info(log_data)

        try:
            response = await call_next(request)
        except Exception as e:
            error_log = self._base_event("request_error", request_id, request, client_ip)
            error_log.update(
                {
                    "duration": time.time() - start_time,
                    "exception": str(e),
                    "stack_trace": traceback.format_exc(),
                }
            )
            self.logger.error(error_log)
            raise

        duration = time.time() - start_time
        response_log = self._base_event("response_sent", request_id, request, client_ip)
        response_log.update({"status_code": response.status_code, "duration": duration})
        self.logger.info(response_log)

        if duration > SLOW_REQUEST_SECONDS:
            slow_log = response_log.copy()
            slow_log["event"] = "slow_request"
            self.logger.warning(slow_log)

        response.headers["X-Request-ID"] = request_id
        return response

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        return getattr(request.client, "host", "unknown")


def log_performance(operation_name: str, log_args: bool = False):
    """
    Decorator for logging function/method performance with timing.

    Args:
        operation_name: Name of the operation for logging
        log_args: Whether to log function arguments (sensitive values are redacted)
    """

    def decorator(func: Callable) -> Callable:
        logger = get_logger(name="Family_Ledger_Performance", prefix="[PERFORMANCE]")

        def _start(args, kwargs) -> str:
            operation_id = str(uuid.uuid4())[:8]
            if log_args and (args or kwargs):
                logger.info("[%s] Starting %s with args: %s", operation_id, operation_name, _sanitize_args(args, kwargs))
            else:
                logger.debug("[%s] Starting %s", operation_id, operation_name)
            return operation_id

        def _done(operation_id: str, start_time: float) -> None:
            duration = time.time() - start_time
            logger.info("[%s] Completed %s in %.3fs", operation_id, operation_name, duration)
            if duration > SLOW_OPERATION_SECONDS:
                logger.warning("[%s] SLOW OPERATION: %s took %.3fs", operation_id, operation_name, duration)

        def _failed(operation_id: str, start_time: float, error: Exception) -> None:
            duration = time.time() - start_time
            logger.error("[%s] Failed %s after %.3fs: %s", operation_id, operation_name, duration, str(error))

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.time()
            operation_id = _start(args, kwargs)
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _failed(operation_id, start_time, e)
                raise
            _done(operation_id, start_time)
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            operation_id = _start(args, kwargs)
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _failed(operation_id, start_time, e)
                raise
            _done(operation_id, start_time)
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    success: bool = True,
    details: Optional[Dict[str, Any]] = None,
):
    """
    Log security-related events with proper context.

    Args:
        event_type: Type of security event (login, family_join, access_denied, etc.)
        user_id: User identifier if available
        ip_address: Client IP address if available
        success: Whether the security event was successful
        details: Additional event details
    """
    logger = get_logger(name="Family_Ledger_Security", prefix="[SECURITY]")

    event_data = {
        "event_type": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "success": success,
        "user_id": user_id or "anonymous",
        "ip_address": ip_address or "unknown",
    }

    if details:
        event_data["details"] = _sanitize_security_details(details)

    status = "SUCCESS" if success else "FAILURE"
    logger.info("SECURITY EVENT [%s]: %s - %s", status, event_type, event_data)


def log_application_lifecycle(event: str, details: Optional[Dict[str, Any]] = None):
    """Log application lifecycle events (startup, shutdown, etc.)."""
    logger = get_logger(name="Family_Ledger_Lifecycle", prefix="[LIFECYCLE]")

    event_data = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    if details:
        event_data.update(details)

    logger.info("APPLICATION LIFECYCLE: %s - %s", event, event_data)


def log_error_with_context(error: Exception, context: Optional[Dict[str, Any]] = None, operation: Optional[str] = None):
    """
    Log errors with full context and stack trace.

    Args:
        error: The exception that occurred
        context: Additional context information
        operation: Name of the operation that failed
    """
    logger = get_logger(name="Family_Ledger_Errors", prefix="[ERROR]")

    error_data = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "stack_trace": traceback.format_exc(),
    }
    if operation:
        error_data["operation"] = operation
    if context:
        error_data["context"] = _sanitize_args((), context)

    logger.error("ERROR OCCURRED: %s", error_data)


def _is_sensitive(name: str) -> bool:
    lowered = name.lower()
    return any(key in lowered for key in _SENSITIVE_KEYS)


def _truncate(value: Any, limit: int = 100) -> str:
    text = str(value)
    return text[:limit] + ("..." if len(text) > limit else "")


def _sanitize_args(args: tuple, kwargs: dict) -> dict:
    """Redact sensitive-looking arguments and truncate long ones."""
    sanitized: Dict[str, Any] = {}
    if args:
        sanitized["args"] = ["<REDACTED>" if _is_sensitive(str(arg)) else _truncate(arg) for arg in args]
    if kwargs:
        sanitized["kwargs"] = {
            key: "<REDACTED>" if _is_sensitive(key) else _truncate(value) for key, value in kwargs.items()
        }
    return sanitized


def _sanitize_security_details(details: Dict[str, Any]) -> Dict[str, Any]:
    sanitized = {}
    for key, value in details.items():
        if _is_sensitive(key):
            sanitized[key] = "<REDACTED>"
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_security_details(value)
        else:
            sanitized[key] = value
    return sanitized
