"""
Domain error taxonomy and its HTTP mapping.

Managers raise these errors; routes convert them with ``http_exception_from`` so every endpoint answers with the
same ``{"error": CODE, "message": ...}`` detail shape.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from fastapi import HTTPException, status
from pymongo.errors import PyMongoError

from family_ledger.managers.logging_manager import get_logger
from family_ledger.utils.logging_utils import log_error_with_context

logger = get_logger(prefix="[ERRORS]")


class LedgerError(Exception):
    """Base exception for all domain failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "LEDGER_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)


class ValidationError(LedgerError):
    """Malformed or missing input."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "VALIDATION_ERROR"


class Unauthenticated(LedgerError):
    """No principal could be resolved from the request."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "UNAUTHENTICATED"


class Forbidden(LedgerError):
    """Authenticated, but not allowed to touch this resource."""

    status_code = status.HTTP_403_FORBIDDEN
    default_code = "FORBIDDEN"


class NotFound(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class Conflict(LedgerError):
    """Uniqueness violation or concurrent modification."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "CONFLICT"


class StateViolation(LedgerError):
    """The request is well formed but would break a membership invariant."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "STATE_VIOLATION"


class CodeGenerationExhausted(LedgerError):
    """Every invite code drawn collided with an existing one."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "INVITE_CODE_EXHAUSTED"


class RateLimitExceeded(LedgerError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_code = "RATE_LIMIT_EXCEEDED"


class ExternalServiceError(LedgerError):
    """An external collaborator (the receipt vision service) failed or is not configured."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "RECEIPT_SCAN_FAILED"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, error_code, context)
        if status_code is not None:
            self.status_code = status_code


def error_detail(error: LedgerError) -> Dict[str, Any]:
    return {"error": error.error_code, "message": error.message}


def http_exception_from(error: LedgerError) -> HTTPException:
    """Convert a domain error into the HTTPException the routes raise."""
    headers = None
    if isinstance(error, Unauthenticated):
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(status_code=error.status_code, detail=error_detail(error), headers=headers)


def internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "INTERNAL_ERROR", "message": "An unexpected error occurred"},
    )


@contextmanager
def translate_errors(operation: str, **context: Any) -> Iterator[None]:
    """
    Route-level error boundary.

    Domain errors become their HTTPException; driver failures are logged with context and answered with 500.
    """
    try:
        yield
    except LedgerError as e:
        logger.info("%s refused: %s (%s)", operation, e.error_code, e.message)
        raise http_exception_from(e) from e
    except PyMongoError as e:
        log_error_with_context(e, context=context, operation=operation)
        raise internal_error() from e
