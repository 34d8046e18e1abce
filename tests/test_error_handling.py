"""Tests for the domain error taxonomy and its HTTP mapping."""

from fastapi import HTTPException
from pymongo.errors import PyMongoError
import pytest

from family_ledger.utils.error_handling import (
    CodeGenerationExhausted,
    Conflict,
    ExternalServiceError,
    Forbidden,
    NotFound,
    StateViolation,
    Unauthenticated,
    ValidationError,
    http_exception_from,
    translate_errors,
)


class TestHttpMapping:
    @pytest.mark.parametrize(
        "error, status_code",
        [
            (ValidationError("bad"), 400),
            (Unauthenticated("who"), 401),
            (Forbidden("no"), 403),
            (NotFound("gone"), 404),
            (Conflict("dup"), 409),
            (StateViolation("last admin", "LAST_ADMIN"), 400),
            (CodeGenerationExhausted("full"), 500),
            (ExternalServiceError("down"), 502),
            (ExternalServiceError("off", "RECEIPT_SCAN_UNAVAILABLE", status_code=503), 503),
        ],
    )
    def test_status_codes(self, error, status_code):
        assert http_exception_from(error).status_code == status_code

    def test_detail_shape(self):
        exc = http_exception_from(Conflict("Already a member", "ALREADY_MEMBER"))
        assert exc.detail == {"error": "ALREADY_MEMBER", "message": "Already a member"}

    def test_default_codes(self):
        assert ValidationError("bad").error_code == "VALIDATION_ERROR"
        assert CodeGenerationExhausted("full").error_code == "INVITE_CODE_EXHAUSTED"

    def test_unauthenticated_carries_challenge(self):
        assert http_exception_from(Unauthenticated("who")).headers == {"WWW-Authenticate": "Bearer"}


class TestTranslateErrors:
    def test_domain_error_becomes_http_exception(self):
        with pytest.raises(HTTPException) as exc_info:
            with translate_errors("join_family", user_id="bob"):
                raise NotFound("Invalid invite code", "INVITE_CODE_NOT_FOUND")
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail["error"] == "INVITE_CODE_NOT_FOUND"

    def test_driver_error_becomes_internal_error(self):
        with pytest.raises(HTTPException) as exc_info:
            with translate_errors("list_families", user_id="bob"):
                raise PyMongoError("connection reset")
        assert exc_info.value.status_code == 500
        assert exc_info.value.detail["error"] == "INTERNAL_ERROR"

    def test_success_passes_through(self):
        with translate_errors("noop"):
            value = 1
        assert value == 1
