"""
Tests for ServiceResult and BaseService in core/services.py.

This module tests:
- Failed results built from domain and foreign exceptions
- Boolean evaluation of results
- handle_exception logging and conversion
"""

import logging

import pytest

from core.exceptions import ConflictError, NotFoundError
from core.services import BaseService, ServiceResult


class InvoiceLookupService(BaseService):
    pass


@pytest.mark.unit
class TestServiceResult:
    """Tests for the success/failure envelope."""

    def test_success_is_truthy(self):
        result = ServiceResult.success({"invoice": "inv_1"})

        assert result
        assert result.data == {"invoice": "inv_1"}
        assert result.error is None

    def test_failure_is_falsy(self):
        result = ServiceResult.failure("Amount must be positive", "VALIDATION_ERROR")

        assert not result
        assert result.error_code == "VALIDATION_ERROR"
        assert result.exception is None

    def test_from_domain_exception_keeps_code_and_details(self):
        exc = ConflictError(
            "Invoice is not FUNDED",
            error_code="INVALID_STATE_TRANSITION",
            details={"status": "ISSUED"},
        )

        result = ServiceResult.from_exception(exc)

        assert result.success is False
        assert result.error == "Invoice is not FUNDED"
        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert result.details == {"status": "ISSUED"}
        assert result.exception is exc

    def test_from_domain_exception_without_details(self):
        result = ServiceResult.from_exception(NotFoundError("Payout missing"))

        assert result.error_code == "NOT_FOUND"
        assert result.details is None

    def test_code_override(self):
        result = ServiceResult.from_exception(NotFoundError("gone"), error_code="PAYOUT_NOT_FOUND")

        assert result.error_code == "PAYOUT_NOT_FOUND"

    def test_foreign_exception_uses_class_name(self):
        result = ServiceResult.from_exception(KeyError("order_id"))

        assert result.error_code == "KEYERROR"
        assert "order_id" in result.error


@pytest.mark.unit
class TestBaseService:
    """Tests for the shared service helpers."""

    def test_logger_is_named_after_service(self):
        logger = InvoiceLookupService.get_logger()

        assert logger.name == f"{__name__}.InvoiceLookupService"

    def test_handle_exception_logs_warning(self, caplog):
        exc = NotFoundError("Invoice inv_9 not found", error_code="INVOICE_NOT_FOUND")

        with caplog.at_level(logging.WARNING):
            result = InvoiceLookupService.handle_exception(exc, "release invoice")

        assert result.error_code == "INVOICE_NOT_FOUND"
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.getMessage() == "release invoice: [INVOICE_NOT_FOUND] Invoice inv_9 not found"
        assert record.error_code == "INVOICE_NOT_FOUND"
        assert record.exc_info is None
