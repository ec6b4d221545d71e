"""
Service layer primitives shared by the domain apps.

- ServiceResult: success/failure envelope returned by every service operation
- BaseService: logger, transaction and error-boundary helpers

Expected failures (bad OTP, wrong invoice status, insufficient balance) come
back as a failed ServiceResult carrying the domain exception. Unexpected
failures (database outages, bugs) propagate.

Usage:
    from core.services import BaseService, ServiceResult

    class DisputeService(BaseService):
        @classmethod
        def open(cls, shipment, reason) -> ServiceResult[Dispute]:
            try:
                with cls.atomic():
                    dispute = cls._open(shipment, reason)
            except BaseApplicationError as e:
                return cls.handle_exception(e, "open dispute")
            return ServiceResult.success(dispute)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Outcome of a service operation.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful
        error: Human-readable message if failed
        error_code: Machine-readable code (e.g. INSUFFICIENT_BALANCE)
        errors: Field-level errors for validation failures
        details: Context copied from the domain exception
        exception: The domain exception a failure was built from; views map
            its class to an HTTP status

    Usage:
        result = SettlementCoordinator.release_invoice(invoice_id)
        if not result:
            logger.warning(result.error, extra={"error_code": result.error_code})
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    details: dict[str, Any] | None = field(default=None)
    exception: Exception | None = field(default=None, repr=False, compare=False)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """Failed result without an originating exception."""
        return cls(success=False, error=error, error_code=error_code, errors=errors)

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Failed result built from a caught exception.

        Domain exceptions keep their message, code and details. Anything
        else falls back to the exception text and upper-cased class name.
        """
        if isinstance(exc, BaseApplicationError):
            return cls(
                success=False,
                error=exc.message,
                error_code=error_code or exc.error_code,
                details=exc.details or None,
                exception=exc,
            )
        return cls(
            success=False,
            error=str(exc),
            error_code=error_code or exc.__class__.__name__.upper(),
            exception=exc,
        )

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Stateless base for service classes.

    Operations are classmethods; subclasses keep configuration such as
    adapter instances at class level.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the service class, e.g. settlement.services.payouts.PayoutService."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """Run the block in one database transaction."""
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.WARNING,
    ) -> ServiceResult:
        """
        Log ``exc`` and convert it into a failed ServiceResult.

        Expected domain failures log at WARNING without a traceback; pass
        ``log_level=logging.ERROR`` to include one.
        """
        logger = cls.get_logger()
        message = f"{context}: {exc}" if context else str(exc)
        extra = {"error_code": getattr(exc, "error_code", None)}
        logger.log(log_level, message, extra=extra, exc_info=log_level >= logging.ERROR)
        return ServiceResult.from_exception(exc)
