"""
Shared plumbing for settlement services.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError as DjangoValidationError

from django_fsm import ConcurrentTransition, TransitionNotAllowed

from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult
from settlement.exceptions import InvalidInvoiceTransition, SettlementNotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable


class SettlementService(BaseService):
    """
    BaseService with the settlement error boundary.

    ``_run`` executes an operation (optionally in a transaction) and turns
    every domain error into a typed ServiceResult failure. Lost
    compare-and-swap races surface as INVALID_STATE_TRANSITION conflicts.
    """

    @classmethod
    def _run(cls, context: str, operation: Callable, atomic: bool = True) -> ServiceResult:
        try:
            if atomic:
                with cls.atomic():
                    return ServiceResult.success(operation())
            return ServiceResult.success(operation())
        except (ConcurrentTransition, TransitionNotAllowed) as e:
            conflict = InvalidInvoiceTransition(
                "Record status changed while the operation was running",
                details={"reason": str(e)},
            )
            return cls.handle_exception(conflict, context)
        except BaseApplicationError as e:
            return cls.handle_exception(e, context)

    @staticmethod
    def _lock(model, pk, label: str | None = None):
        """select_for_update a row by primary key or raise a typed not-found."""
        label = label or model.__name__
        try:
            return model.objects.select_for_update().get(pk=pk)
        except (model.DoesNotExist, DjangoValidationError):
            raise SettlementNotFoundError(
                f"{label} {pk} not found",
                error_code=f"{model.__name__.upper()}_NOT_FOUND",
                details={"id": str(pk)},
            )

    @staticmethod
    def _get(model, pk, label: str | None = None):
        label = label or model.__name__
        try:
            return model.objects.get(pk=pk)
        except (model.DoesNotExist, DjangoValidationError):
            raise SettlementNotFoundError(
                f"{label} {pk} not found",
                error_code=f"{model.__name__.upper()}_NOT_FOUND",
                details={"id": str(pk)},
            )
