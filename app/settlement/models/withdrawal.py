"""
DriverWithdrawal model.

A driver moves AVAILABLE earnings to a UPI handle. The shipments a
withdrawal claimed are snapshotted in ``breakdown`` so a failed or
cancelled withdrawal can give exactly those shipments back.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import ConcurrentTransitionMixin, FSMField, transition

from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin
from core.models import VersionedModel
from settlement.state_machines import WithdrawalStatus


class DriverWithdrawal(
    ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, MetadataMixin, VersionedModel
):
    """
    Driver-initiated transfer of AVAILABLE earnings.

    State Flow:
        PENDING -> PROCESSING -> SUCCESS | FAILED
        PENDING -> SUCCESS | FAILED
        PENDING -> CANCELLED

    Fields:
        driver: Requesting driver
        requested_amount_paise: Amount the driver asked for
        amount_paise: Sum of the claimed shipments (>= requested)
        upi_id: Destination
        breakdown: [{"shipment_id", "reference_id", "amount_paise"}, ...]
        rail_payout_id: Payout id returned by the rail
    """

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="withdrawals",
    )
    requested_amount_paise = models.PositiveBigIntegerField()
    amount_paise = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="INR")
    upi_id = models.CharField(max_length=100)

    status = FSMField(
        default=WithdrawalStatus.PENDING,
        choices=WithdrawalStatus.choices,
        db_index=True,
        protected=True,
    )
    breakdown = models.JSONField(default=list, blank=True)

    rail_payout_id = models.CharField(max_length=100, unique=True, null=True, blank=True)
    failure_reason = models.TextField(blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["driver", "status"], name="withdrawal_driver_status_idx")]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_paise__gt=0),
                name="withdrawal_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"DriverWithdrawal({self.id}, {self.status}, {self.amount_paise / 100:.2f})"

    @property
    def shipment_ids(self) -> list[str]:
        return [row["shipment_id"] for row in self.breakdown]

    @transition(
        field=status,
        source=WithdrawalStatus.PENDING,
        target=WithdrawalStatus.PROCESSING,
    )
    def start_processing(self, rail_payout_id: str | None = None):
        if rail_payout_id:
            self.rail_payout_id = rail_payout_id
        self.processed_at = timezone.now()

    @transition(
        field=status,
        source=[WithdrawalStatus.PENDING, WithdrawalStatus.PROCESSING],
        target=WithdrawalStatus.SUCCESS,
    )
    def succeed(self, rail_payout_id: str | None = None):
        if rail_payout_id:
            self.rail_payout_id = rail_payout_id
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=[WithdrawalStatus.PENDING, WithdrawalStatus.PROCESSING],
        target=WithdrawalStatus.FAILED,
    )
    def fail(self, reason: str = ""):
        self.failure_reason = reason
        self.failed_at = timezone.now()

    @transition(
        field=status,
        source=WithdrawalStatus.PENDING,
        target=WithdrawalStatus.CANCELLED,
    )
    def cancel(self):
        self.cancelled_at = timezone.now()
