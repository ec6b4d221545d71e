"""
Payout model for money leaving the platform for one invoice.

A released invoice pays each recipient type at most once. The
``(invoice, recipient_type)`` unique constraint is the exactly-once
mechanism: concurrent disburse calls race on the insert and every loser
gets the winner's row back.

Usage:
    from settlement.models import Payout

    payout.succeed(rail_payout_id="pout_123")   # PENDING -> SUCCEEDED
    payout.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import ConcurrentTransitionMixin, FSMField, transition

from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin
from core.models import VersionedModel
from settlement.state_machines import PayoutStatus, RecipientType


class Payout(ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, MetadataMixin, VersionedModel):
    """
    One disbursement to one recipient for one invoice.

    State Flow:
        PENDING -> SUCCEEDED
        PENDING -> FAILED -> PENDING (operator retry)

    Fields:
        invoice: Source invoice
        recipient_type: DRIVER or LOGISTICS_ORG
        recipient: Paid user (drivers); empty for the operator
        destination: Rail destination (UPI handle or account reference)
        amount_paise: Amount in paise
        status: Current FSM state
        rail_payout_id: Payout id returned by the rail
        attempts: Number of rail attempts (feeds the idempotency key)
        paid_at / failed_at / failure_reason: Outcome
    """

    invoice = models.ForeignKey(
        "settlement.Invoice",
        on_delete=models.PROTECT,
        related_name="payouts",
    )
    recipient_type = models.CharField(max_length=20, choices=RecipientType.choices)
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payouts",
        null=True,
        blank=True,
    )
    destination = models.CharField(max_length=100, blank=True)

    amount_paise = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="INR")

    status = FSMField(
        default=PayoutStatus.PENDING,
        choices=PayoutStatus.choices,
        db_index=True,
        protected=True,
    )

    rail_payout_id = models.CharField(
        max_length=100,
        unique=True,
        null=True,
        blank=True,
        help_text="Payout id returned by the rail",
    )
    attempts = models.PositiveSmallIntegerField(default=0)

    paid_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["status", "updated_at"], name="payout_status_updated_idx")]
        constraints = [
            models.UniqueConstraint(
                fields=["invoice", "recipient_type"],
                name="payout_unique_invoice_recipient",
            ),
            models.CheckConstraint(
                condition=Q(amount_paise__gt=0),
                name="payout_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Payout({self.id}, {self.recipient_type}, {self.status}, {self.amount_paise / 100:.2f})"

    @transition(field=status, source=PayoutStatus.PENDING, target=PayoutStatus.SUCCEEDED)
    def succeed(self, rail_payout_id: str | None = None):
        if rail_payout_id:
            self.rail_payout_id = rail_payout_id
        self.paid_at = timezone.now()

    @transition(field=status, source=PayoutStatus.PENDING, target=PayoutStatus.FAILED)
    def fail(self, reason: str = ""):
        self.failed_at = timezone.now()
        self.failure_reason = reason

    @transition(field=status, source=PayoutStatus.FAILED, target=PayoutStatus.PENDING)
    def retry(self):
        self.failed_at = None
        self.failure_reason = ""
        self.rail_payout_id = None

    @property
    def can_retry(self) -> bool:
        return self.status == PayoutStatus.FAILED
