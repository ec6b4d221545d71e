"""
Invoice and Payment models.

An Invoice owns exactly one shipment and moves money through an escrow
lifecycle. Payments are its child movements (escrow funding, release,
refund, or a direct settlement of a PAY_LATER invoice).

Usage:
    from settlement.models import Invoice, Payment
    from settlement.state_machines import InvoiceStatus, PaymentKind

    invoice.issue(due_at=timezone.now() + timedelta(days=7))  # DRAFT -> ISSUED
    invoice.save()

    Payment.objects.create(
        invoice=invoice,
        kind=PaymentKind.ESCROW_FUND,
        status=PaymentStatus.SUCCEEDED,
        amount_paise=invoice.amount_paise,
        provider_ref="pay_123",
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import ConcurrentTransitionMixin, FSMField, transition

from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel, VersionedModel
from settlement.exceptions import InvoiceAmountLockedError
from settlement.state_machines import InvoiceStatus, PaymentKind, PaymentStatus


class Invoice(ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, VersionedModel):
    """
    Escrow invoice for one shipment.

    State Flow:
        DRAFT -> ISSUED -> FUNDED -> PAID
        ISSUED -> PAID (direct settlement of a PAY_LATER order)
        FUNDED/PAID -> DISPUTED -> PAID (release) | REFUNDED (refund)
        FUNDED -> REFUNDED (cancellation before delivery)

    Fields:
        shipment: The invoiced shipment (one-to-one)
        customer: Paying customer
        amount_paise: Invoice total, frozen once ISSUED
        status: Current FSM state
        disputed_from: Status the invoice had when a dispute opened
        gateway_order_id: Gateway order minted to collect a PAY_LATER invoice
    """

    shipment = models.OneToOneField(
        "shipments.Shipment",
        on_delete=models.PROTECT,
        related_name="invoice",
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="invoices",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount_paise = models.PositiveBigIntegerField(
        help_text="Invoice amount in paise, immutable once ISSUED",
    )
    currency = models.CharField(max_length=3, default="INR")

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=InvoiceStatus.DRAFT,
        choices=InvoiceStatus.choices,
        db_index=True,
        protected=True,
    )
    disputed_from = models.CharField(
        max_length=20,
        choices=InvoiceStatus.choices,
        blank=True,
    )
    gateway_order_id = models.CharField(
        max_length=100,
        unique=True,
        null=True,
        blank=True,
        help_text="Gateway order used to collect a PAY_LATER invoice",
    )

    # ==========================================================================
    # Timestamps
    # ==========================================================================

    issued_at = models.DateTimeField(null=True, blank=True)
    due_at = models.DateTimeField(null=True, blank=True)
    funded_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    disputed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["customer", "status"], name="invoice_customer_status_idx")]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_paise__gt=0),
                name="invoice_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Invoice({self.id}, {self.status}, {self.amount_paise / 100:.2f} {self.currency})"

    def save(self, *args, **kwargs):
        """
        Raises:
            InvoiceAmountLockedError: amount_paise changed on an invoice
                that is no longer DRAFT in the database
        """
        update_fields = kwargs.get("update_fields")
        if not self._state.adding and (update_fields is None or "amount_paise" in update_fields):
            stored = (
                Invoice.objects.filter(pk=self.pk).values("status", "amount_paise").first()
            )
            if (
                stored is not None
                and stored["status"] != InvoiceStatus.DRAFT
                and stored["amount_paise"] != self.amount_paise
            ):
                raise InvoiceAmountLockedError(
                    "Invoice amount cannot change after it was issued",
                    details={"invoice_id": str(self.id), "status": stored["status"]},
                )
        super().save(*args, **kwargs)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=status, source=InvoiceStatus.DRAFT, target=InvoiceStatus.ISSUED)
    def issue(self, due_at=None):
        self.issued_at = timezone.now()
        self.due_at = due_at

    @transition(
        field=status,
        source=[InvoiceStatus.DRAFT, InvoiceStatus.ISSUED],
        target=InvoiceStatus.FUNDED,
    )
    def fund(self):
        """Escrow funded by a successful ESCROW_FUND payment."""
        now = timezone.now()
        self.issued_at = self.issued_at or now
        self.funded_at = now

    @transition(
        field=status,
        source=[InvoiceStatus.ISSUED, InvoiceStatus.FUNDED, InvoiceStatus.DISPUTED],
        target=InvoiceStatus.PAID,
    )
    def settle(self):
        self.paid_at = timezone.now()

    @transition(
        field=status,
        source=[InvoiceStatus.FUNDED, InvoiceStatus.PAID],
        target=InvoiceStatus.DISPUTED,
    )
    def dispute(self):
        self.disputed_from = self.status
        self.disputed_at = timezone.now()

    @transition(
        field=status,
        source=[InvoiceStatus.FUNDED, InvoiceStatus.DISPUTED],
        target=InvoiceStatus.REFUNDED,
    )
    def refund(self):
        self.refunded_at = timezone.now()

    @property
    def is_settled(self) -> bool:
        return self.status in (InvoiceStatus.PAID, InvoiceStatus.REFUNDED)


# Payments that still count against the (invoice, kind) slot
LIVE_PAYMENT_STATUSES = [PaymentStatus.PENDING, PaymentStatus.SUCCEEDED]


class Payment(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    A money movement against an invoice.

    Invariants (database constraints):
        - at most one PENDING or SUCCEEDED payment per (invoice, kind)
        - a provider reference is recorded once per kind

    SUCCEEDED payments are immutable; only compensating payments follow.
    """

    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        related_name="payments",
    )
    kind = models.CharField(max_length=20, choices=PaymentKind.choices)
    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
    )
    amount_paise = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="INR")
    provider_ref = models.CharField(
        max_length=100,
        blank=True,
        help_text="Gateway payment / refund id used for de-duplication",
    )
    failure_reason = models.TextField(blank=True)
    succeeded_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["invoice", "kind"],
                condition=Q(status__in=LIVE_PAYMENT_STATUSES),
                name="payment_one_live_per_invoice_kind",
            ),
            models.UniqueConstraint(
                fields=["kind", "provider_ref"],
                condition=~Q(provider_ref=""),
                name="payment_unique_provider_ref",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.kind}, {self.status}, {self.amount_paise / 100:.2f})"

    @transition(field=status, source=PaymentStatus.PENDING, target=PaymentStatus.SUCCEEDED)
    def succeed(self, provider_ref: str = ""):
        if provider_ref:
            self.provider_ref = provider_ref
        self.succeeded_at = timezone.now()

    @transition(field=status, source=PaymentStatus.PENDING, target=PaymentStatus.FAILED)
    def fail(self, reason: str = ""):
        self.failure_reason = reason
        self.failed_at = timezone.now()
