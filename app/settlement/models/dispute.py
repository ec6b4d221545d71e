"""
Dispute model.

A customer disputes a FUNDED or PAID invoice. Resolution is terminal and
decides where the escrowed money goes (RELEASE to the operator, REFUND to
the customer).
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import ConcurrentTransitionMixin, FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import VersionedModel
from settlement.state_machines import DisputeOutcome, DisputeStatus


class Dispute(ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, VersionedModel):
    """
    Dispute over one (shipment, invoice, customer) triple.

    A shipment has at most one OPEN dispute (conditional unique constraint).
    """

    shipment = models.ForeignKey(
        "shipments.Shipment",
        on_delete=models.PROTECT,
        related_name="disputes",
    )
    invoice = models.ForeignKey(
        "settlement.Invoice",
        on_delete=models.PROTECT,
        related_name="disputes",
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="disputes",
    )
    reason = models.TextField()

    status = FSMField(
        default=DisputeStatus.OPEN,
        choices=DisputeStatus.choices,
        db_index=True,
        protected=True,
    )
    outcome = models.CharField(max_length=10, choices=DisputeOutcome.choices, blank=True)
    resolution_note = models.TextField(blank=True)
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="resolved_disputes",
        null=True,
        blank=True,
    )
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["shipment"],
                condition=Q(status=DisputeStatus.OPEN),
                name="dispute_one_open_per_shipment",
            ),
        ]

    def __str__(self) -> str:
        return f"Dispute({self.id}, {self.status}, {self.outcome or '-'})"

    @transition(field=status, source=DisputeStatus.OPEN, target=DisputeStatus.RESOLVED)
    def resolve(self, outcome: str, note: str = "", resolved_by=None):
        self.outcome = outcome
        self.resolution_note = note
        self.resolved_by = resolved_by
        self.resolved_at = timezone.now()
