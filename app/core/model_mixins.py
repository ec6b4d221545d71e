"""
Abstract mixins for domain models.

List them before BaseModel / VersionedModel:

    class Payout(UUIDPrimaryKeyMixin, MetadataMixin, VersionedModel):
        amount_paise = models.PositiveBigIntegerField()
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models

if TYPE_CHECKING:
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    """
    UUID primary key.

    Shipment and ledger ids are sent to the payment gateway and the payout
    rail as reference ids, so they must not be sequential.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class Meta:
        abstract = True


class MetadataMixin(models.Model):
    """
    Free-form JSON attributes that do not deserve a column, such as the
    last status the payout rail reported.
    """

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        abstract = True

    def get_meta(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)

    def set_meta(self, key: str, value: Any, save: bool = False) -> None:
        """Store a JSON-serializable ``value``; ``save=True`` writes only the metadata column."""
        self.metadata[key] = value
        if save:
            self.save(update_fields=["metadata", "updated_at"])
