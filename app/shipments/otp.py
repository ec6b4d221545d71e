"""
One-time codes gating pickup and delivery.

Codes are six digits, generated with ``secrets`` and stored only as a
password hash on the shipment. A code is valid for
``SHIPMENT_OTP_TTL_MINUTES`` after ``otp_generated_at`` and is cleared as
soon as the checkpoint it guards succeeds.

OtpService never saves; the caller holds the row lock and persists the
fields it returns.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.utils import timezone

from shipments.exceptions import (
    OtpAlreadyActiveError,
    OtpExpiredError,
    OtpMismatchError,
    OtpNotRequestedError,
)
from shipments.states import OtpPurpose

HASH_FIELDS = {
    OtpPurpose.PICKUP: "pickup_otp_hash",
    OtpPurpose.DELIVERY: "delivery_otp_hash",
}


@dataclass(frozen=True)
class OtpChallenge:
    """A freshly issued code. ``code`` is shown to the customer once."""

    purpose: str
    code: str
    expires_at: datetime


class OtpService:
    """Issue, verify and clear shipment OTPs."""

    @staticmethod
    def ttl() -> timedelta:
        return timedelta(minutes=settings.SHIPMENT_OTP_TTL_MINUTES)

    @classmethod
    def expires_at(cls, shipment) -> datetime | None:
        if shipment.otp_generated_at is None:
            return None
        return shipment.otp_generated_at + cls.ttl()

    @classmethod
    def is_active(cls, shipment, purpose: str) -> bool:
        """True if a code for ``purpose`` is outstanding and unexpired."""
        expires_at = cls.expires_at(shipment)
        return bool(getattr(shipment, HASH_FIELDS[purpose])) and (
            expires_at is not None and timezone.now() < expires_at
        )

    @classmethod
    def issue(cls, shipment, purpose: str) -> tuple[OtpChallenge, list[str]]:
        """
        Generate a code for ``purpose`` and stamp it on the shipment.

        Returns:
            The challenge and the list of fields to save

        Raises:
            OtpAlreadyActiveError: An unexpired code for this purpose exists
        """
        if cls.is_active(shipment, purpose):
            raise OtpAlreadyActiveError(
                f"An active {purpose} OTP already exists",
                details={
                    "shipment_id": str(shipment.id),
                    "purpose": purpose,
                    "expires_at": cls.expires_at(shipment).isoformat(),
                },
            )

        code = f"{secrets.randbelow(10**6):06d}"
        hash_field = HASH_FIELDS[purpose]
        setattr(shipment, hash_field, make_password(code))
        shipment.otp_generated_at = timezone.now()

        challenge = OtpChallenge(
            purpose=purpose,
            code=code,
            expires_at=cls.expires_at(shipment),
        )
        return challenge, [hash_field, "otp_generated_at"]

    @classmethod
    def verify(cls, shipment, purpose: str, code: str) -> None:
        """
        Check ``code`` against the stored hash.

        Raises:
            OtpNotRequestedError: No code was issued for this purpose
            OtpExpiredError: The code is older than the validity window
            OtpMismatchError: The code does not match
        """
        details = {"shipment_id": str(shipment.id), "purpose": purpose}
        stored_hash = getattr(shipment, HASH_FIELDS[purpose])
        if not stored_hash:
            raise OtpNotRequestedError(f"No {purpose} OTP was requested", details=details)

        expires_at = cls.expires_at(shipment)
        if expires_at is None or timezone.now() >= expires_at:
            raise OtpExpiredError(f"{purpose} OTP has expired", details=details)

        if not code or not check_password(str(code), stored_hash):
            raise OtpMismatchError("OTP does not match", details=details)

    @staticmethod
    def clear(shipment, purpose: str) -> list[str]:
        """Invalidate the code for ``purpose``; returns the fields to save."""
        setattr(shipment, HASH_FIELDS[purpose], "")
        shipment.otp_generated_at = None
        return [HASH_FIELDS[purpose], "otp_generated_at"]
