"""
Payment gateway adapter.

The gateway collects customer money for an order and reports the outcome
twice: synchronously through the client (order id, payment id, signature)
and asynchronously through signed webhooks. Both signatures are
HMAC-SHA256 hex digests:

    client confirmation: HMAC(key_secret, "{order_id}|{payment_id}")
    webhook body:        HMAC(webhook_secret, raw_body)

SandboxGateway implements the contract without network calls, which is
what the settlement core runs against in development and tests.

Configuration (via settings):
- SETTLEMENT_GATEWAY_KEY_ID / SETTLEMENT_GATEWAY_KEY_SECRET
- SETTLEMENT_GATEWAY_WEBHOOK_SECRET
- SETTLEMENT_CURRENCY

An empty secret rejects every signature.

Usage:
    from settlement.adapters import SandboxGateway

    order = SandboxGateway.create_order(500000, receipt="cust-42")
    ok = SandboxGateway.verify_payment_signature(order.id, "pay_1", signature)
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any

from django.conf import settings

from settlement.exceptions import GatewayError


@dataclass
class GatewayOrder:
    """
    Attributes:
        id: Gateway order id (order_xxx), the idempotency key of a booking
        amount_paise: Amount to collect
        currency: ISO 4217 code
        receipt: Caller reference
        key_id: Public key the client checkout needs
    """

    id: str
    amount_paise: int
    currency: str
    receipt: str = ""
    key_id: str = ""
    notes: dict[str, str] = field(default_factory=dict)


@dataclass
class GatewayRefund:
    id: str
    payment_id: str
    amount_paise: int
    status: str
    raw_response: dict[str, Any] = field(default_factory=dict)


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class SandboxGateway:
    """
    Offline gateway: orders and refunds are minted locally, signatures are
    real HMACs over the configured secrets.

    All methods are class-level; there is no instance state.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Orders
    # =========================================================================

    @classmethod
    def create_order(
        cls,
        amount_paise: int,
        receipt: str = "",
        notes: dict[str, str] | None = None,
        currency: str | None = None,
    ) -> GatewayOrder:
        """
        Create an order to collect ``amount_paise``.

        Raises:
            GatewayError: Amount is not positive
        """
        if amount_paise <= 0:
            raise GatewayError(
                "Order amount must be positive",
                details={"amount_paise": amount_paise},
            )
        order = GatewayOrder(
            id=f"order_{secrets.token_hex(8)}",
            amount_paise=amount_paise,
            currency=currency or settings.SETTLEMENT_CURRENCY,
            receipt=receipt[:40],
            key_id=settings.SETTLEMENT_GATEWAY_KEY_ID,
            notes=dict(notes or {}),
        )
        cls.get_logger().info(
            "Gateway order created",
            extra={"order_id": order.id, "amount_paise": amount_paise, "receipt": receipt},
        )
        return order

    # =========================================================================
    # Signatures
    # =========================================================================

    @staticmethod
    def sign_payment(order_id: str, payment_id: str) -> str:
        """Signature the checkout returns for a captured payment."""
        message = f"{order_id}|{payment_id}".encode()
        return _hmac_hex(settings.SETTLEMENT_GATEWAY_KEY_SECRET, message)

    @classmethod
    def _secret_configured(cls, name: str) -> bool:
        """False, logged at ERROR, when the named secret is empty."""
        if getattr(settings, name, ""):
            return True
        cls.get_logger().error(
            "Signature rejected, gateway secret not configured", extra={"setting": name}
        )
        return False

    @classmethod
    def verify_payment_signature(cls, order_id: str, payment_id: str, signature: str) -> bool:
        if not (order_id and payment_id and signature):
            return False
        if not cls._secret_configured("SETTLEMENT_GATEWAY_KEY_SECRET"):
            return False
        return hmac.compare_digest(cls.sign_payment(order_id, payment_id), signature)

    @staticmethod
    def sign_webhook(body: bytes) -> str:
        return _hmac_hex(settings.SETTLEMENT_GATEWAY_WEBHOOK_SECRET, body)

    @classmethod
    def verify_webhook_signature(cls, body: bytes, signature: str) -> bool:
        if not signature:
            return False
        if not cls._secret_configured("SETTLEMENT_GATEWAY_WEBHOOK_SECRET"):
            return False
        return hmac.compare_digest(cls.sign_webhook(body), signature)

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def refund(cls, payment_id: str, amount_paise: int, idempotency_key: str) -> GatewayRefund:
        """
        Refund ``amount_paise`` of a captured payment.

        The refund id is derived from the idempotency key, so replaying the
        same key returns the same refund.

        Raises:
            GatewayError: Nothing to refund
        """
        if not payment_id or amount_paise <= 0:
            raise GatewayError(
                "Refund needs a captured payment and a positive amount",
                details={"payment_id": payment_id, "amount_paise": amount_paise},
            )
        refund_id = "rfnd_" + hashlib.sha256(idempotency_key.encode()).hexdigest()[:14]
        cls.get_logger().info(
            "Gateway refund processed",
            extra={
                "payment_id": payment_id,
                "refund_id": refund_id,
                "amount_paise": amount_paise,
                "idempotency_key": idempotency_key,
            },
        )
        return GatewayRefund(
            id=refund_id,
            payment_id=payment_id,
            amount_paise=amount_paise,
            status="processed",
        )
