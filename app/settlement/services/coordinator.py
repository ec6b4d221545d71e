"""
Settlement coordinator.

Couples the physical shipment lifecycle to the money lifecycle:

    create_order        PAY_NOW draft -> gateway order + idempotency record
    confirm_payment     verified capture -> Shipment + FUNDED Invoice (once per order)
    book_shipment       PAY_LATER / manager draft -> Shipment + DRAFT Invoice
    issue_invoice       DRAFT -> ISSUED (amount frozen)
    create_invoice_order gateway order for an ISSUED invoice
    fund_invoice        DRAFT/ISSUED -> FUNDED (ESCROW_FUND payment)
    release_invoice     FUNDED -> PAID (payouts reserved, then executed)
    refund_invoice      FUNDED/DISPUTED -> REFUNDED (ESCROW_REFUND payment)
    open_dispute        FUNDED/PAID -> DISPUTED
    resolve_dispute     DISPUTED -> PAID (RELEASE) | REFUNDED (REFUND)
    on_delivered        driver earnings AVAILABLE, DRAFT invoice issued

Exactly-once effects rest on database uniqueness (one shipment per
gateway order, one live payment per invoice and kind, one open dispute per
shipment) and on row locks taken in a fixed order: booking record or
shipment first, then invoice, then payment. Gateway and payout rail calls
always happen outside a transaction.

Every caller-facing method returns ServiceResult. Replays of an operation
that already happened return success with the current snapshot.

Usage:
    from settlement.services import SettlementCoordinator

    record = SettlementCoordinator.create_order(customer, draft).data
    result = SettlementCoordinator.confirm_payment(record.order_id, "pay_123", signature)
    if result.success:
        shipment = result.data.shipment
    elif result.error_code == "SIGNATURE_INVALID":
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from core.exceptions import BaseApplicationError, PermissionDeniedError, ValidationError
from core.services import ServiceResult
from settlement.adapters import GatewayOrder, IdempotencyKeyGenerator, SandboxGateway
from settlement.exceptions import (
    DisputeAlreadyOpenError,
    DisputeAlreadyResolvedError,
    GatewayError,
    InvalidInvoiceTransition,
    OrderNotFoundError,
    SettlementNotFoundError,
    SignatureInvalidError,
)
from settlement.idempotency import IdempotencyStore
from settlement.models import (
    Dispute,
    DriverWithdrawal,
    Invoice,
    Payment,
    Payout,
    PendingShipment,
)
from settlement.models.invoice import LIVE_PAYMENT_STATUSES
from settlement.payout_policies import compute_payout_breakdown, share_to_paise
from settlement.services.base import SettlementService
from settlement.services.payouts import PayoutService
from settlement.signals import emit_payment_status
from settlement.state_machines import (
    IN_FLIGHT_WITHDRAWAL_STATUSES,
    DisputeOutcome,
    DisputeStatus,
    InvoiceStatus,
    PaymentKind,
    PaymentStatus,
    PayoutStatus,
    PendingShipmentStatus,
    WithdrawalStatus,
)
from shipments.exceptions import InvalidShipmentTransition
from shipments.models import Shipment
from shipments.pricing import quote
from shipments.services import ShipmentStateMachine
from shipments.states import (
    CreatedByRole,
    EarningsStatus,
    PaymentOption,
    ShipmentEventType,
    ShipmentPaymentStatus,
    ShipmentStatus,
)

REFUNDABLE_STATUSES = [InvoiceStatus.FUNDED, InvoiceStatus.DISPUTED]
DISPUTABLE_STATUSES = [InvoiceStatus.FUNDED, InvoiceStatus.PAID]


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class PaymentConfirmation:
    """
    Outcome of a confirmed gateway payment.

    Attributes:
        shipment: Materialized (or settled) shipment
        invoice: Its invoice
        replayed: True when the order had been confirmed before
    """

    shipment: Shipment | None
    invoice: Invoice | None
    replayed: bool = False


@dataclass
class EarningsSummary:
    """Driver earnings in paise plus the rows they are made of."""

    lifetime_paise: int = 0
    available_paise: int = 0
    processing_paise: int = 0
    withdrawn_paise: int = 0
    paid_out_paise: int = 0
    pending_deliveries: int = 0
    shipments: list = field(default_factory=list)
    withdrawals: list = field(default_factory=list)


# =============================================================================
# Settlement Coordinator
# =============================================================================


class SettlementCoordinator(SettlementService):
    """
    Cross-machine orchestration between shipments and the ledger.

    The gateway is injected with set_gateway() (SandboxGateway by default).
    """

    _gateway = None

    @classmethod
    def get_gateway(cls):
        return cls._gateway or SandboxGateway

    @classmethod
    def set_gateway(cls, gateway) -> None:
        cls._gateway = gateway

    # =========================================================================
    # Booking
    # =========================================================================

    @classmethod
    def price_draft(cls, draft: dict) -> dict:
        """
        Price a draft and evaluate the payout policy once.

        Returns the JSON payload stored on the booking record: the booking
        fields plus ``price_paise``, ``pricing_breakdown`` and
        ``payout_breakdown``.

        Raises:
            ValidationError: Missing or negative distance / weight
        """
        if draft.get("distance_km") in (None, ""):
            raise ValidationError(
                "distance_km is required",
                error_code="INVALID_DRAFT",
                details={"field": "distance_km"},
            )
        try:
            price = quote(
                distance_km=draft["distance_km"],
                weight_kg=draft.get("weight_kg") or 0,
                vehicle_type=draft.get("vehicle_type") or "TRUCK_SM",
                shipment_type=draft.get("shipment_type") or "KIRANA",
                delivery_type=draft.get("delivery_type") or "standard",
                traffic_impact=draft.get("traffic_impact") or 1,
                weather_impact=draft.get("weather_impact") or 1,
            )
        except (ValueError, ArithmeticError) as e:
            raise ValidationError(str(e), error_code="INVALID_DRAFT")

        pricing = price.as_breakdown()
        payout = compute_payout_breakdown(
            pricing, {"is_extra_shift": bool(draft.get("is_extra_shift"))}
        )
        payload = {
            "pickup_address": draft.get("pickup_address") or "",
            "drop_address": draft.get("drop_address") or "",
            "distance_km": pricing["distance_km"],
            "weight_kg": pricing["weight_kg"],
            "vehicle_type": price.vehicle_type,
            "shipment_type": price.shipment_type,
            "delivery_type": price.delivery_type,
            "price_paise": price.grand_total_paise,
            "pricing_breakdown": pricing,
            "payout_breakdown": payout,
        }
        return payload

    @classmethod
    def create_order(cls, customer, draft: dict) -> ServiceResult[PendingShipment]:
        """
        PAY_NOW booking step 1: price the draft, mint a gateway order and
        store the draft under the order id. No shipment exists yet.
        """
        try:
            payload = cls.price_draft(draft)
            order: GatewayOrder = cls.get_gateway().create_order(
                payload["price_paise"],
                receipt=f"cust-{customer.pk}",
                notes={"customer_id": str(customer.pk)},
            )
            record = IdempotencyStore.put(order.id, customer, payload, payload["price_paise"])
        except BaseApplicationError as e:
            return cls.handle_exception(e, "create order")

        cls.get_logger().info(
            "Booking order created",
            extra={
                "order_id": record.order_id,
                "customer_id": str(customer.pk),
                "amount_paise": record.amount_paise,
            },
        )
        return ServiceResult.success(record)

    @classmethod
    def confirm_payment(
        cls,
        order_id: str,
        provider_payment_id: str,
        signature: str = "",
        verified: bool = False,
    ) -> ServiceResult[PaymentConfirmation]:
        """
        Turn a captured payment into settled ledger state, exactly once.

        ``verified`` is set by the webhook path, whose body signature was
        already checked. Otherwise ``signature`` must be the gateway's HMAC
        over ``order_id|provider_payment_id``; a bad signature writes
        nothing.

        A booking order materializes the Shipment, a FUNDED Invoice and its
        ESCROW_FUND payment. An invoice order settles the invoice (ISSUED
        -> PAID). Any replay returns the existing records.
        """
        if not verified and not cls.get_gateway().verify_payment_signature(
            order_id, provider_payment_id, signature
        ):
            return cls.handle_exception(
                SignatureInvalidError(
                    "Payment signature verification failed",
                    details={"order_id": order_id},
                ),
                "confirm payment",
            )

        reserved: list[Payout] = []

        def _confirm():
            record = IdempotencyStore.get(order_id, for_update=True)
            if record is not None:
                return cls._complete_booking(record, provider_payment_id)

            invoice = (
                Invoice.objects.select_for_update()
                .filter(gateway_order_id=order_id)
                .first()
            )
            if invoice is not None:
                confirmation, payouts = cls._settle_invoice_order(invoice, provider_payment_id)
                reserved.extend(payouts)
                return confirmation

            # Booking record already purged; the shipment still knows its order
            shipment = Shipment.objects.filter(gateway_order_id=order_id).first()
            if shipment is not None:
                return PaymentConfirmation(shipment, cls.invoice_for(shipment), replayed=True)

            raise OrderNotFoundError(
                f"Unknown gateway order {order_id}",
                details={"order_id": order_id},
            )

        result = cls._run("confirm payment", _confirm)
        if result.success:
            cls._execute_payouts(reserved)
        return result

    @classmethod
    def book_shipment(cls, customer, draft: dict, created_by=None) -> ServiceResult[Shipment]:
        """
        Materialize a shipment without collecting payment first.

        Used for PAY_LATER drafts and manager-created shipments: payment
        status PENDING and a DRAFT invoice.
        """
        role = (
            CreatedByRole.MANAGER
            if created_by is not None and getattr(created_by, "is_manager", False)
            else CreatedByRole.CUSTOMER
        )
        payment_option = draft.get("payment_option") or PaymentOption.PAY_LATER

        def _book():
            payload = cls.price_draft(draft)
            shipment = cls._materialize(
                customer,
                payload,
                payment_option=payment_option,
                payment_status=ShipmentPaymentStatus.PENDING,
                created_by_role=role,
            )
            cls._create_invoice(shipment)
            return shipment

        return cls._run("book shipment", _book)

    @classmethod
    def record_payment_failure(
        cls, order_id: str, provider_payment_id: str = "", reason: str = ""
    ) -> ServiceResult[PendingShipment | Invoice]:
        """
        Gateway reported a failed payment attempt.

        Returns the booking record or invoice as it now stands. Records
        already past the point of failure are left unchanged.
        """

        def _fail():
            record = IdempotencyStore.get(order_id, for_update=True)
            if record is not None:
                if IdempotencyStore.fail(order_id, reason or "Payment failed", provider_payment_id):
                    cls.get_logger().info(
                        "Booking payment failed",
                        extra={"order_id": order_id, "provider_payment_id": provider_payment_id},
                    )
                return IdempotencyStore.get(order_id)

            invoice = (
                Invoice.objects.select_for_update()
                .filter(gateway_order_id=order_id)
                .first()
            )
            if invoice is None:
                raise OrderNotFoundError(
                    f"Unknown gateway order {order_id}",
                    details={"order_id": order_id},
                )
            if invoice.status != InvoiceStatus.ISSUED:
                return invoice

            _, created = cls._record_payment(
                invoice,
                PaymentKind.SETTLEMENT,
                provider_ref=provider_payment_id,
                status=PaymentStatus.FAILED,
                reason=reason or "Payment failed",
            )
            if created:
                cls._sync_shipment(invoice.shipment_id, payment_status=ShipmentPaymentStatus.FAILED)
            return invoice

        return cls._run("record payment failure", _fail)

    # =========================================================================
    # Invoice lifecycle
    # =========================================================================

    @classmethod
    def issue_invoice(cls, invoice_id) -> ServiceResult[Invoice]:
        """DRAFT -> ISSUED; the amount is frozen from here on."""

        def _issue():
            invoice = cls._lock(Invoice, invoice_id)
            cls._require_invoice_status(invoice, [InvoiceStatus.DRAFT], InvoiceStatus.ISSUED)
            cls._apply_issue(invoice)
            return invoice

        return cls._run("issue invoice", _issue)

    @classmethod
    def create_invoice_order(cls, invoice_id) -> ServiceResult[Invoice]:
        """
        Mint a gateway order to collect an ISSUED invoice.

        Calling it again returns the invoice with its existing order.
        """
        try:
            invoice = cls._get(Invoice, invoice_id)
            if invoice.gateway_order_id:
                return ServiceResult.success(invoice)
            cls._require_invoice_status(invoice, [InvoiceStatus.ISSUED], InvoiceStatus.PAID)
            order = cls.get_gateway().create_order(
                invoice.amount_paise,
                receipt=invoice.shipment.reference_id,
                notes={"invoice_id": str(invoice.id)},
                currency=invoice.currency,
            )
        except BaseApplicationError as e:
            return cls.handle_exception(e, "create invoice order")

        def _store():
            Invoice.objects.filter(
                pk=invoice.pk,
                status=InvoiceStatus.ISSUED,
                gateway_order_id__isnull=True,
            ).update(
                gateway_order_id=order.id,
                version=F("version") + 1,
                updated_at=timezone.now(),
            )
            fresh = Invoice.objects.get(pk=invoice.pk)
            if not fresh.gateway_order_id:
                raise InvalidInvoiceTransition(
                    f"Cannot collect an invoice in {fresh.status}",
                    details={"invoice_id": str(fresh.id), "current_status": fresh.status},
                )
            cls.get_logger().info(
                "Invoice order created",
                extra={"invoice_id": str(fresh.id), "order_id": fresh.gateway_order_id},
            )
            return fresh

        return cls._run("create invoice order", _store)

    @classmethod
    def fund_invoice(cls, invoice_id, provider_ref: str, actor=None) -> ServiceResult[Invoice]:
        """
        Record an escrow funding payment: DRAFT/ISSUED -> FUNDED.

        Replaying the same provider reference on a FUNDED invoice returns it
        unchanged.
        """

        def _fund():
            if not provider_ref:
                raise ValidationError(
                    "provider_ref is required",
                    error_code="PROVIDER_REF_REQUIRED",
                )
            invoice = cls._lock(Invoice, invoice_id)
            if (
                invoice.status != InvoiceStatus.DRAFT
                and invoice.payments.filter(
                    kind=PaymentKind.ESCROW_FUND,
                    status=PaymentStatus.SUCCEEDED,
                    provider_ref=provider_ref,
                ).exists()
            ):
                return invoice
            cls._require_invoice_status(
                invoice, [InvoiceStatus.DRAFT, InvoiceStatus.ISSUED], InvoiceStatus.FUNDED
            )
            cls._record_payment(invoice, PaymentKind.ESCROW_FUND, provider_ref=provider_ref)
            invoice.fund()
            invoice.save(update_fields=["status", "issued_at", "funded_at", "updated_at"])
            cls._log_invoice(invoice, "Invoice funded", actor=actor)
            cls._sync_shipment(invoice.shipment_id, payment_status=ShipmentPaymentStatus.PAID)
            return invoice

        return cls._run("fund invoice", _fund)

    @classmethod
    def release_invoice(cls, invoice_id, actor=None) -> ServiceResult[Invoice]:
        """
        FUNDED -> PAID.

        The payouts are reserved in the same transaction that marks the
        invoice PAID and sent to the rail after it commits. A DELIVERED
        shipment is closed.
        """
        reserved: list[Payout] = []

        def _release():
            invoice = cls._lock(Invoice, invoice_id)
            cls._require_invoice_status(invoice, [InvoiceStatus.FUNDED], InvoiceStatus.PAID)
            reserved.extend(cls._apply_release(invoice, actor))
            return invoice

        result = cls._run("release invoice", _release)
        if result.success:
            cls._execute_payouts(reserved)
        return result

    @classmethod
    def refund_invoice(cls, invoice_id, reason: str = "") -> ServiceResult[Invoice]:
        """
        FUNDED/DISPUTED -> REFUNDED through an ESCROW_REFUND payment.

        Phase 1 records the refund payment as PENDING, phase 2 calls the
        gateway outside the transaction, phase 3 marks the payment
        SUCCEEDED and the invoice REFUNDED. A gateway failure marks the
        payment FAILED and leaves the invoice where it was. Refunding a
        REFUNDED invoice returns it unchanged.
        """

        def _prepare():
            invoice = cls._lock(Invoice, invoice_id)
            if invoice.status == InvoiceStatus.REFUNDED:
                return invoice, None, ""
            cls._require_invoice_status(invoice, REFUNDABLE_STATUSES, InvoiceStatus.REFUNDED)
            source = (
                invoice.payments.filter(
                    kind__in=[PaymentKind.ESCROW_FUND, PaymentKind.SETTLEMENT],
                    status=PaymentStatus.SUCCEEDED,
                )
                .order_by("-succeeded_at")
                .first()
            )
            if source is None:
                raise InvalidInvoiceTransition(
                    "Invoice has no captured payment to refund",
                    details={"invoice_id": str(invoice.id)},
                )
            refund, _ = cls._record_payment(
                invoice,
                PaymentKind.ESCROW_REFUND,
                status=PaymentStatus.PENDING,
                reason=reason,
            )
            return invoice, refund, source.provider_ref

        prepared = cls._run("refund invoice", _prepare)
        if not prepared.success:
            return prepared
        invoice, refund, payment_ref = prepared.data
        if refund is None:
            return ServiceResult.success(invoice)

        refund_id = refund.provider_ref
        if refund.status == PaymentStatus.PENDING:
            try:
                refund_id = cls.get_gateway().refund(
                    payment_ref,
                    refund.amount_paise,
                    IdempotencyKeyGenerator.generate("refund", refund.id),
                ).id
            except GatewayError as e:
                cls._run(
                    "record refund failure", lambda: cls._fail_payment(refund.id, e.message)
                )
                return cls.handle_exception(e, "refund invoice")

        def _finalize():
            locked = cls._lock(Invoice, invoice.pk)
            payment = Payment.objects.select_for_update().get(pk=refund.pk)
            if payment.status == PaymentStatus.PENDING:
                payment.succeed(refund_id)
                payment.save(
                    update_fields=["status", "provider_ref", "succeeded_at", "updated_at"]
                )
                emit_payment_status(payment)
            if locked.status in REFUNDABLE_STATUSES:
                locked.refund()
                locked.save(update_fields=["status", "refunded_at", "updated_at"])
                cls._log_invoice(locked, "Invoice refunded", refund_id=refund_id)
                cls._sync_shipment(
                    locked.shipment_id, payment_status=ShipmentPaymentStatus.REFUNDED
                )
            return locked

        return cls._run("refund invoice", _finalize)

    # =========================================================================
    # Disputes
    # =========================================================================

    @classmethod
    def open_dispute(cls, shipment_id, customer, reason: str) -> ServiceResult[Dispute]:
        """FUNDED/PAID -> DISPUTED with an OPEN dispute (one per shipment)."""

        def _open():
            if not (reason or "").strip():
                raise ValidationError("A dispute reason is required", error_code="REASON_REQUIRED")
            shipment = cls._get(Shipment, shipment_id)
            if shipment.customer_id != customer.pk and not getattr(customer, "is_manager", False):
                raise PermissionDeniedError(
                    "Only the shipment's customer can open a dispute",
                    details={"shipment_id": str(shipment.id)},
                )
            invoice = cls._invoice_for_update(shipment)
            if invoice.status == InvoiceStatus.DISPUTED:
                raise DisputeAlreadyOpenError(
                    "Shipment already has an open dispute",
                    details={"shipment_id": str(shipment.id), "invoice_id": str(invoice.id)},
                )
            cls._require_invoice_status(invoice, DISPUTABLE_STATUSES, InvoiceStatus.DISPUTED)

            try:
                with transaction.atomic():
                    dispute = Dispute.objects.create(
                        shipment=shipment,
                        invoice=invoice,
                        customer=shipment.customer,
                        reason=reason.strip(),
                    )
            except IntegrityError:
                raise DisputeAlreadyOpenError(
                    "Shipment already has an open dispute",
                    details={"shipment_id": str(shipment.id)},
                )

            invoice.dispute()
            invoice.save(update_fields=["status", "disputed_from", "disputed_at", "updated_at"])
            cls._log_invoice(invoice, "Dispute opened", dispute_id=str(dispute.id))
            return dispute

        return cls._run("open dispute", _open)

    @classmethod
    def resolve_dispute(
        cls, dispute_id, outcome: str, note: str = "", resolved_by=None
    ) -> ServiceResult[Dispute]:
        """
        Resolve an OPEN dispute, exactly once.

        RELEASE settles the invoice (DISPUTED -> PAID, payouts). REFUND
        refunds it first and resolves only once the refund succeeded. A
        second resolution fails with DISPUTE_ALREADY_RESOLVED and leaves
        the recorded outcome unchanged.
        """
        if outcome not in DisputeOutcome.values:
            return cls.handle_exception(
                ValidationError(
                    f"Unknown dispute outcome {outcome}",
                    error_code="INVALID_OUTCOME",
                    details={"outcome": outcome},
                ),
                "resolve dispute",
            )

        if outcome == DisputeOutcome.REFUND:
            current = cls._run("resolve dispute", lambda: cls._open_dispute(dispute_id), atomic=False)
            if not current.success:
                return current
            refund = cls.refund_invoice(current.data.invoice_id, reason=note or "Dispute refunded")
            if not refund.success:
                return refund

        reserved: list[Payout] = []

        def _resolve():
            dispute = cls._open_dispute(dispute_id, lock=True)
            if outcome == DisputeOutcome.RELEASE:
                invoice = cls._lock(Invoice, dispute.invoice_id)
                cls._require_invoice_status(invoice, [InvoiceStatus.DISPUTED], InvoiceStatus.PAID)
                reserved.extend(cls._apply_release(invoice, resolved_by))
            dispute.resolve(
                outcome,
                note=note or "",
                resolved_by=resolved_by if getattr(resolved_by, "pk", None) else None,
            )
            dispute.save(
                update_fields=[
                    "status",
                    "outcome",
                    "resolution_note",
                    "resolved_by",
                    "resolved_at",
                    "updated_at",
                ]
            )
            cls.get_logger().info(
                "Dispute resolved",
                extra={
                    "dispute_id": str(dispute.id),
                    "invoice_id": str(dispute.invoice_id),
                    "outcome": outcome,
                },
            )
            return dispute

        result = cls._run("resolve dispute", _resolve)
        if result.success:
            cls._execute_payouts(reserved)
        return result

    # =========================================================================
    # Delivery
    # =========================================================================

    @classmethod
    def on_delivered(cls, shipment_id) -> ServiceResult[Shipment]:
        """Run the delivery hook for a shipment (idempotent)."""

        return cls._run(
            "apply delivery", lambda: cls.apply_delivery(cls._lock(Shipment, shipment_id))
        )

    @classmethod
    def apply_delivery(cls, locked: Shipment) -> Shipment:
        """
        Delivery hook for a locked shipment, inside the caller's transaction.

        Makes the driver's share AVAILABLE (computed from the stored payout
        breakdown), issues a DRAFT invoice and closes the shipment when its
        invoice is already PAID. Running it twice changes nothing.

        Raises:
            InvalidShipmentTransition: The shipment was never delivered
            InvalidInvoiceTransition: First delivery against an invoice that
                is REFUNDED or has a refund in flight (INVOICE_REFUNDED)
        """
        if locked.delivered_at is None:
            raise InvalidShipmentTransition(
                "Earnings become available only after delivery",
                details={"shipment_id": str(locked.id), "current_status": locked.status},
            )

        invoice = Invoice.objects.select_for_update().filter(shipment=locked).first()
        if locked.driver_earnings_status == EarningsStatus.PENDING:
            cls._require_not_refunded(invoice, locked)
            share = (locked.payout_breakdown or {}).get("driver_share")
            amount = share_to_paise(share) if share else 0
            locked.driver_earnings_paise = amount
            locked.driver_earnings_status = EarningsStatus.AVAILABLE
            locked.driver_earnings_available_at = timezone.now()
            locked.save(
                update_fields=[
                    "driver_earnings_paise",
                    "driver_earnings_status",
                    "driver_earnings_available_at",
                    "updated_at",
                ]
            )
            ShipmentStateMachine.record_event(
                locked,
                ShipmentEventType.EARNINGS_AVAILABLE,
                f"Driver earnings available: {amount / 100:.2f}",
                amount_paise=amount,
                driver_id=str(locked.assigned_driver_id or ""),
            )

        if invoice is not None:
            if invoice.status == InvoiceStatus.DRAFT:
                cls._apply_issue(invoice)
            elif invoice.status == InvoiceStatus.PAID and locked.status == ShipmentStatus.DELIVERED:
                ShipmentStateMachine.apply_close(locked)
        return locked

    @staticmethod
    def invoice_for(shipment) -> Invoice | None:
        return Invoice.objects.filter(shipment_id=getattr(shipment, "pk", shipment)).first()

    @classmethod
    def earnings_summary(cls, driver) -> ServiceResult[EarningsSummary]:
        """Balances and history for one driver (read-only)."""
        shipments = list(
            Shipment.objects.filter(assigned_driver=driver)
            .exclude(status=ShipmentStatus.CANCELLED)
            .order_by(F("delivered_at").desc(nulls_last=True), "-created_at")
        )
        withdrawals = list(DriverWithdrawal.objects.filter(driver=driver).order_by("-created_at"))

        summary = EarningsSummary(shipments=shipments, withdrawals=withdrawals)
        for shipment in shipments:
            if shipment.driver_earnings_status == EarningsStatus.PENDING:
                summary.pending_deliveries += 1
                continue
            summary.lifetime_paise += shipment.driver_earnings_paise
            if shipment.driver_earnings_status == EarningsStatus.AVAILABLE:
                summary.available_paise += shipment.driver_earnings_paise
            elif shipment.driver_earnings_status == EarningsStatus.PAID_OUT:
                summary.paid_out_paise += shipment.driver_earnings_paise
        for withdrawal in withdrawals:
            if withdrawal.status in IN_FLIGHT_WITHDRAWAL_STATUSES:
                summary.processing_paise += withdrawal.amount_paise
            elif withdrawal.status == WithdrawalStatus.SUCCESS:
                summary.withdrawn_paise += withdrawal.amount_paise
        return ServiceResult.success(summary)

    # =========================================================================
    # Internals
    # =========================================================================

    @classmethod
    def _complete_booking(cls, record: PendingShipment, provider_payment_id: str):
        if record.status == PendingShipmentStatus.COMPLETED and record.shipment_id:
            cls.get_logger().info(
                "Payment confirmation replayed",
                extra={"order_id": record.order_id, "shipment_id": str(record.shipment_id)},
            )
            return PaymentConfirmation(
                record.shipment, cls.invoice_for(record.shipment_id), replayed=True
            )

        payload = record.payload
        shipment = cls._materialize(
            record.customer,
            payload,
            payment_option=PaymentOption.PAY_NOW,
            payment_status=ShipmentPaymentStatus.PAID,
            created_by_role=CreatedByRole.CUSTOMER,
            gateway_order_id=record.order_id,
        )
        invoice = cls._create_invoice(shipment, amount_paise=record.amount_paise)
        cls._record_payment(invoice, PaymentKind.ESCROW_FUND, provider_ref=provider_payment_id)
        invoice.fund()
        invoice.save(update_fields=["status", "issued_at", "funded_at", "updated_at"])
        IdempotencyStore.complete(record.order_id, shipment, provider_payment_id)

        cls._log_invoice(invoice, "Invoice funded", order_id=record.order_id)
        return PaymentConfirmation(shipment, invoice)

    @classmethod
    def _settle_invoice_order(cls, invoice: Invoice, provider_payment_id: str):
        """ISSUED -> PAID for a collected invoice order."""
        if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.DISPUTED, InvoiceStatus.REFUNDED):
            return PaymentConfirmation(invoice.shipment, invoice, replayed=True), []
        cls._require_invoice_status(invoice, [InvoiceStatus.ISSUED], InvoiceStatus.PAID)

        cls._record_payment(invoice, PaymentKind.SETTLEMENT, provider_ref=provider_payment_id)
        payouts = PayoutService.reserve_release(invoice)
        invoice.settle()
        invoice.save(update_fields=["status", "paid_at", "updated_at"])
        cls._log_invoice(invoice, "Invoice settled", provider_payment_id=provider_payment_id)
        shipment = cls._sync_shipment(
            invoice.shipment_id, payment_status=ShipmentPaymentStatus.PAID, close=True
        )
        return PaymentConfirmation(shipment, invoice), payouts

    @classmethod
    def _materialize(
        cls,
        customer,
        payload: dict,
        payment_option: str,
        payment_status: str,
        created_by_role: str,
        gateway_order_id: str | None = None,
    ) -> Shipment:
        shipment = Shipment.objects.create(
            customer=customer,
            created_by_role=created_by_role,
            pickup_address=payload.get("pickup_address", ""),
            drop_address=payload.get("drop_address", ""),
            distance_km=Decimal(str(payload["distance_km"])),
            weight_kg=Decimal(str(payload.get("weight_kg") or 0)),
            vehicle_type=payload["vehicle_type"],
            shipment_type=payload["shipment_type"],
            delivery_type=payload["delivery_type"],
            payment_option=payment_option,
            payment_status=payment_status,
            gateway_order_id=gateway_order_id,
            price_paise=payload["price_paise"],
            pricing_breakdown=payload["pricing_breakdown"],
            payout_breakdown=payload["payout_breakdown"],
        )
        ShipmentStateMachine.record_event(
            shipment,
            ShipmentEventType.CREATED,
            "Shipment booked",
            payment_option=payment_option,
            price_paise=shipment.price_paise,
        )
        cls.get_logger().info(
            "Shipment materialized",
            extra={
                "shipment_id": str(shipment.id),
                "reference_id": shipment.reference_id,
                "payment_option": payment_option,
                "price_paise": shipment.price_paise,
            },
        )
        return shipment

    @staticmethod
    def _create_invoice(shipment: Shipment, amount_paise: int | None = None) -> Invoice:
        return Invoice.objects.create(
            shipment=shipment,
            customer=shipment.customer,
            amount_paise=amount_paise or shipment.price_paise,
            currency=settings.SETTLEMENT_CURRENCY,
        )

    @classmethod
    def _record_payment(
        cls,
        invoice: Invoice,
        kind: str,
        provider_ref: str = "",
        status: str = PaymentStatus.SUCCEEDED,
        reason: str = "",
    ) -> tuple[Payment, bool]:
        """
        Insert a payment or return the one that already holds its slot.

        The slot is either the provider reference (per kind) or the single
        live PENDING/SUCCEEDED payment per (invoice, kind).
        """
        now = timezone.now()
        try:
            with transaction.atomic():
                payment = Payment.objects.create(
                    invoice=invoice,
                    kind=kind,
                    status=status,
                    amount_paise=invoice.amount_paise,
                    currency=invoice.currency,
                    provider_ref=provider_ref,
                    failure_reason=reason if status == PaymentStatus.FAILED else "",
                    succeeded_at=now if status == PaymentStatus.SUCCEEDED else None,
                    failed_at=now if status == PaymentStatus.FAILED else None,
                )
        except IntegrityError:
            existing = None
            if provider_ref:
                existing = Payment.objects.filter(kind=kind, provider_ref=provider_ref).first()
            if existing is None:
                existing = Payment.objects.filter(
                    invoice=invoice, kind=kind, status__in=LIVE_PAYMENT_STATUSES
                ).first()
            if existing is None or existing.invoice_id != invoice.pk:
                raise InvalidInvoiceTransition(
                    f"{kind} payment conflicts with an existing payment",
                    details={"invoice_id": str(invoice.id), "provider_ref": provider_ref},
                )
            return existing, False

        cls.get_logger().info(
            "Payment recorded",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "kind": kind,
                "status": status,
                "amount_paise": payment.amount_paise,
            },
        )
        emit_payment_status(payment)
        return payment, True

    @classmethod
    def _fail_payment(cls, payment_id, reason: str) -> Payment:
        payment = Payment.objects.select_for_update().get(pk=payment_id)
        if payment.status == PaymentStatus.PENDING:
            payment.fail(reason)
            payment.save(update_fields=["status", "failure_reason", "failed_at", "updated_at"])
            emit_payment_status(payment)
        return payment

    @classmethod
    def _apply_issue(cls, invoice: Invoice) -> Invoice:
        invoice.issue(due_at=timezone.now() + timedelta(days=settings.SETTLEMENT_INVOICE_DUE_DAYS))
        invoice.save(update_fields=["status", "issued_at", "due_at", "updated_at"])
        cls._log_invoice(invoice, "Invoice issued")
        return invoice

    @classmethod
    def _apply_release(cls, invoice: Invoice, actor=None) -> list[Payout]:
        """Escrow release for a locked FUNDED/DISPUTED invoice."""
        cls._record_payment(invoice, PaymentKind.ESCROW_RELEASE)
        payouts = PayoutService.reserve_release(invoice)
        invoice.settle()
        invoice.save(update_fields=["status", "paid_at", "updated_at"])
        cls._log_invoice(invoice, "Invoice released", actor=actor, payouts=len(payouts))
        cls._sync_shipment(invoice.shipment_id, close=True)
        return payouts

    @classmethod
    def _sync_shipment(cls, shipment_id, payment_status: str | None = None, close: bool = False):
        """Mirror invoice progress on the shipment (locks it)."""
        shipment = Shipment.objects.select_for_update().get(pk=shipment_id)
        if payment_status and shipment.payment_status != payment_status:
            shipment.payment_status = payment_status
            shipment.save(update_fields=["payment_status", "updated_at"])
        if close and shipment.status == ShipmentStatus.DELIVERED:
            ShipmentStateMachine.apply_close(shipment)
        return shipment

    @classmethod
    def _execute_payouts(cls, payouts: list[Payout]) -> None:
        for payout in payouts:
            if payout.status != PayoutStatus.PENDING:
                continue
            result = PayoutService.execute(payout.id)
            if not result.success:
                cls.get_logger().warning(
                    "Payout left for operator retry",
                    extra={"payout_id": str(payout.id), "error_code": result.error_code},
                )

    @classmethod
    def _open_dispute(cls, dispute_id, lock: bool = False) -> Dispute:
        dispute = cls._lock(Dispute, dispute_id) if lock else cls._get(Dispute, dispute_id)
        if dispute.status != DisputeStatus.OPEN:
            raise DisputeAlreadyResolvedError(
                "Dispute is already resolved",
                details={"dispute_id": str(dispute.id), "outcome": dispute.outcome},
            )
        return dispute

    @staticmethod
    def _invoice_for_update(shipment: Shipment) -> Invoice:
        invoice = Invoice.objects.select_for_update().filter(shipment=shipment).first()
        if invoice is None:
            raise SettlementNotFoundError(
                "Shipment has no invoice",
                error_code="INVOICE_NOT_FOUND",
                details={"shipment_id": str(shipment.id)},
            )
        return invoice

    @staticmethod
    def _require_not_refunded(invoice: Invoice | None, shipment: Shipment) -> None:
        if invoice is None:
            return
        refunding = invoice.payments.filter(
            kind=PaymentKind.ESCROW_REFUND, status=PaymentStatus.PENDING
        ).exists()
        if invoice.status == InvoiceStatus.REFUNDED or refunding:
            raise InvalidInvoiceTransition(
                "Cannot deliver against a refunded invoice",
                error_code="INVOICE_REFUNDED",
                details={
                    "shipment_id": str(shipment.id),
                    "invoice_id": str(invoice.id),
                    "invoice_status": invoice.status,
                },
            )

    @staticmethod
    def _require_invoice_status(invoice: Invoice, allowed, target: str) -> None:
        if invoice.status not in allowed:
            raise InvalidInvoiceTransition(
                f"Cannot move invoice to {target} while it is {invoice.status}",
                details={
                    "invoice_id": str(invoice.id),
                    "current_status": invoice.status,
                    "target_status": target,
                },
            )

    @classmethod
    def _log_invoice(cls, invoice: Invoice, message: str, actor=None, **extra) -> None:
        cls.get_logger().info(
            message,
            extra={
                "invoice_id": str(invoice.id),
                "shipment_id": str(invoice.shipment_id),
                "status": invoice.status,
                "amount_paise": invoice.amount_paise,
                "actor_id": str(getattr(actor, "pk", "") or ""),
                **extra,
            },
        )
