"""
Tests for SettlementCoordinator.

Test Organization:
    - Booking (gateway orders, payment confirmation, PAY_LATER)
    - Invoice lifecycle (issue, fund, release, refund, invoice orders)
    - Disputes (open once, resolve once)
    - Delivery hook and earnings summary

Rows are re-read through the managers; FSM status fields are protected
and cannot be refreshed in place.
"""

import hashlib
import hmac
import uuid
from datetime import timedelta

import pytest
from freezegun import freeze_time

from settlement.models import Dispute, Invoice, Payment, Payout, PendingShipment
from settlement.services import SettlementCoordinator, WithdrawalService
from settlement.state_machines import (
    DisputeOutcome,
    DisputeStatus,
    InvoiceStatus,
    PaymentKind,
    PaymentStatus,
    PayoutStatus,
    PendingShipmentStatus,
    RecipientType,
    WithdrawalStatus,
)
from settlement.tests.conftest import (
    DRAFT,
    DRIVER_SHARE_PAISE,
    INVOICE_TOTAL_PAISE,
    OPERATOR_SHARE_PAISE,
    FailingRefundGateway,
    confirm,
    deliver,
    unwrap,
)
from settlement.tests.factories import DeliveredShipmentFactory, WithdrawalFactory
from shipments.models import Shipment, ShipmentEvent
from shipments.states import (
    CreatedByRole,
    EarningsStatus,
    PaymentOption,
    ShipmentEventType,
    ShipmentPaymentStatus,
    ShipmentStatus,
)
from shipments.tests.factories import ShipmentFactory
from shipments.tests.helpers import drive_to_in_transit


def invoice_of(shipment) -> Invoice:
    return Invoice.objects.get(shipment_id=shipment.pk)


# =============================================================================
# Booking
# =============================================================================


@pytest.mark.django_db
class TestCreateOrder:
    def test_order_holds_draft_without_creating_shipment(self, customer):
        record = unwrap(SettlementCoordinator.create_order(customer, DRAFT))

        assert record.order_id.startswith("order_")
        assert record.amount_paise == INVOICE_TOTAL_PAISE
        assert record.status == PendingShipmentStatus.PENDING
        assert record.payload["payout_breakdown"]["driver_share"] == "3791.90"
        assert Shipment.objects.count() == 0

    def test_missing_distance_is_invalid(self, customer):
        result = SettlementCoordinator.create_order(customer, {"pickup_address": "Andheri"})

        assert result.error_code == "INVALID_DRAFT"
        assert PendingShipment.objects.count() == 0

    def test_negative_weight_is_invalid(self, customer):
        result = SettlementCoordinator.create_order(customer, {"distance_km": 10, "weight_kg": -1})

        assert result.error_code == "INVALID_DRAFT"


@pytest.mark.django_db
class TestConfirmPayment:
    def test_confirmation_materializes_funded_shipment(self, pending_order, customer):
        """
        Given a gateway order for Rs 5417
        When the captured payment is confirmed with a valid signature
        Then a PAID shipment with a FUNDED invoice and one ESCROW_FUND payment exists
        """
        confirmation = unwrap(confirm(pending_order.order_id, "pay_1"))

        shipment = Shipment.objects.get(pk=confirmation.shipment.pk)
        assert shipment.customer == customer
        assert shipment.status == ShipmentStatus.CREATED
        assert shipment.payment_option == PaymentOption.PAY_NOW
        assert shipment.payment_status == ShipmentPaymentStatus.PAID
        assert shipment.gateway_order_id == pending_order.order_id
        assert shipment.price_paise == INVOICE_TOTAL_PAISE

        invoice = invoice_of(shipment)
        assert invoice.status == InvoiceStatus.FUNDED
        assert invoice.amount_paise == INVOICE_TOTAL_PAISE
        payment = invoice.payments.get()
        assert payment.kind == PaymentKind.ESCROW_FUND
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.provider_ref == "pay_1"

        record = PendingShipment.objects.get(order_id=pending_order.order_id)
        assert record.status == PendingShipmentStatus.COMPLETED
        assert record.shipment_id == shipment.pk
        assert confirmation.replayed is False

    def test_confirming_twice_books_once(self, pending_order):
        first = unwrap(confirm(pending_order.order_id, "pay_1"))

        second = unwrap(confirm(pending_order.order_id, "pay_1"))

        assert second.replayed is True
        assert second.shipment.pk == first.shipment.pk
        assert Shipment.objects.count() == 1
        assert Payment.objects.count() == 1

    def test_webhook_after_client_confirmation_is_a_replay(self, pending_order):
        unwrap(confirm(pending_order.order_id, "pay_1"))

        result = SettlementCoordinator.confirm_payment(
            pending_order.order_id, "pay_1", verified=True
        )

        assert result.data.replayed is True
        assert Invoice.objects.count() == 1

    def test_bad_signature_writes_nothing(self, pending_order):
        result = SettlementCoordinator.confirm_payment(
            pending_order.order_id, "pay_1", signature="deadbeef"
        )

        assert result.error_code == "SIGNATURE_INVALID"
        assert Shipment.objects.count() == 0
        assert Payment.objects.count() == 0
        record = PendingShipment.objects.get(order_id=pending_order.order_id)
        assert record.status == PendingShipmentStatus.PENDING

    def test_empty_key_secret_rejects_forged_signature(self, pending_order, settings):
        settings.SETTLEMENT_GATEWAY_KEY_SECRET = ""
        message = f"{pending_order.order_id}|pay_forged".encode()
        forged = hmac.new(b"", message, hashlib.sha256).hexdigest()

        result = SettlementCoordinator.confirm_payment(
            pending_order.order_id, "pay_forged", signature=forged
        )

        assert result.error_code == "SIGNATURE_INVALID"
        assert Shipment.objects.count() == 0
        assert Payment.objects.count() == 0

    def test_unknown_order(self, db):
        result = confirm("order_unknown")

        assert result.error_code == "ORDER_NOT_FOUND"

    def test_replay_after_record_was_purged(self, pending_order):
        first = unwrap(confirm(pending_order.order_id))
        PendingShipment.objects.all().delete()

        replay = unwrap(confirm(pending_order.order_id))

        assert replay.replayed is True
        assert replay.shipment.pk == first.shipment.pk
        assert Shipment.objects.count() == 1

    def test_capture_after_failed_attempt_still_books(self, pending_order):
        SettlementCoordinator.record_payment_failure(
            pending_order.order_id, "pay_failed", reason="Card declined"
        )
        assert (
            PendingShipment.objects.get(order_id=pending_order.order_id).status
            == PendingShipmentStatus.FAILED
        )

        confirmation = unwrap(confirm(pending_order.order_id, "pay_retry"))

        assert invoice_of(confirmation.shipment).status == InvoiceStatus.FUNDED

    def test_payment_failure_for_unknown_order(self, db):
        result = SettlementCoordinator.record_payment_failure("order_missing")

        assert result.error_code == "ORDER_NOT_FOUND"


@pytest.mark.django_db
class TestBookShipment:
    def test_pay_later_booking_has_draft_invoice(self, customer):
        shipment = unwrap(SettlementCoordinator.book_shipment(customer, DRAFT))

        assert shipment.payment_option == PaymentOption.PAY_LATER
        assert shipment.payment_status == ShipmentPaymentStatus.PENDING
        assert shipment.created_by_role == CreatedByRole.CUSTOMER
        assert invoice_of(shipment).status == InvoiceStatus.DRAFT
        assert ShipmentEvent.objects.filter(
            shipment=shipment, event_type=ShipmentEventType.CREATED
        ).exists()

    def test_manager_booking_is_marked(self, customer, manager):
        shipment = unwrap(
            SettlementCoordinator.book_shipment(customer, DRAFT, created_by=manager)
        )

        assert shipment.customer == customer
        assert shipment.created_by_role == CreatedByRole.MANAGER

    def test_payout_breakdown_is_fixed_at_booking(self, customer, settings):
        shipment = unwrap(SettlementCoordinator.book_shipment(customer, DRAFT))

        settings.SETTLEMENT_DRIVER_SHARE_RATIO = 0.5

        stored = Shipment.objects.get(pk=shipment.pk)
        assert stored.payout_breakdown["driver_share"] == "3791.90"


# =============================================================================
# Invoice Lifecycle
# =============================================================================


@pytest.mark.django_db
class TestIssueInvoice:
    @freeze_time("2025-03-01 10:00:00")
    def test_issue_sets_due_date(self, draft_invoice):
        invoice = unwrap(SettlementCoordinator.issue_invoice(draft_invoice.id))

        assert invoice.status == InvoiceStatus.ISSUED
        assert invoice.due_at - invoice.issued_at == timedelta(days=7)

    def test_issue_twice_is_rejected(self, draft_invoice):
        SettlementCoordinator.issue_invoice(draft_invoice.id)

        result = SettlementCoordinator.issue_invoice(draft_invoice.id)

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert result.details["current_status"] == InvoiceStatus.ISSUED

    def test_unknown_invoice(self, db):
        result = SettlementCoordinator.issue_invoice(uuid.uuid4())

        assert result.error_code == "INVOICE_NOT_FOUND"


@pytest.mark.django_db
class TestFundInvoice:
    def test_fund_draft_invoice(self, draft_invoice, booked_shipment):
        invoice = unwrap(SettlementCoordinator.fund_invoice(draft_invoice.id, "pay_escrow_1"))

        assert invoice.status == InvoiceStatus.FUNDED
        assert invoice.funded_at is not None
        assert invoice.payments.get().kind == PaymentKind.ESCROW_FUND
        shipment = Shipment.objects.get(pk=booked_shipment.pk)
        assert shipment.payment_status == ShipmentPaymentStatus.PAID

    def test_same_reference_is_a_replay(self, funded_invoice):
        result = SettlementCoordinator.fund_invoice(funded_invoice.id, "pay_escrow_1")

        assert result.success
        assert funded_invoice.payments.count() == 1

    def test_second_funding_is_rejected(self, funded_invoice):
        result = SettlementCoordinator.fund_invoice(funded_invoice.id, "pay_escrow_2")

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert funded_invoice.payments.count() == 1

    def test_provider_reference_required(self, draft_invoice):
        result = SettlementCoordinator.fund_invoice(draft_invoice.id, "")

        assert result.error_code == "PROVIDER_REF_REQUIRED"


@pytest.mark.django_db
class TestReleaseInvoice:
    def test_release_pays_operator_once(self, funded_invoice, payout_rail):
        """
        Why it matters:
            Release is where money leaves the platform. A repeated release
            must never reach the payout rail a second time.
        """
        invoice = unwrap(SettlementCoordinator.release_invoice(funded_invoice.id))

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.payments.filter(kind=PaymentKind.ESCROW_RELEASE).count() == 1
        payout = Payout.objects.get(invoice=invoice)
        assert payout.recipient_type == RecipientType.LOGISTICS_ORG
        assert payout.amount_paise == OPERATOR_SHARE_PAISE
        assert payout.destination == "operator@settlement"
        assert payout.status == PayoutStatus.SUCCEEDED

        again = SettlementCoordinator.release_invoice(funded_invoice.id)

        assert again.error_code == "INVALID_STATE_TRANSITION"
        assert Payout.objects.count() == 1
        assert payout_rail.disburse.call_count == 1

    def test_release_closes_delivered_shipment(self, funded_delivered_shipment, payout_rail):
        invoice = invoice_of(funded_delivered_shipment)

        unwrap(SettlementCoordinator.release_invoice(invoice.id))

        shipment = Shipment.objects.get(pk=funded_delivered_shipment.pk)
        assert shipment.status == ShipmentStatus.CLOSED
        assert shipment.closed_at is not None

    def test_release_pays_driver_when_configured(
        self, funded_delivered_shipment, driver, payout_rail, settings
    ):
        settings.SETTLEMENT_RELEASE_RECIPIENTS = ["DRIVER", "LOGISTICS_ORG"]

        unwrap(SettlementCoordinator.release_invoice(invoice_of(funded_delivered_shipment).id))

        driver_payout = Payout.objects.get(recipient_type=RecipientType.DRIVER)
        assert driver_payout.recipient == driver
        assert driver_payout.destination == driver.upi_id
        assert driver_payout.amount_paise == DRIVER_SHARE_PAISE
        operator_payout = Payout.objects.get(recipient_type=RecipientType.LOGISTICS_ORG)
        assert operator_payout.amount_paise == OPERATOR_SHARE_PAISE
        shipment = Shipment.objects.get(pk=funded_delivered_shipment.pk)
        assert shipment.driver_earnings_status == EarningsStatus.PAID_OUT
        assert shipment.driver_earnings_withdrawn_at is not None

    def test_driver_paid_on_release_cannot_withdraw_same_share(
        self, funded_delivered_shipment, driver, payout_rail, settings
    ):
        """
        Why it matters:
            A driver share is paid once, either by release or by withdrawal.
        """
        settings.SETTLEMENT_RELEASE_RECIPIENTS = ["DRIVER", "LOGISTICS_ORG"]
        unwrap(SettlementCoordinator.release_invoice(invoice_of(funded_delivered_shipment).id))

        result = WithdrawalService.request_withdrawal(driver, DRIVER_SHARE_PAISE)

        assert result.error_code == "INSUFFICIENT_BALANCE"
        assert WithdrawalService.available_balance(driver) == 0
        summary = unwrap(SettlementCoordinator.earnings_summary(driver))
        assert summary.paid_out_paise == DRIVER_SHARE_PAISE
        assert summary.available_paise == 0

    def test_undelivered_shipment_gets_no_driver_payout(
        self, funded_invoice, booked_shipment, driver, vehicle, manager, payout_rail, settings
    ):
        settings.SETTLEMENT_RELEASE_RECIPIENTS = ["DRIVER", "LOGISTICS_ORG"]
        drive_to_in_transit(booked_shipment, driver, vehicle, manager)

        invoice = unwrap(SettlementCoordinator.release_invoice(funded_invoice.id))

        assert invoice.status == InvoiceStatus.PAID
        assert not Payout.objects.filter(recipient_type=RecipientType.DRIVER).exists()
        assert Payout.objects.filter(recipient_type=RecipientType.LOGISTICS_ORG).count() == 1
        shipment = Shipment.objects.get(pk=funded_invoice.shipment_id)
        assert shipment.driver_earnings_status == EarningsStatus.PENDING

    def test_withdrawn_share_is_not_paid_again_on_release(
        self, funded_delivered_shipment, driver, payout_rail, settings
    ):
        settings.SETTLEMENT_RELEASE_RECIPIENTS = ["DRIVER", "LOGISTICS_ORG"]
        unwrap(WithdrawalService.request_withdrawal(driver, DRIVER_SHARE_PAISE))

        unwrap(SettlementCoordinator.release_invoice(invoice_of(funded_delivered_shipment).id))

        assert not Payout.objects.filter(recipient_type=RecipientType.DRIVER).exists()
        shipment = Shipment.objects.get(pk=funded_delivered_shipment.pk)
        assert shipment.driver_earnings_status == EarningsStatus.WITHDRAWN

    def test_rail_failure_keeps_invoice_paid(self, funded_invoice, rejecting_rail):
        invoice = unwrap(SettlementCoordinator.release_invoice(funded_invoice.id))

        assert invoice.status == InvoiceStatus.PAID
        payout = Payout.objects.get(invoice=invoice)
        assert payout.status == PayoutStatus.FAILED
        assert payout.failure_reason == "Payout rail unavailable"

    def test_draft_invoice_cannot_be_released(self, draft_invoice):
        result = SettlementCoordinator.release_invoice(draft_invoice.id)

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert Payout.objects.count() == 0


@pytest.mark.django_db
class TestRefundInvoice:
    def test_refund_funded_invoice(self, funded_invoice, booked_shipment):
        invoice = unwrap(SettlementCoordinator.refund_invoice(funded_invoice.id))

        assert invoice.status == InvoiceStatus.REFUNDED
        refund = invoice.payments.get(kind=PaymentKind.ESCROW_REFUND)
        assert refund.status == PaymentStatus.SUCCEEDED
        assert refund.provider_ref.startswith("rfnd_")
        assert refund.amount_paise == INVOICE_TOTAL_PAISE
        shipment = Shipment.objects.get(pk=booked_shipment.pk)
        assert shipment.payment_status == ShipmentPaymentStatus.REFUNDED

    def test_refund_twice_is_a_noop(self, funded_invoice):
        SettlementCoordinator.refund_invoice(funded_invoice.id)

        result = SettlementCoordinator.refund_invoice(funded_invoice.id)

        assert result.success
        assert Payment.objects.filter(kind=PaymentKind.ESCROW_REFUND).count() == 1

    def test_gateway_failure_leaves_invoice_funded(self, funded_invoice):
        SettlementCoordinator.set_gateway(FailingRefundGateway)

        result = SettlementCoordinator.refund_invoice(funded_invoice.id)

        assert result.error_code == "GATEWAY_REFUND_FAILED"
        assert Invoice.objects.get(pk=funded_invoice.pk).status == InvoiceStatus.FUNDED
        refund = Payment.objects.get(kind=PaymentKind.ESCROW_REFUND)
        assert refund.status == PaymentStatus.FAILED

    def test_refund_can_be_retried_after_gateway_failure(self, funded_invoice):
        SettlementCoordinator.set_gateway(FailingRefundGateway)
        SettlementCoordinator.refund_invoice(funded_invoice.id)
        SettlementCoordinator.set_gateway(None)

        invoice = unwrap(SettlementCoordinator.refund_invoice(funded_invoice.id))

        assert invoice.status == InvoiceStatus.REFUNDED
        assert Payment.objects.filter(kind=PaymentKind.ESCROW_REFUND).count() == 2

    def test_paid_invoice_cannot_be_refunded(self, funded_invoice, payout_rail):
        SettlementCoordinator.release_invoice(funded_invoice.id)

        result = SettlementCoordinator.refund_invoice(funded_invoice.id)

        assert result.error_code == "INVALID_STATE_TRANSITION"


@pytest.mark.django_db
class TestInvoiceOrder:
    def test_pay_later_invoice_collected_through_gateway(
        self, delivered_shipment, payout_rail
    ):
        """
        Given a delivered PAY_LATER shipment with an ISSUED invoice
        When the customer pays the invoice order
        Then the invoice is PAID, the operator is paid and the shipment closes
        """
        invoice = invoice_of(delivered_shipment)
        assert invoice.status == InvoiceStatus.ISSUED

        invoice = unwrap(SettlementCoordinator.create_invoice_order(invoice.id))
        assert invoice.gateway_order_id.startswith("order_")

        confirmation = unwrap(confirm(invoice.gateway_order_id, "pay_invoice_1"))

        assert confirmation.invoice.status == InvoiceStatus.PAID
        assert invoice.payments.get(kind=PaymentKind.SETTLEMENT).provider_ref == "pay_invoice_1"
        assert Payout.objects.get(invoice=invoice).status == PayoutStatus.SUCCEEDED
        shipment = Shipment.objects.get(pk=delivered_shipment.pk)
        assert shipment.status == ShipmentStatus.CLOSED
        assert shipment.payment_status == ShipmentPaymentStatus.PAID

        replay = unwrap(confirm(invoice.gateway_order_id, "pay_invoice_1"))
        assert replay.replayed is True
        assert payout_rail.disburse.call_count == 1

    def test_invoice_order_is_minted_once(self, delivered_shipment):
        invoice = invoice_of(delivered_shipment)
        first = unwrap(SettlementCoordinator.create_invoice_order(invoice.id))

        second = unwrap(SettlementCoordinator.create_invoice_order(invoice.id))

        assert second.gateway_order_id == first.gateway_order_id

    def test_draft_invoice_has_no_order(self, draft_invoice):
        result = SettlementCoordinator.create_invoice_order(draft_invoice.id)

        assert result.error_code == "INVALID_STATE_TRANSITION"

    def test_failed_invoice_payment_marks_shipment(self, delivered_shipment):
        invoice = unwrap(
            SettlementCoordinator.create_invoice_order(invoice_of(delivered_shipment).id)
        )

        SettlementCoordinator.record_payment_failure(
            invoice.gateway_order_id, "pay_declined", reason="Insufficient funds"
        )

        payment = Payment.objects.get(kind=PaymentKind.SETTLEMENT)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Insufficient funds"
        shipment = Shipment.objects.get(pk=delivered_shipment.pk)
        assert shipment.payment_status == ShipmentPaymentStatus.FAILED
        assert Invoice.objects.get(pk=invoice.pk).status == InvoiceStatus.ISSUED


# =============================================================================
# Disputes
# =============================================================================


@pytest.mark.django_db
class TestOpenDispute:
    def test_open_dispute_on_funded_invoice(self, funded_invoice, booked_shipment, customer):
        dispute = unwrap(
            SettlementCoordinator.open_dispute(booked_shipment.pk, customer, "  Goods damaged ")
        )

        assert dispute.status == DisputeStatus.OPEN
        assert dispute.reason == "Goods damaged"
        invoice = Invoice.objects.get(pk=funded_invoice.pk)
        assert invoice.status == InvoiceStatus.DISPUTED
        assert invoice.disputed_from == InvoiceStatus.FUNDED

    def test_second_dispute_is_rejected(self, funded_invoice, booked_shipment, customer):
        SettlementCoordinator.open_dispute(booked_shipment.pk, customer, "Late")

        result = SettlementCoordinator.open_dispute(booked_shipment.pk, customer, "Damaged")

        assert result.error_code == "DISPUTE_ALREADY_OPEN"
        assert Dispute.objects.count() == 1

    def test_only_the_customer_can_dispute(self, funded_invoice, booked_shipment, other_customer):
        result = SettlementCoordinator.open_dispute(booked_shipment.pk, other_customer, "Late")

        assert result.error_code == "PERMISSION_DENIED"

    def test_reason_required(self, funded_invoice, booked_shipment, customer):
        result = SettlementCoordinator.open_dispute(booked_shipment.pk, customer, "   ")

        assert result.error_code == "REASON_REQUIRED"

    def test_unfunded_invoice_cannot_be_disputed(self, draft_invoice, booked_shipment, customer):
        result = SettlementCoordinator.open_dispute(booked_shipment.pk, customer, "Late")

        assert result.error_code == "INVALID_STATE_TRANSITION"

    def test_shipment_without_invoice(self, customer):
        shipment = ShipmentFactory(customer=customer)

        result = SettlementCoordinator.open_dispute(shipment.pk, customer, "Late")

        assert result.error_code == "INVOICE_NOT_FOUND"


@pytest.mark.django_db
class TestResolveDispute:
    @pytest.fixture
    def dispute(self, funded_invoice, booked_shipment, customer):
        return unwrap(SettlementCoordinator.open_dispute(booked_shipment.pk, customer, "Late"))

    def test_refund_outcome(self, dispute, manager):
        resolved = unwrap(
            SettlementCoordinator.resolve_dispute(
                dispute.id, DisputeOutcome.REFUND, "Customer compensated", manager
            )
        )

        assert resolved.status == DisputeStatus.RESOLVED
        assert resolved.outcome == DisputeOutcome.REFUND
        assert resolved.resolved_by == manager
        assert Invoice.objects.get(pk=dispute.invoice_id).status == InvoiceStatus.REFUNDED

    def test_release_outcome_pays_out(self, dispute, manager, payout_rail):
        unwrap(SettlementCoordinator.resolve_dispute(dispute.id, DisputeOutcome.RELEASE, "", manager))

        assert Invoice.objects.get(pk=dispute.invoice_id).status == InvoiceStatus.PAID
        assert Payout.objects.get().status == PayoutStatus.SUCCEEDED

    def test_resolution_happens_once(self, dispute, manager, payout_rail):
        """
        Given a dispute resolved with REFUND
        When someone tries to resolve it again with RELEASE
        Then the second call fails and the recorded outcome stays REFUND
        """
        SettlementCoordinator.resolve_dispute(dispute.id, DisputeOutcome.REFUND, "", manager)

        result = SettlementCoordinator.resolve_dispute(
            dispute.id, DisputeOutcome.RELEASE, "", manager
        )

        assert result.error_code == "DISPUTE_ALREADY_RESOLVED"
        assert Dispute.objects.get(pk=dispute.pk).outcome == DisputeOutcome.REFUND
        assert Invoice.objects.get(pk=dispute.invoice_id).status == InvoiceStatus.REFUNDED
        assert payout_rail.disburse.call_count == 0

    def test_unknown_outcome(self, dispute):
        result = SettlementCoordinator.resolve_dispute(dispute.id, "SPLIT")

        assert result.error_code == "INVALID_OUTCOME"
        assert Dispute.objects.get(pk=dispute.pk).status == DisputeStatus.OPEN

    def test_failed_refund_keeps_dispute_open(self, dispute):
        SettlementCoordinator.set_gateway(FailingRefundGateway)

        result = SettlementCoordinator.resolve_dispute(dispute.id, DisputeOutcome.REFUND)

        assert result.error_code == "GATEWAY_REFUND_FAILED"
        assert Dispute.objects.get(pk=dispute.pk).status == DisputeStatus.OPEN
        assert Invoice.objects.get(pk=dispute.invoice_id).status == InvoiceStatus.DISPUTED

    def test_dispute_after_release_does_not_pay_twice(
        self, funded_invoice, booked_shipment, customer, manager, payout_rail
    ):
        SettlementCoordinator.release_invoice(funded_invoice.id)
        dispute = unwrap(
            SettlementCoordinator.open_dispute(booked_shipment.pk, customer, "Wrong item")
        )

        unwrap(SettlementCoordinator.resolve_dispute(dispute.id, DisputeOutcome.RELEASE, "", manager))

        assert Invoice.objects.get(pk=funded_invoice.pk).status == InvoiceStatus.PAID
        assert Payout.objects.count() == 1
        assert payout_rail.disburse.call_count == 1


# =============================================================================
# Delivery Hook and Earnings
# =============================================================================


@pytest.mark.django_db
class TestDelivery:
    def test_delivery_hook_is_idempotent(self, delivered_shipment):
        before = Shipment.objects.get(pk=delivered_shipment.pk)

        unwrap(SettlementCoordinator.on_delivered(delivered_shipment.pk))

        after = Shipment.objects.get(pk=delivered_shipment.pk)
        assert after.driver_earnings_paise == DRIVER_SHARE_PAISE
        assert after.driver_earnings_available_at == before.driver_earnings_available_at
        assert (
            ShipmentEvent.objects.filter(
                shipment=after, event_type=ShipmentEventType.EARNINGS_AVAILABLE
            ).count()
            == 1
        )

    def test_undelivered_shipment_has_no_earnings(self, booked_shipment):
        result = SettlementCoordinator.on_delivered(booked_shipment.pk)

        assert result.error_code == "INVALID_STATE_TRANSITION"
        shipment = Shipment.objects.get(pk=booked_shipment.pk)
        assert shipment.driver_earnings_status == EarningsStatus.PENDING

    def test_delivery_of_released_shipment_closes_it(
        self, funded_invoice, booked_shipment, driver, vehicle, manager, payout_rail
    ):
        drive_to_in_transit(booked_shipment, driver, vehicle, manager)
        SettlementCoordinator.release_invoice(funded_invoice.id)

        deliver(booked_shipment, driver)

        assert Shipment.objects.get(pk=booked_shipment.pk).status == ShipmentStatus.CLOSED


@pytest.mark.django_db
class TestEarningsSummary:
    def test_balances(self, driver):
        DeliveredShipmentFactory.create_batch(2, assigned_driver=driver)
        DeliveredShipmentFactory(
            assigned_driver=driver,
            driver_earnings_status=EarningsStatus.WITHDRAWN,
            driver_earnings_paise=100000,
        )
        ShipmentFactory(assigned_driver=driver)
        WithdrawalFactory(driver=driver, amount_paise=100000, status=WithdrawalStatus.SUCCESS)
        WithdrawalFactory(driver=driver, amount_paise=50000, status=WithdrawalStatus.PROCESSING)

        summary = unwrap(SettlementCoordinator.earnings_summary(driver))

        assert summary.available_paise == 2 * DRIVER_SHARE_PAISE
        assert summary.lifetime_paise == 2 * DRIVER_SHARE_PAISE + 100000
        assert summary.withdrawn_paise == 100000
        assert summary.processing_paise == 50000
        assert summary.pending_deliveries == 1
        assert len(summary.shipments) == 4
        assert len(summary.withdrawals) == 2

    def test_other_drivers_are_excluded(self, driver):
        DeliveredShipmentFactory()

        summary = unwrap(SettlementCoordinator.earnings_summary(driver))

        assert summary.available_paise == 0
        assert summary.shipments == []
