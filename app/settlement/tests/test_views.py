"""
Tests for the settlement API views.

Tests focus on observable HTTP behavior:
- Response status codes and error codes
- Response body structure
- Role and ownership enforcement

Service semantics are covered in test_services.py; here each endpoint is
driven once through its happy path and its permission boundary.
"""

import pytest
from django.urls import reverse
from rest_framework import status

from authentication.tests.factories import DriverFactory
from settlement.adapters import SandboxGateway
from settlement.models import Dispute, DriverWithdrawal, Invoice, PendingShipment
from settlement.services import SettlementCoordinator, WithdrawalService
from settlement.state_machines import (
    DisputeStatus,
    InvoiceStatus,
    PayoutStatus,
    WithdrawalStatus,
)
from settlement.tests.conftest import DRAFT, DRIVER_SHARE_PAISE, INVOICE_TOTAL_PAISE, unwrap
from settlement.tests.factories import DeliveredShipmentFactory, PayoutFactory
from shipments.models import Shipment
from shipments.services import ShipmentStateMachine
from shipments.states import OtpPurpose, ShipmentStatus


def url(name, pk=None):
    return reverse(f"settlement:{name}", kwargs={"pk": pk} if pk else None)


@pytest.fixture
def customer_client(authenticated_client_factory, customer):
    return authenticated_client_factory(customer)


@pytest.fixture
def driver_client(authenticated_client_factory, driver):
    return authenticated_client_factory(driver)


@pytest.fixture
def manager_client(authenticated_client_factory, manager):
    return authenticated_client_factory(manager)


@pytest.fixture
def other_client(authenticated_client_factory, other_customer):
    return authenticated_client_factory(other_customer)


# =============================================================================
# Booking
# =============================================================================


@pytest.mark.django_db
class TestOrderView:
    def test_pay_now_returns_gateway_order(self, customer_client):
        response = customer_client.post(url("orders"), DRAFT, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["order_id"].startswith("order_")
        assert response.data["amount_paise"] == INVOICE_TOTAL_PAISE
        assert response.data["price_breakdown"]["grand_total_paise"] == INVOICE_TOTAL_PAISE
        assert Shipment.objects.count() == 0

    def test_pay_later_returns_shipment(self, customer_client, customer):
        response = customer_client.post(
            url("orders"), {**DRAFT, "payment_option": "PAY_LATER"}, format="json"
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["status"] == ShipmentStatus.CREATED
        assert response.data["payment_status"] == "PENDING"
        assert Shipment.objects.get().customer == customer

    def test_manager_books_for_customer(self, manager_client, customer):
        response = manager_client.post(
            url("orders"), {**DRAFT, "customer_id": customer.pk}, format="json"
        )

        assert response.status_code == status.HTTP_201_CREATED
        shipment = Shipment.objects.get()
        assert shipment.customer == customer
        assert shipment.created_by_role == "MANAGER"

    def test_invalid_draft(self, customer_client):
        response = customer_client.post(url("orders"), {"pickup_address": "x"}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert PendingShipment.objects.count() == 0

    def test_requires_authentication(self, api_client, db):
        response = api_client.post(url("orders"), DRAFT, format="json")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.django_db
class TestConfirmPaymentView:
    def test_confirm_and_replay(self, customer_client, pending_order):
        body = {
            "order_id": pending_order.order_id,
            "payment_id": "pay_1",
            "signature": SandboxGateway.sign_payment(pending_order.order_id, "pay_1"),
        }

        first = customer_client.post(url("confirm_payment"), body, format="json")
        second = customer_client.post(url("confirm_payment"), body, format="json")

        assert first.status_code == status.HTTP_200_OK
        assert first.data["invoice"]["status"] == InvoiceStatus.FUNDED
        assert first.data["replayed"] is False
        assert second.data["replayed"] is True
        assert second.data["shipment"]["id"] == first.data["shipment"]["id"]

    def test_bad_signature(self, customer_client, pending_order):
        response = customer_client.post(
            url("confirm_payment"),
            {"order_id": pending_order.order_id, "payment_id": "pay_1", "signature": "bad"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "SIGNATURE_INVALID"

    def test_unknown_order(self, customer_client):
        response = customer_client.post(
            url("confirm_payment"),
            {
                "order_id": "order_missing",
                "payment_id": "pay_1",
                "signature": SandboxGateway.sign_payment("order_missing", "pay_1"),
            },
            format="json",
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "ORDER_NOT_FOUND"


# =============================================================================
# Shipment Lifecycle
# =============================================================================


@pytest.mark.django_db
class TestShipmentLifecycleViews:
    def test_full_delivery_over_http(
        self, booked_shipment, customer_client, driver_client, manager_client, driver, vehicle
    ):
        """
        Given a booked PAY_LATER shipment
        When a manager assigns it and the driver walks it through pickup and delivery
        Then the driver's share is AVAILABLE in the delivery response
        """
        pk = booked_shipment.pk
        response = manager_client.post(
            url("shipment_assign", pk),
            {"driver_id": driver.pk, "vehicle_id": str(vehicle.pk)},
            format="json",
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == ShipmentStatus.ASSIGNED

        pickup = customer_client.post(url("shipment_otp", pk), {"purpose": "PICKUP"}, format="json")
        assert pickup.status_code == status.HTTP_201_CREATED
        response = driver_client.post(
            url("shipment_start", pk), {"otp": pickup.data["code"]}, format="json"
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == ShipmentStatus.IN_TRANSIT

        response = driver_client.post(url("shipment_out_for_delivery", pk))
        assert response.data["status"] == ShipmentStatus.OUT_FOR_DELIVERY

        delivery = driver_client.post(url("shipment_otp", pk), {"purpose": "DELIVERY"}, format="json")
        response = driver_client.post(
            url("shipment_deliver", pk), {"otp": delivery.data["code"]}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == ShipmentStatus.DELIVERED
        assert response.data["driver_earnings_status"] == "AVAILABLE"
        assert response.data["driver_earnings_paise"] == DRIVER_SHARE_PAISE
        assert "pickup_otp_hash" not in response.data

    def test_only_managers_assign(self, booked_shipment, driver_client, driver, vehicle):
        response = driver_client.post(
            url("shipment_assign", booked_shipment.pk),
            {"driver_id": driver.pk, "vehicle_id": str(vehicle.pk)},
            format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_strangers_cannot_request_codes(self, booked_shipment, other_client):
        response = other_client.post(
            url("shipment_otp", booked_shipment.pk), {"purpose": "PICKUP"}, format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == "PERMISSION_DENIED"

    def test_only_assigned_driver_starts(self, booked_shipment, customer_client):
        response = customer_client.post(
            url("shipment_start", booked_shipment.pk), {"otp": "123456"}, format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_wrong_code(self, booked_shipment, driver_client, driver, vehicle, manager):
        ShipmentStateMachine.assign(booked_shipment, driver, vehicle, actor=manager)
        ShipmentStateMachine.request_otp(booked_shipment, OtpPurpose.PICKUP)

        response = driver_client.post(
            url("shipment_start", booked_shipment.pk), {"otp": "000000"}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "OTP_MISMATCH"

    def test_malformed_code(self, booked_shipment, manager_client):
        response = manager_client.post(
            url("shipment_start", booked_shipment.pk), {"otp": "12ab"}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_customer_cancels_funded_shipment(self, funded_invoice, booked_shipment, customer_client):
        response = customer_client.post(
            url("shipment_cancel", booked_shipment.pk), {"reason": "Plans changed"}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == ShipmentStatus.CANCELLED
        assert Invoice.objects.get(pk=funded_invoice.pk).status == InvoiceStatus.REFUNDED

    def test_stranger_cannot_cancel(self, booked_shipment, other_client):
        response = other_client.post(url("shipment_cancel", booked_shipment.pk), {}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_unknown_shipment(self, manager_client):
        response = manager_client.post(
            url("shipment_cancel", "00000000-0000-0000-0000-000000000000"), {}, format="json"
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND


# =============================================================================
# Invoices and Disputes
# =============================================================================


@pytest.mark.django_db
class TestInvoiceViews:
    def test_manager_funds_and_releases(self, draft_invoice, manager_client, payout_rail):
        response = manager_client.post(
            url("invoice_fund", draft_invoice.pk), {"provider_ref": "pay_escrow_1"}, format="json"
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == InvoiceStatus.FUNDED

        response = manager_client.post(url("invoice_release", draft_invoice.pk))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == InvoiceStatus.PAID
        assert payout_rail.disburse.call_count == 1

    def test_second_release_conflicts(self, funded_invoice, manager_client, payout_rail):
        manager_client.post(url("invoice_release", funded_invoice.pk))

        response = manager_client.post(url("invoice_release", funded_invoice.pk))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "INVALID_STATE_TRANSITION"
        assert payout_rail.disburse.call_count == 1

    def test_issue(self, draft_invoice, manager_client):
        response = manager_client.post(url("invoice_issue", draft_invoice.pk))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == InvoiceStatus.ISSUED

    def test_customers_cannot_release(self, funded_invoice, customer_client):
        response = customer_client.post(url("invoice_release", funded_invoice.pk))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_unknown_invoice(self, manager_client):
        response = manager_client.post(url("invoice_issue", "00000000-0000-0000-0000-000000000000"))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "INVOICE_NOT_FOUND"

    def test_customer_pays_issued_invoice(self, delivered_shipment, customer_client):
        invoice = SettlementCoordinator.invoice_for(delivered_shipment)

        response = customer_client.post(url("invoice_pay", invoice.pk))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["gateway_order_id"].startswith("order_")

    def test_other_customer_cannot_pay(self, delivered_shipment, other_client):
        invoice = SettlementCoordinator.invoice_for(delivered_shipment)

        response = other_client.post(url("invoice_pay", invoice.pk))

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestDisputeViews:
    def test_open_and_resolve(self, funded_invoice, booked_shipment, customer_client, manager_client):
        response = customer_client.post(
            url("shipment_disputes", booked_shipment.pk), {"reason": "Damaged"}, format="json"
        )
        assert response.status_code == status.HTTP_201_CREATED
        dispute_id = response.data["id"]

        response = manager_client.post(
            url("dispute_resolve", dispute_id),
            {"outcome": "REFUND", "note": "Compensated"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == DisputeStatus.RESOLVED
        assert Invoice.objects.get(pk=funded_invoice.pk).status == InvoiceStatus.REFUNDED

    def test_second_dispute_conflicts(self, funded_invoice, booked_shipment, customer_client):
        customer_client.post(
            url("shipment_disputes", booked_shipment.pk), {"reason": "Late"}, format="json"
        )

        response = customer_client.post(
            url("shipment_disputes", booked_shipment.pk), {"reason": "Late"}, format="json"
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "DISPUTE_ALREADY_OPEN"
        assert Dispute.objects.count() == 1

    def test_other_customer_cannot_dispute(self, funded_invoice, booked_shipment, other_client):
        response = other_client.post(
            url("shipment_disputes", booked_shipment.pk), {"reason": "Late"}, format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestRetryPayoutView:
    def test_retry(self, manager_client, payout_rail):
        payout = PayoutFactory(status=PayoutStatus.FAILED)

        response = manager_client.post(
            url("payout_retry", payout.pk), {"expected_version": payout.version}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == PayoutStatus.SUCCEEDED
        assert response.data["attempts"] == 2

    def test_stale_version(self, manager_client, payout_rail):
        payout = PayoutFactory(status=PayoutStatus.FAILED)

        response = manager_client.post(
            url("payout_retry", payout.pk), {"expected_version": payout.version + 3}, format="json"
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "STALE_RECORD"


# =============================================================================
# Driver Earnings
# =============================================================================


@pytest.mark.django_db
class TestEarningsViews:
    def test_summary(self, driver_client, driver):
        DeliveredShipmentFactory(assigned_driver=driver)

        response = driver_client.get(url("earnings"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["available_paise"] == DRIVER_SHARE_PAISE
        assert len(response.data["shipments"]) == 1

    def test_customers_have_no_earnings(self, customer_client):
        response = customer_client.get(url("earnings"))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_request_and_cancel_withdrawal(self, driver_client, driver):
        DeliveredShipmentFactory(assigned_driver=driver)

        response = driver_client.post(url("withdrawals"), {"amount_paise": 100000}, format="json")

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.data["amount_paise"] == DRIVER_SHARE_PAISE
        assert response.data["status"] == WithdrawalStatus.PENDING

        response = driver_client.post(url("withdrawal_cancel", response.data["id"]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == WithdrawalStatus.CANCELLED

    def test_insufficient_balance(self, driver_client):
        response = driver_client.post(url("withdrawals"), {"amount_paise": 100000}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "INSUFFICIENT_BALANCE"
        assert DriverWithdrawal.objects.count() == 0

    def test_cannot_cancel_another_drivers_withdrawal(
        self, driver, authenticated_client_factory
    ):
        DeliveredShipmentFactory(assigned_driver=driver)
        withdrawal = unwrap(WithdrawalService.request_withdrawal(driver, 100000))
        client = authenticated_client_factory(DriverFactory())

        response = client.post(url("withdrawal_cancel", withdrawal.pk))

        assert response.status_code == status.HTTP_403_FORBIDDEN
