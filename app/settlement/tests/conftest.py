"""
Pytest fixtures for settlement tests.

Booked, funded and delivered shipments are produced through the
settlement services and ShipmentStateMachine, so invoices, payments and
shipment events look exactly like production rows.

Amounts (100 km, small truck, kirana, standard):
    invoice total   541700 paise (Rs 5417.00)
    driver share    379190 paise (70%)
    operator share  162510 paise

Usage:
    def test_release(funded_invoice, payout_rail):
        SettlementCoordinator.release_invoice(funded_invoice.id)
        assert payout_rail.disburse.call_count == 1
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import DriverFactory, ManagerFactory, UserFactory
from core.services import ServiceResult
from settlement.adapters import (
    MockInstantPayoutRail,
    PayoutRail,
    PayoutRailResult,
    RailStatus,
    SandboxGateway,
)
from settlement.exceptions import GatewayError, PayoutRailError
from settlement.services import PayoutService, SettlementCoordinator
from shipments.services import ShipmentStateMachine
from shipments.states import OtpPurpose
from shipments.tests.helpers import drive_to_in_transit
from shipments.tests.factories import VehicleFactory

DRAFT = {"distance_km": 100, "pickup_address": "Andheri East", "drop_address": "Hinjewadi"}

INVOICE_TOTAL_PAISE = 541700
DRIVER_SHARE_PAISE = 379190
OPERATOR_SHARE_PAISE = 162510


def unwrap(result: ServiceResult):
    assert result.success, f"{result.error_code}: {result.error}"
    return result.data


def deliver(shipment, driver):
    """Deliver an IN_TRANSIT shipment with a freshly issued code."""
    challenge = unwrap(ShipmentStateMachine.request_otp(shipment, OtpPurpose.DELIVERY))
    return unwrap(ShipmentStateMachine.deliver(shipment, challenge.code, actor=driver))


def confirm(order_id: str, payment_id: str = "pay_test_1"):
    """Client-side confirmation with a valid gateway signature."""
    signature = SandboxGateway.sign_payment(order_id, payment_id)
    return SettlementCoordinator.confirm_payment(order_id, payment_id, signature)


# =============================================================================
# Payout Rail Doubles
# =============================================================================


class RejectingRail(PayoutRail):
    """Rail that refuses every instruction."""

    def __init__(self, error_code: str = "RAIL_UNAVAILABLE", is_retryable: bool = True):
        self.error_code = error_code
        self.is_retryable = is_retryable
        self.calls = []

    def disburse(self, instruction):
        self.calls.append(instruction)
        raise PayoutRailError(
            "Payout rail unavailable",
            error_code=self.error_code,
            is_retryable=self.is_retryable,
        )

    def fetch_status(self, payout_id):
        raise PayoutRailError("Payout rail unavailable", error_code=self.error_code)


class ProcessingRail(PayoutRail):
    """Rail that accepts instructions and settles them later."""

    def __init__(self, final_status: str = RailStatus.SUCCEEDED):
        self.final_status = final_status
        self.calls = []

    def disburse(self, instruction):
        self.calls.append(instruction)
        return PayoutRailResult(
            payout_id=f"pout_async_{len(self.calls)}", status=RailStatus.PROCESSING
        )

    def fetch_status(self, payout_id):
        return PayoutRailResult(payout_id=payout_id, status=self.final_status)


class FailingRefundGateway(SandboxGateway):
    @classmethod
    def refund(cls, payment_id, amount_paise, idempotency_key):
        raise GatewayError("Refund rejected by gateway", error_code="GATEWAY_REFUND_FAILED")


# =============================================================================
# Users and Fleet
# =============================================================================


@pytest.fixture
def customer(db):
    return UserFactory()


@pytest.fixture
def other_customer(db):
    return UserFactory()


@pytest.fixture
def driver(db):
    """Approved driver with a UPI handle."""
    return DriverFactory()


@pytest.fixture
def manager(db):
    return ManagerFactory()


@pytest.fixture
def vehicle(db):
    return VehicleFactory()


# =============================================================================
# Adapter Fixtures
# =============================================================================


@pytest.fixture
def payout_rail(mocker):
    """Instant mock rail with a spy on disburse."""
    rail = MockInstantPayoutRail()
    mocker.spy(rail, "disburse")
    PayoutService.set_payout_rail(rail)
    return rail


@pytest.fixture
def rejecting_rail():
    rail = RejectingRail()
    PayoutService.set_payout_rail(rail)
    return rail


@pytest.fixture
def processing_rail():
    rail = ProcessingRail()
    PayoutService.set_payout_rail(rail)
    return rail


# =============================================================================
# Booking Fixtures
# =============================================================================


@pytest.fixture
def pending_order(customer):
    """PAY_NOW gateway order awaiting payment."""
    return unwrap(SettlementCoordinator.create_order(customer, DRAFT))


@pytest.fixture
def booked_shipment(customer):
    """PAY_LATER shipment with a DRAFT invoice."""
    return unwrap(SettlementCoordinator.book_shipment(customer, DRAFT))


@pytest.fixture
def draft_invoice(booked_shipment):
    return SettlementCoordinator.invoice_for(booked_shipment)


@pytest.fixture
def funded_invoice(draft_invoice, manager):
    return unwrap(SettlementCoordinator.fund_invoice(draft_invoice.id, "pay_escrow_1", manager))


@pytest.fixture
def delivered_shipment(booked_shipment, driver, vehicle, manager):
    """Delivered PAY_LATER shipment; its invoice is now ISSUED."""
    drive_to_in_transit(booked_shipment, driver, vehicle, manager)
    return deliver(booked_shipment, driver)


@pytest.fixture
def funded_delivered_shipment(funded_invoice, booked_shipment, driver, vehicle, manager):
    """Delivered shipment whose invoice sits FUNDED in escrow."""
    drive_to_in_transit(booked_shipment, driver, vehicle, manager)
    return deliver(booked_shipment, driver)


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()


@pytest.fixture
def authenticated_client_factory(db):
    """
    Factory to create JWT-authenticated clients for any user.

    Usage:
        def test_example(authenticated_client_factory, driver):
            client = authenticated_client_factory(driver)
            response = client.get("/api/v1/settlement/earnings/")
    """

    def _make_client(user):
        client = APIClient()
        refresh = RefreshToken.for_user(user)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
        return client

    return _make_client
