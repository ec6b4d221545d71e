"""
Pytest fixtures for shipment tests.

Shipments in later lifecycle states are driven there through
ShipmentStateMachine, never by writing the status directly, so every
fixture carries the events and timestamps a real shipment would.

Usage:
    def test_deliver(in_transit_shipment, driver):
        challenge = ShipmentStateMachine.request_otp(
            in_transit_shipment, OtpPurpose.DELIVERY
        ).data
        ...
"""

import pytest

from authentication.tests.factories import DriverFactory, ManagerFactory, UserFactory
from shipments.services import ShipmentStateMachine
from shipments.tests.factories import ShipmentFactory, VehicleFactory
from shipments.tests.helpers import drive_to_in_transit


# =============================================================================
# Users and Fleet
# =============================================================================


@pytest.fixture
def customer(db):
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
# Shipment State Fixtures
# =============================================================================


@pytest.fixture
def shipment(db, customer):
    """A CREATED shipment."""
    return ShipmentFactory(customer=customer)


@pytest.fixture
def assigned_shipment(shipment, driver, vehicle, manager):
    result = ShipmentStateMachine.assign(shipment, driver, vehicle, actor=manager)
    assert result.success, result.error
    return result.data


@pytest.fixture
def in_transit_shipment(shipment, driver, vehicle, manager):
    return drive_to_in_transit(shipment, driver, vehicle, manager)
