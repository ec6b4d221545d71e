"""
Tests for shipment models.

Covers reference ids, the protected FSM status field, model-level
transitions and the version counter.
"""

import re

import pytest
from django_fsm import TransitionNotAllowed

from shipments.states import ShipmentStatus, VehicleStatus
from shipments.tests.factories import ShipmentFactory, VehicleFactory


class TestShipmentModel:
    def test_reference_id_is_prefixed_and_unique(self, db):
        first, second = ShipmentFactory(), ShipmentFactory()

        assert re.fullmatch(r"SHP-[A-Z0-9]{6}", first.reference_id)
        assert first.reference_id != second.reference_id

    def test_new_shipment_defaults(self, shipment):
        assert shipment.status == ShipmentStatus.CREATED
        assert shipment.payment_status == "PENDING"
        assert shipment.driver_earnings_status == "PENDING"
        assert shipment.version == 1
        assert shipment.price_rupees == "5417.00"

    def test_status_cannot_be_assigned_directly(self, shipment):
        """Only transitions may change status; a stray assignment must fail loudly."""
        with pytest.raises(AttributeError):
            shipment.status = ShipmentStatus.DELIVERED

    def test_invalid_transition_raises(self, shipment):
        with pytest.raises(TransitionNotAllowed):
            shipment.deliver()

    def test_cancel_transition_records_reason(self, shipment):
        shipment.cancel(reason="Customer changed plans")

        assert shipment.status == ShipmentStatus.CANCELLED
        assert shipment.cancelled_at is not None
        assert shipment.cancellation_reason == "Customer changed plans"

    def test_save_increments_version(self, shipment):
        shipment.pickup_address = "Kurla West, Mumbai"
        shipment.save(update_fields=["pickup_address", "updated_at"])

        assert shipment.version == 2


class TestVehicleModel:
    def test_vehicle_defaults_to_available(self, db):
        vehicle = VehicleFactory(registration_number="MH12XY0001")

        assert vehicle.status == VehicleStatus.AVAILABLE
        assert str(vehicle) == "MH12XY0001 (TRUCK_SM, AVAILABLE)"
