"""
Factory Boy factories for shipment models.

Usage:
    from shipments.tests.factories import ShipmentFactory, VehicleFactory

    # CREATED shipment, 100 km on a small truck (Rs 5417 incl. GST)
    shipment = ShipmentFactory()

    # Express electronics shipment for a given customer
    shipment = ShipmentFactory(
        customer=customer,
        shipment_type=ShipmentType.ELECTRONICS,
        delivery_type=DeliveryType.EXPRESS,
    )
"""

from decimal import Decimal

import factory

from authentication.tests.factories import UserFactory
from settlement.payout_policies import proportional_split
from shipments.models import Shipment, Vehicle
from shipments.pricing import quote
from shipments.states import DeliveryType, ShipmentType, VehicleType


class VehicleFactory(factory.django.DjangoModelFactory):
    """AVAILABLE small truck."""

    class Meta:
        model = Vehicle

    registration_number = factory.Sequence(lambda n: f"KA01AB{n:04d}")
    vehicle_type = VehicleType.TRUCK_SM
    capacity_kg = 1000


class ShipmentFactory(factory.django.DjangoModelFactory):
    """
    Factory for Shipment.

    Pricing and payout breakdowns are computed the way booking computes
    them, so amounts in tests match what the coordinator would store.
    """

    class Meta:
        model = Shipment

    customer = factory.SubFactory(UserFactory)
    pickup_address = "Andheri East, Mumbai"
    drop_address = "Hinjewadi, Pune"
    distance_km = Decimal("100.00")
    weight_kg = Decimal("0")
    vehicle_type = VehicleType.TRUCK_SM
    shipment_type = ShipmentType.KIRANA
    delivery_type = DeliveryType.STANDARD
    pricing_breakdown = factory.LazyAttribute(
        lambda o: quote(
            o.distance_km,
            o.weight_kg,
            vehicle_type=o.vehicle_type,
            shipment_type=o.shipment_type,
            delivery_type=o.delivery_type,
        ).as_breakdown()
    )
    price_paise = factory.LazyAttribute(lambda o: o.pricing_breakdown["grand_total_paise"])
    payout_breakdown = factory.LazyAttribute(lambda o: proportional_split(o.pricing_breakdown))
