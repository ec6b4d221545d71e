"""
Customer pricing for shipments.

Pure functions only: a quote is computed once when the shipment is booked
and stored on it as the pricing breakdown. Later pricing changes never
touch an existing shipment.

Cost model (INR):
    distance cost = distance_km x per-km rate of the vehicle type
    weight cost   = weight_kg x 2.5
    total         = 250 booking fee + distance cost + weight cost
                    x commodity multiplier x urgency multiplier
                    x environmental factor ((traffic + weather) / 2)
                    + 8% tolls estimate
    subtotal      = ceil(total)
    tax           = ceil(subtotal x 18%)
    grand total   = subtotal + tax

Usage:
    from shipments.pricing import quote

    price = quote(distance_km=120, weight_kg=500, vehicle_type="TRUCK_SM")
    shipment.price_paise = price.grand_total_paise
    shipment.pricing_breakdown = price.as_breakdown()
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal

BASE_BOOKING_FEE = Decimal("250")
WEIGHT_SURCHARGE_PER_KG = Decimal("2.5")
TOLL_ESTIMATE_RATE = Decimal("0.08")
GST_RATE = Decimal("0.18")

KM_RATES = {
    "BIKE": Decimal("15"),
    "VAN": Decimal("25"),
    "TRUCK_SM": Decimal("40"),
    "TRUCK_LG": Decimal("65"),
}
DEFAULT_VEHICLE_TYPE = "TRUCK_SM"

COMMODITY_MULTIPLIERS = {
    "KIRANA": Decimal("1.0"),
    "KAPDA": Decimal("1.05"),
    "DAWAI": Decimal("1.25"),
    "ELECTRONICS": Decimal("1.3"),
    "DAIRY": Decimal("1.5"),
    "AUTO_PARTS": Decimal("1.2"),
}

URGENCY_MULTIPLIERS = {
    "standard": Decimal("1.0"),
    "express": Decimal("1.4"),
}


@dataclass(frozen=True)
class PriceQuote:
    """
    Result of pricing a draft shipment.

    Amounts are whole rupees except where noted.
    """

    distance_km: Decimal
    weight_kg: Decimal
    vehicle_type: str
    shipment_type: str
    delivery_type: str
    rate_per_km: Decimal
    commodity_multiplier: Decimal
    urgency_multiplier: Decimal
    environmental_factor: Decimal
    base_fare: int
    distance_cost: int
    weight_cost: int
    tolls_estimate: int
    subtotal: int
    tax: int
    grand_total: int

    @property
    def grand_total_paise(self) -> int:
        return self.grand_total * 100

    def as_breakdown(self) -> dict:
        """JSON-safe snapshot stored on the shipment."""
        return {
            "distance_km": str(self.distance_km),
            "weight_kg": str(self.weight_kg),
            "vehicle_type": self.vehicle_type,
            "shipment_type": self.shipment_type,
            "delivery_type": self.delivery_type,
            "rate_per_km": str(self.rate_per_km),
            "commodity_multiplier": str(self.commodity_multiplier),
            "urgency_multiplier": str(self.urgency_multiplier),
            "environmental_factor": str(self.environmental_factor),
            "base_fare": self.base_fare,
            "distance_cost": self.distance_cost,
            "weight_cost": self.weight_cost,
            "tolls_estimate": self.tolls_estimate,
            "subtotal": self.subtotal,
            "tax": self.tax,
            "grand_total": self.grand_total,
            "grand_total_paise": self.grand_total_paise,
        }


def _round(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding="ROUND_HALF_UP"))


def quote(
    distance_km,
    weight_kg=0,
    vehicle_type: str = DEFAULT_VEHICLE_TYPE,
    shipment_type: str = "KIRANA",
    delivery_type: str = "standard",
    traffic_impact=1,
    weather_impact=1,
) -> PriceQuote:
    """
    Price a shipment.

    Unknown vehicle types are priced as TRUCK_SM; unknown commodity and
    delivery types use a multiplier of 1.

    Raises:
        ValueError: If distance or weight is negative
    """
    distance = Decimal(str(distance_km))
    weight = Decimal(str(weight_kg))
    if distance < 0 or weight < 0:
        raise ValueError("distance_km and weight_kg must not be negative")

    rate = KM_RATES.get(vehicle_type, KM_RATES[DEFAULT_VEHICLE_TYPE])
    distance_cost = distance * rate
    weight_cost = weight * WEIGHT_SURCHARGE_PER_KG

    total = BASE_BOOKING_FEE + distance_cost + weight_cost

    commodity = COMMODITY_MULTIPLIERS.get(shipment_type, Decimal("1.0"))
    urgency = URGENCY_MULTIPLIERS.get(delivery_type, Decimal("1.0"))
    environmental = (Decimal(str(traffic_impact)) + Decimal(str(weather_impact))) / 2
    total = total * commodity * urgency * environmental

    tolls = total * TOLL_ESTIMATE_RATE
    total += tolls

    subtotal = math.ceil(total)
    tax = math.ceil(subtotal * GST_RATE)

    return PriceQuote(
        distance_km=distance,
        weight_kg=weight,
        vehicle_type=vehicle_type,
        shipment_type=shipment_type,
        delivery_type=delivery_type,
        rate_per_km=rate,
        commodity_multiplier=commodity,
        urgency_multiplier=urgency,
        environmental_factor=environmental,
        base_fare=int(BASE_BOOKING_FEE),
        distance_cost=_round(distance_cost),
        weight_cost=_round(weight_cost),
        tolls_estimate=_round(tolls),
        subtotal=subtotal,
        tax=tax,
        grand_total=subtotal + tax,
    )
