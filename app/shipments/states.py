"""
Status enums for shipment and fleet models.

Shipment Lifecycle:
    CREATED → ASSIGNED → PICKED_UP → IN_TRANSIT → OUT_FOR_DELIVERY → DELIVERED → CLOSED
    CREATED/ASSIGNED/PICKED_UP/IN_TRANSIT/OUT_FOR_DELIVERY → CANCELLED

    DELAYED is an overlay flag (Shipment.is_delayed) raised while IN_TRANSIT,
    not a status of its own.

Driver Earnings:
    PENDING → AVAILABLE (on delivery) → WITHDRAWN (claimed by a withdrawal)
    WITHDRAWN → AVAILABLE (withdrawal failed or was cancelled)
    AVAILABLE → PAID_OUT (DRIVER payout on release)
"""

from django.db import models


class ShipmentStatus(models.TextChoices):
    """
    Physical lifecycle of a shipment.

    Terminal states: CLOSED, CANCELLED
    """

    CREATED = "CREATED", "Created"
    ASSIGNED = "ASSIGNED", "Assigned"
    PICKED_UP = "PICKED_UP", "Picked Up"
    IN_TRANSIT = "IN_TRANSIT", "In Transit"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY", "Out For Delivery"
    DELIVERED = "DELIVERED", "Delivered"
    CLOSED = "CLOSED", "Closed"
    CANCELLED = "CANCELLED", "Cancelled"


# Statuses from which a shipment may still be cancelled
CANCELLABLE_STATUSES = [
    ShipmentStatus.CREATED,
    ShipmentStatus.ASSIGNED,
    ShipmentStatus.PICKED_UP,
    ShipmentStatus.IN_TRANSIT,
    ShipmentStatus.OUT_FOR_DELIVERY,
]


class PaymentOption(models.TextChoices):
    PAY_NOW = "PAY_NOW", "Pay Now"
    PAY_LATER = "PAY_LATER", "Pay Later"


class ShipmentPaymentStatus(models.TextChoices):
    """Customer-facing payment status mirrored on the shipment."""

    PENDING = "PENDING", "Pending"
    PAID = "PAID", "Paid"
    FAILED = "FAILED", "Failed"
    REFUNDED = "REFUNDED", "Refunded"


class EarningsStatus(models.TextChoices):
    """
    Driver earnings sub-record status.

    AVAILABLE only once the shipment was DELIVERED; WITHDRAWN only through
    a DriverWithdrawal that references the shipment. PAID_OUT is terminal:
    the share went out as a DRIVER payout when the invoice was released.
    """

    PENDING = "PENDING", "Pending"
    AVAILABLE = "AVAILABLE", "Available"
    WITHDRAWN = "WITHDRAWN", "Withdrawn"
    PAID_OUT = "PAID_OUT", "Paid out"


class OtpPurpose(models.TextChoices):
    PICKUP = "PICKUP", "Pickup"
    DELIVERY = "DELIVERY", "Delivery"


class CreatedByRole(models.TextChoices):
    CUSTOMER = "CUSTOMER", "Customer"
    MANAGER = "MANAGER", "Manager"


class DeliveryType(models.TextChoices):
    STANDARD = "standard", "Standard"
    EXPRESS = "express", "Express"


class ShipmentType(models.TextChoices):
    """Commodity category, drives the pricing multiplier."""

    KIRANA = "KIRANA", "Kirana"
    DAWAI = "DAWAI", "Dawai"
    KAPDA = "KAPDA", "Kapda"
    DAIRY = "DAIRY", "Dairy"
    AUTO_PARTS = "AUTO_PARTS", "Auto Parts"
    ELECTRONICS = "ELECTRONICS", "Electronics"
    OTHER = "OTHER", "Other"


class VehicleType(models.TextChoices):
    BIKE = "BIKE", "Bike"
    VAN = "VAN", "Van"
    TRUCK_SM = "TRUCK_SM", "Small Truck"
    TRUCK_LG = "TRUCK_LG", "Large Truck"


class VehicleStatus(models.TextChoices):
    AVAILABLE = "AVAILABLE", "Available"
    IN_USE = "IN_USE", "In Use"
    MAINTENANCE = "MAINTENANCE", "Maintenance"


class ShipmentEventType(models.TextChoices):
    """Audit trail entries written on every shipment change."""

    CREATED = "CREATED", "Created"
    ASSIGNED = "ASSIGNED", "Assigned"
    OTP_REQUESTED = "OTP_REQUESTED", "OTP Requested"
    PICKED_UP = "PICKED_UP", "Picked Up"
    IN_TRANSIT = "IN_TRANSIT", "In Transit"
    DELAY_FLAGGED = "DELAY_FLAGGED", "Delay Flagged"
    DELAY_CLEARED = "DELAY_CLEARED", "Delay Cleared"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY", "Out For Delivery"
    DELIVERED = "DELIVERED", "Delivered"
    CLOSED = "CLOSED", "Closed"
    CANCELLED = "CANCELLED", "Cancelled"
    EARNINGS_AVAILABLE = "EARNINGS_AVAILABLE", "Earnings Available"
