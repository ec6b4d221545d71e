"""
Shipment admin configuration.

Status fields are read-only here: lifecycle changes go through
ShipmentStateMachine so events and settlement hooks are never skipped.
"""

from django.contrib import admin

from shipments.models import Shipment, ShipmentEvent, Vehicle


@admin.register(Vehicle)
class VehicleAdmin(admin.ModelAdmin):
    list_display = ["registration_number", "vehicle_type", "capacity_kg", "status"]
    list_filter = ["vehicle_type", "status"]
    search_fields = ["registration_number"]


class ShipmentEventInline(admin.TabularInline):
    model = ShipmentEvent
    extra = 0
    can_delete = False
    fields = ["created_at", "event_type", "from_status", "to_status", "description", "actor"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Shipment)
class ShipmentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Shipment.

    Provides visibility into physical status, payment status and driver
    earnings.
    """

    list_display = [
        "reference_id",
        "customer",
        "status",
        "is_delayed",
        "payment_option",
        "payment_status",
        "price_paise",
        "driver_earnings_status",
        "created_at",
    ]
    list_filter = ["status", "payment_option", "payment_status", "driver_earnings_status"]
    search_fields = ["reference_id", "gateway_order_id", "customer__email"]
    ordering = ["-created_at"]
    inlines = [ShipmentEventInline]
    readonly_fields = [
        "id",
        "reference_id",
        "status",
        "payment_status",
        "gateway_order_id",
        "price_paise",
        "pricing_breakdown",
        "payout_breakdown",
        "pickup_otp_hash",
        "delivery_otp_hash",
        "otp_generated_at",
        "driver_earnings_paise",
        "driver_earnings_status",
        "driver_earnings_available_at",
        "driver_earnings_withdrawn_at",
        "version",
        "created_at",
        "updated_at",
    ]

    fieldsets = (
        (None, {"fields": ("id", "reference_id", "customer", "created_by_role")}),
        (
            "Status",
            {"fields": ("status", "is_delayed", "delay_reason", "cancellation_reason")},
        ),
        (
            "Assignment",
            {"fields": ("assigned_driver", "assigned_vehicle")},
        ),
        (
            "Booking",
            {
                "fields": (
                    "pickup_address",
                    "drop_address",
                    "distance_km",
                    "weight_kg",
                    "vehicle_type",
                    "delivery_type",
                    "shipment_type",
                ),
            },
        ),
        (
            "Payment",
            {
                "fields": (
                    "payment_option",
                    "payment_status",
                    "gateway_order_id",
                    "price_paise",
                    "pricing_breakdown",
                    "payout_breakdown",
                ),
            },
        ),
        (
            "Driver Earnings",
            {
                "fields": (
                    "driver_earnings_paise",
                    "driver_earnings_status",
                    "driver_earnings_available_at",
                    "driver_earnings_withdrawn_at",
                ),
            },
        ),
        (
            "Metadata",
            {
                "fields": (
                    "pickup_otp_hash",
                    "delivery_otp_hash",
                    "otp_generated_at",
                    "version",
                    "created_at",
                    "updated_at",
                ),
                "classes": ("collapse",),
            },
        ),
    )
