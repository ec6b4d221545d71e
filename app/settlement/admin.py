"""
Settlement admin configuration.

Ledger rows are read-only here. Status changes go through the settlement
services so payments, payouts and shipment events stay consistent.
"""

from django.contrib import admin

from settlement.models import (
    Dispute,
    DriverWithdrawal,
    Invoice,
    Payment,
    Payout,
    PendingShipment,
    WebhookEvent,
)
from settlement.state_machines import WebhookEventStatus


def format_paise(amount_paise: int, currency: str = "INR") -> str:
    return f"{amount_paise / 100:.2f} {currency}"


class ReadOnlyLedgerAdmin(admin.ModelAdmin):
    """Audit trail: never added or deleted through the admin."""

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def amount_display(self, obj) -> str:
        """Display the amount formatted as currency."""
        return format_paise(obj.amount_paise, obj.currency)

    amount_display.short_description = "Amount"


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    can_delete = False
    fields = ["created_at", "kind", "status", "amount_paise", "provider_ref", "failure_reason"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Invoice)
class InvoiceAdmin(ReadOnlyLedgerAdmin):
    """
    Admin configuration for Invoice.

    Provides visibility into escrow status and the payments recorded
    against each invoice.
    """

    list_display = [
        "id",
        "shipment",
        "customer",
        "amount_display",
        "status",
        "gateway_order_id",
        "created_at",
    ]
    list_filter = ["status", "currency", "created_at"]
    search_fields = ["id", "gateway_order_id", "shipment__reference_id", "customer__email"]
    readonly_fields = [
        "id",
        "shipment",
        "customer",
        "amount_paise",
        "currency",
        "status",
        "disputed_from",
        "gateway_order_id",
        "issued_at",
        "due_at",
        "funded_at",
        "paid_at",
        "disputed_at",
        "refunded_at",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [PaymentInline]

    fieldsets = (
        (None, {"fields": ("id", "shipment", "customer", "status", "disputed_from")}),
        ("Amount", {"fields": ("amount_paise", "currency", "gateway_order_id")}),
        (
            "Timeline",
            {
                "fields": (
                    "issued_at",
                    "due_at",
                    "funded_at",
                    "paid_at",
                    "disputed_at",
                    "refunded_at",
                ),
            },
        ),
        ("Timestamps", {"fields": ("version", "created_at", "updated_at")}),
    )


@admin.register(Payout)
class PayoutAdmin(ReadOnlyLedgerAdmin):
    """
    Admin configuration for Payout.

    FAILED payouts are retried through PayoutService.retry_payout, never by
    editing the row.
    """

    list_display = [
        "id",
        "invoice",
        "recipient_type",
        "amount_display",
        "status",
        "attempts",
        "rail_payout_id",
        "created_at",
    ]
    list_filter = ["status", "recipient_type", "created_at"]
    search_fields = ["id", "rail_payout_id", "invoice__id", "destination"]
    readonly_fields = [
        "id",
        "invoice",
        "recipient_type",
        "recipient",
        "destination",
        "amount_paise",
        "currency",
        "status",
        "rail_payout_id",
        "attempts",
        "paid_at",
        "failed_at",
        "failure_reason",
        "metadata",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


@admin.register(DriverWithdrawal)
class DriverWithdrawalAdmin(ReadOnlyLedgerAdmin):
    """Admin configuration for DriverWithdrawal."""

    list_display = [
        "id",
        "driver",
        "amount_display",
        "status",
        "upi_id",
        "rail_payout_id",
        "created_at",
    ]
    list_filter = ["status", "created_at"]
    search_fields = ["id", "driver__email", "upi_id", "rail_payout_id"]
    readonly_fields = [
        "id",
        "driver",
        "requested_amount_paise",
        "amount_paise",
        "currency",
        "upi_id",
        "status",
        "breakdown",
        "rail_payout_id",
        "failure_reason",
        "processed_at",
        "completed_at",
        "failed_at",
        "cancelled_at",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]


@admin.register(Dispute)
class DisputeAdmin(ReadOnlyLedgerAdmin):
    """Admin configuration for Dispute."""

    list_display = ["id", "shipment", "customer", "status", "outcome", "resolved_at", "created_at"]
    list_filter = ["status", "outcome"]
    search_fields = ["id", "shipment__reference_id", "customer__email"]
    readonly_fields = [
        "id",
        "shipment",
        "invoice",
        "customer",
        "reason",
        "status",
        "outcome",
        "resolution_note",
        "resolved_by",
        "resolved_at",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]


@admin.register(PendingShipment)
class PendingShipmentAdmin(ReadOnlyLedgerAdmin):
    """Admin configuration for PendingShipment (booking idempotency records)."""

    list_display = ["order_id", "customer", "amount_display", "status", "expires_at", "created_at"]
    list_filter = ["status"]
    search_fields = ["order_id", "provider_payment_id", "customer__email"]
    readonly_fields = [
        "id",
        "order_id",
        "customer",
        "payload",
        "amount_paise",
        "status",
        "shipment",
        "provider_payment_id",
        "failure_reason",
        "expires_at",
        "completed_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def amount_display(self, obj) -> str:
        return format_paise(obj.amount_paise)

    amount_display.short_description = "Amount"


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status.
    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "provider_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "provider_event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "provider_event_id",
        "event_type",
        "payload",
        "processed_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["requeue"]

    fieldsets = (
        (None, {"fields": ("id", "provider_event_id", "event_type", "status")}),
        ("Processing", {"fields": ("processed_at", "retry_count")}),
        ("Error Info", {"fields": ("error_message",), "classes": ("collapse",)}),
        ("Payload", {"fields": ("payload",), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        """Disable adding webhook events through admin."""
        return False

    @admin.action(description="Re-queue selected failed events")
    def requeue(self, request, queryset):
        from settlement.tasks import process_webhook_event

        count = 0
        for event in queryset.filter(status=WebhookEventStatus.FAILED):
            process_webhook_event.delay(str(event.id))
            count += 1
        self.message_user(request, f"Queued {count} webhook events.")
