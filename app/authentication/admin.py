"""
Django admin configuration for the platform user.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from authentication.models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Admin configuration for User.

    Driver approval is reviewed here; assignment refuses drivers that are
    not APPROVED.
    """

    list_display = (
        "email",
        "full_name",
        "role",
        "driver_approval_status",
        "performance_rating",
        "is_active",
        "date_joined",
    )
    list_filter = ("role", "driver_approval_status", "is_active", "is_staff")
    search_fields = ("email", "full_name", "phone")
    ordering = ("-date_joined",)

    fieldsets = (
        (None, {"fields": ("email", "password")}),
        ("Profile", {"fields": ("full_name", "phone", "upi_id")}),
        (
            "Fleet",
            {"fields": ("role", "driver_approval_status", "performance_rating")},
        ),
        (
            "Status",
            {"fields": ("is_active", "is_staff", "is_superuser", "groups", "user_permissions")},
        ),
        ("Important dates", {"fields": ("date_joined", "last_login")}),
    )

    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": ("email", "role", "password1", "password2"),
            },
        ),
    )

    readonly_fields = ("date_joined", "last_login")
