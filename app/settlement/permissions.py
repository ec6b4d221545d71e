"""
Permission classes for the settlement API.

- IsDriver: User has the DRIVER role
- IsManager: User is a fleet manager or admin

Ownership checks (a customer disputing their own shipment, a driver
cancelling their own withdrawal) live in the services, which raise
PERMISSION_DENIED.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


class IsDriver(permissions.BasePermission):
    message = "Only drivers can perform this action."

    def has_permission(self, request: Request, view: APIView) -> bool:
        return bool(request.user and request.user.is_authenticated and request.user.is_driver)


class IsManager(permissions.BasePermission):
    message = "Only fleet managers can perform this action."

    def has_permission(self, request: Request, view: APIView) -> bool:
        return bool(request.user and request.user.is_authenticated and request.user.is_manager)
