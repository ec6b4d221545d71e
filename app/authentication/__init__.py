"""
Authentication application.

Provides the e-mail based User model with the fleet attributes (role,
driver approval, performance rating, payout destination) that the
shipment and settlement apps read.

Usage:
    from authentication.models import User, UserRole, DriverApprovalStatus
"""
