"""
Shipments app.

This app handles the physical side of a shipment:
- Shipment lifecycle state machine with OTP-gated pickup and delivery
- Vehicle reservation on assignment
- Customer pricing (pure, evaluated once at booking)
- Audit trail (ShipmentEvent) and shipment_status_changed signal

Related apps:
    - authentication: Drivers, managers and customers
    - settlement: Owns every money-bearing field; called on delivery

Usage:
    from shipments.services import ShipmentStateMachine

    result = ShipmentStateMachine.deliver(shipment.id, otp="482913", actor=driver)
"""
