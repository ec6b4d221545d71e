"""
Lifecycle helpers shared by shipment and settlement tests.
"""

from shipments.services import ShipmentStateMachine
from shipments.states import OtpPurpose


def drive_to_in_transit(shipment, driver, vehicle, manager=None):
    """Assign and pick up ``shipment``; returns the IN_TRANSIT instance."""
    assigned = ShipmentStateMachine.assign(shipment, driver, vehicle, actor=manager)
    assert assigned.success, assigned.error
    challenge = ShipmentStateMachine.request_otp(shipment, OtpPurpose.PICKUP).data
    started = ShipmentStateMachine.start(shipment, challenge.code, actor=driver)
    assert started.success, started.error
    return started.data


def deliver(shipment, driver):
    """Deliver an IN_TRANSIT or OUT_FOR_DELIVERY shipment with a fresh code."""
    challenge = ShipmentStateMachine.request_otp(shipment, OtpPurpose.DELIVERY).data
    return ShipmentStateMachine.deliver(shipment, challenge.code, actor=driver)
