"""
Settlement app.

This app owns every money-bearing record of a shipment:
- Escrow invoices and the payments moving money against them
- Exactly-once payouts per invoice and recipient type
- Driver earnings withdrawals
- Disputes as the compensating path for funded or paid invoices
- Idempotency records for gateway orders (PendingShipment)
- Gateway webhook ingestion

Related apps:
    - shipments: Physical lifecycle; calls the coordinator on delivery
    - authentication: Customers, drivers and managers

Usage:
    from settlement.services import SettlementCoordinator, WithdrawalService

    result = SettlementCoordinator.confirm_payment(order_id, payment_id, signature)
    result = WithdrawalService.request_withdrawal(driver, amount_paise=350000)
"""
