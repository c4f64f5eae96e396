"""
Escrow app for pay-to-contact messages.

This app handles:
- The escrow ledger (one EscrowTransaction per paid message)
- Response detection from inbound reply emails
- Settlement (release to recipient / refund to sender) with at-most-once semantics
- Deadline sweeps, halfway reminders and reconciliation jobs
- Payment provider webhooks

Related apps:
    - notifications: Outcome emails dispatched after settlement commits

Usage:
    from escrow.ledger import EscrowLedger
    from escrow.settlement import SettlementEngine

    escrow = EscrowLedger.create_escrow(
        message_id=message_id,
        amount=Decimal("20.00"),
        recipient_user=recipient,
        sender_email="sender@example.com",
        stripe_payment_intent_id="pi_123",
    )

    SettlementEngine.release(escrow.id, cause=SettlementCause.RESPONSE_RECEIVED)
"""
