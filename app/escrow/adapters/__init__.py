"""
Payment adapters for external services.

All Stripe calls made by the escrow app go through StripeAdapter to get
consistent error handling, timeouts, idempotency and observability.

Usage:
    from escrow.adapters import StripeAdapter

    result = StripeAdapter.create_refund(
        payment_intent_id="pi_xxx",
        idempotency_key=f"refund-{escrow.id}",
    )
"""

from escrow.adapters.stripe_adapter import (
    PaymentIntentResult,
    RefundResult,
    StripeAdapter,
    TransferResult,
)

__all__ = [
    "PaymentIntentResult",
    "RefundResult",
    "StripeAdapter",
    "TransferResult",
]
