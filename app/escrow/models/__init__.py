"""
Escrow domain models.

This module contains all escrow-related models:
- EscrowTransaction: Funds held against one paid message
- EscrowTransition: Audit trail and idempotency record of status changes
- MessageResponse: Whether the message was answered (write-once)
- EmailResponseTracking: One row per processed inbound reply email
- WebhookEvent: Stripe webhook event tracking for idempotent processing
- PayoutAccount: Recipient's Stripe Connect account
- AdminAction: Operator-facing audit and alert records
"""

from escrow.models.admin_action import AdminAction
from escrow.models.escrow_transaction import EscrowTransaction, EscrowTransition
from escrow.models.payout_account import PayoutAccount
from escrow.models.responses import EmailResponseTracking, MessageResponse
from escrow.models.webhook_event import WebhookEvent

__all__ = [
    "AdminAction",
    "EmailResponseTracking",
    "EscrowTransaction",
    "EscrowTransition",
    "MessageResponse",
    "PayoutAccount",
    "WebhookEvent",
]
