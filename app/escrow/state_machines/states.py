"""
State enums for escrow models.

This module defines the state enums used by escrow models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

EscrowTransaction Status:
    pending_user_setup → held                 (recipient finished payout setup)
    held → released                           (timely response)
    held → refunded                           (deadline + grace passed, no response)
    held → payment_failed                     (provider reports capture failure)
    held/pending_user_setup/released → transfer_failed
                                              (provider reports transfer failure)
    transfer_failed → released                (manual retry by an operator)

    released, refunded and payment_failed are terminal. transfer_failed is
    terminal for automation.
"""

from django.db import models


class EscrowStatus(models.TextChoices):
    """
    Status of an EscrowTransaction.

    The values double as the status vocabulary shown to senders and
    recipients, so they must not be renamed.
    """

    PENDING_USER_SETUP = "pending_user_setup", "Pending User Setup"
    HELD = "held", "Held"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    TRANSFER_FAILED = "transfer_failed", "Transfer Failed"


class SettlementCause(models.TextChoices):
    """Why a transition was requested. Recorded on every EscrowTransition."""

    RESPONSE_RECEIVED = "response_received", "Response Received"
    DEADLINE_EXPIRED = "deadline_expired", "Deadline Expired"
    PAYOUT_SETUP_COMPLETED = "payout_setup_completed", "Payout Setup Completed"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    TRANSFER_FAILED = "transfer_failed", "Transfer Failed"
    RECONCILIATION = "reconciliation", "Reconciliation"
    MANUAL_RETRY = "manual_retry", "Manual Retry"
    MANUAL = "manual", "Manual"


class DetectionOutcome(models.TextChoices):
    """
    Result of processing one inbound email.

    Only RELEASED moves money. NO_MATCH, NOT_APPLICABLE, LATE and DUPLICATE
    are expected outcomes and are answered with HTTP 200.
    """

    NO_MATCH = "no_match", "No Match"
    NOT_APPLICABLE = "not_applicable", "Not Applicable"
    LATE = "late", "Late"
    DUPLICATE = "duplicate", "Duplicate"
    RELEASED = "released", "Released"
    CONFLICT = "conflict", "Conflict"
    SETTLEMENT_FAILED = "settlement_failed", "Settlement Failed"


class DetectionMethod(models.TextChoices):
    """How an inbound email was matched to its message."""

    REPLY_ADDRESS = "reply_address", "Reply Address"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (operator re-queues)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class AdminActionType(models.TextChoices):
    """Kinds of operator-facing audit records."""

    REFUND_LIMIT_REACHED = "refund_limit_reached", "Refund Limit Reached"
    REFUND_FAILED = "refund_failed", "Refund Failed"
    TRANSFER_FAILED = "transfer_failed", "Transfer Failed"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    TRANSFER_RETRY = "transfer_retry", "Transfer Retry"
    LATE_RESPONSE = "late_response", "Late Response"
    RECONCILIATION = "reconciliation", "Reconciliation"
    DAILY_RECONCILIATION = "daily_reconciliation", "Daily Reconciliation"


__all__ = [
    "AdminActionType",
    "DetectionMethod",
    "DetectionOutcome",
    "EscrowStatus",
    "SettlementCause",
    "WebhookEventStatus",
]
