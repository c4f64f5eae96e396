"""
Webhook event handlers for Stripe events.

This module provides a handler registry and the handlers for the events the
escrow flow reacts to. Every handler returns a ServiceResult; a lost race
against the Settlement Engine (SettlementConflictError) counts as success
because someone else already resolved the escrow.

Usage:
    from escrow.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from django.db import transaction
from django.utils import timezone

from core.services import ServiceResult

from escrow.exceptions import SettlementConflictError
from escrow.ledger import EscrowLedger
from escrow.models import EscrowTransaction, PayoutAccount, WebhookEvent
from escrow.settlement import SettlementEngine

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(*event_types: str) -> Callable:
    """
    Decorator to register a webhook event handler for one or more types.

    Usage:
        @register_handler("transfer.failed", "transfer.reversed")
        def handle_transfer_failed(webhook_event: WebhookEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        for event_type in event_types:
            WEBHOOK_HANDLERS[event_type] = func
            logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types are logged and reported as success so Stripe stops
    resending them.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )

    try:
        return handler(webhook_event)
    except SettlementConflictError as e:
        logger.info(
            "Escrow already resolved, webhook has nothing to do",
            extra={
                "stripe_event_id": webhook_event.stripe_event_id,
                "current_status": e.current_status,
                "target_status": e.target_status,
            },
        )
        return ServiceResult.success(None)


def _invalid_payload(webhook_event: WebhookEvent, field_name: str) -> ServiceResult:
    logger.error(
        f"{webhook_event.event_type}: Could not extract {field_name}",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )
    return ServiceResult.failure(
        f"Could not extract {field_name} from webhook",
        error_code="INVALID_WEBHOOK_PAYLOAD",
    )


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """Informational: the escrow was created when the message was paid."""
    logger.info(
        "Payment intent succeeded",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "payment_intent_id": webhook_event.get_object_id(),
        },
    )
    return ServiceResult.success(None)


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Handle payment failure notification.

    Moves a held escrow to payment_failed. Intents that never produced an
    escrow (checkout abandoned before the message was sent) are ignored.
    """
    payment_intent_id = webhook_event.get_object_id()
    if not payment_intent_id:
        return _invalid_payload(webhook_event, "payment_intent_id")

    data_object = webhook_event.get_object()
    last_error = data_object.get("last_payment_error") or {}
    reason = last_error.get("message") or last_error.get("code") or "payment_failed"

    escrow = EscrowLedger.get_by_payment_intent(payment_intent_id)
    if escrow is None:
        logger.info(
            "No escrow for failed payment intent",
            extra={
                "stripe_event_id": webhook_event.stripe_event_id,
                "payment_intent_id": payment_intent_id,
            },
        )
        return ServiceResult.success(None)

    escrow = SettlementEngine.mark_payment_failed(escrow.id, reason=reason)
    return ServiceResult.success(escrow)


# =============================================================================
# Transfer Handlers
# =============================================================================


def _escrow_for_transfer(data_object: dict) -> EscrowTransaction | None:
    escrow = EscrowLedger.get_by_transfer(data_object.get("id", ""))
    if escrow is not None:
        return escrow

    escrow_id = (data_object.get("metadata") or {}).get("escrow_id")
    if not escrow_id:
        return None
    try:
        escrow_id = uuid.UUID(str(escrow_id))
    except ValueError:
        return None
    return EscrowTransaction.objects.filter(pk=escrow_id).first()


@register_handler("transfer.created")
def handle_transfer_created(webhook_event: WebhookEvent) -> ServiceResult:
    """Informational: the engine stores the transfer id when it creates it."""
    data_object = webhook_event.get_object()
    logger.info(
        "Transfer created",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "transfer_id": data_object.get("id"),
            "escrow_id": (data_object.get("metadata") or {}).get("escrow_id"),
        },
    )
    return ServiceResult.success(None)


@register_handler("transfer.failed", "transfer.reversed")
def handle_transfer_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Handle a transfer that failed or was reversed after it was created.

    The escrow moves to transfer_failed, which stops automation and raises
    an AdminAction for an operator.
    """
    data_object = webhook_event.get_object()
    transfer_id = data_object.get("id")
    if not transfer_id:
        return _invalid_payload(webhook_event, "transfer_id")

    escrow = _escrow_for_transfer(data_object)
    if escrow is None:
        logger.warning(
            "No escrow for failed transfer",
            extra={
                "stripe_event_id": webhook_event.stripe_event_id,
                "transfer_id": transfer_id,
            },
        )
        return ServiceResult.failure(
            f"Escrow not found for transfer: {transfer_id}",
            error_code="ESCROW_NOT_FOUND",
        )

    if webhook_event.event_type == "transfer.reversed":
        reason = "Transfer reversed"
    else:
        reason = data_object.get("failure_message") or "Transfer failed"

    escrow = SettlementEngine.mark_transfer_failed(escrow.id, reason=reason)
    return ServiceResult.success(escrow)


# =============================================================================
# Connect Account Handlers
# =============================================================================


@register_handler("account.updated")
def handle_account_updated(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Handle connected account updates from Stripe.

    Syncs the capability flags onto PayoutAccount. While the account is
    ready, escrows waiting in pending_user_setup for that recipient are
    activated after this transaction commits.
    """
    data_object = webhook_event.get_object()
    account_id = data_object.get("id")
    if not account_id:
        return _invalid_payload(webhook_event, "account_id")

    requirements = data_object.get("requirements") or {}

    logger.info(
        "Processing account.updated",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "account_id": account_id,
            "payouts_enabled": data_object.get("payouts_enabled", False),
            "charges_enabled": data_object.get("charges_enabled", False),
        },
    )

    with transaction.atomic():
        account = (
            PayoutAccount.objects.select_related("user")
            .filter(stripe_account_id=account_id)
            .first()
        )
        if not account:
            logger.info(
                "PayoutAccount not found, may be external account",
                extra={
                    "account_id": account_id,
                    "stripe_event_id": webhook_event.stripe_event_id,
                },
            )
            return ServiceResult.success(None)

        was_ready = account.is_ready_for_payouts
        account.details_submitted = data_object.get("details_submitted", False)
        account.charges_enabled = data_object.get("charges_enabled", False)
        account.payouts_enabled = data_object.get("payouts_enabled", False)
        account.metadata = {
            "currently_due": requirements.get("currently_due", []),
            "past_due": requirements.get("past_due", []),
            "disabled_reason": requirements.get("disabled_reason"),
        }

        became_ready = account.is_ready_for_payouts and not was_ready
        if became_ready and account.onboarding_completed_at is None:
            account.onboarding_completed_at = timezone.now()

        account.save()

        logger.info(
            "PayoutAccount updated",
            extra={
                "payout_account_id": str(account.id),
                "ready": account.is_ready_for_payouts,
                "became_ready": became_ready,
            },
        )

        if account.is_ready_for_payouts:
            user = account.user
            transaction.on_commit(lambda: SettlementEngine.activate_pending_for_user(user))

    return ServiceResult.success(account)
