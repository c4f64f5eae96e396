"""
Notification Dispatcher.

Turns a settlement outcome into EmailLog rows and queued send tasks. The
Settlement Engine registers notify() with transaction.on_commit, so an email
is only ever queued for a transition that committed, and nothing raised in
here can reach the engine.

Outcome -> emails:
    released          payment_released to the recipient
    refunded          refund to the sender, timeout to the recipient
    reminder          deadline_reminder to the recipient (once per message)
    transfer_failed   transfer_failed to the recipient
    response_forward  response_forward to the sender

Usage:
    from notifications.dispatcher import NotificationDispatcher, SettlementOutcome

    NotificationDispatcher.notify(
        SettlementOutcome(
            type=OutcomeType.REFUNDED,
            escrow_id=escrow.id,
            message_id=escrow.message_id,
            recipient_email=escrow.recipient_user.email,
            sender_email=escrow.sender_email,
            amount=escrow.amount,
            currency=escrow.currency,
        )
    )
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from django.db import IntegrityError, transaction

from notifications.models import EmailLog, EmailType

logger = logging.getLogger(__name__)


class OutcomeType(str, Enum):
    RELEASED = "released"
    REFUNDED = "refunded"
    REMINDER = "reminder"
    TRANSFER_FAILED = "transfer_failed"
    RESPONSE_FORWARD = "response_forward"


# (email type, which party receives it)
OUTCOME_EMAILS: dict[OutcomeType, list[tuple[str, str]]] = {
    OutcomeType.RELEASED: [(EmailType.PAYMENT_RELEASED, "recipient")],
    OutcomeType.REFUNDED: [
        (EmailType.REFUND, "sender"),
        (EmailType.TIMEOUT, "recipient"),
    ],
    OutcomeType.REMINDER: [(EmailType.DEADLINE_REMINDER, "recipient")],
    OutcomeType.TRANSFER_FAILED: [(EmailType.TRANSFER_FAILED, "recipient")],
    OutcomeType.RESPONSE_FORWARD: [(EmailType.RESPONSE_FORWARD, "sender")],
}


@dataclass
class SettlementOutcome:
    """
    What happened to an escrow, as far as email is concerned.

    Attributes:
        type: OutcomeType
        escrow_id / message_id: Identity of the escrow
        recipient_email: Recipient user's address
        sender_email: Paying sender's address
        amount: Escrow amount
        currency: ISO 4217 code
        context: Extra template context (earnings, hours left, response text)
    """

    type: OutcomeType
    escrow_id: uuid.UUID | str
    message_id: uuid.UUID | str
    recipient_email: str
    sender_email: str
    amount: Decimal
    currency: str = "eur"
    context: dict[str, Any] = field(default_factory=dict)

    def template_context(self) -> dict[str, Any]:
        return {
            "escrow_id": str(self.escrow_id),
            "message_id": str(self.message_id),
            "amount": f"{self.amount:.2f}",
            "currency": self.currency.upper(),
            "recipient_email": self.recipient_email,
            "sender_email": self.sender_email,
            **self.context,
        }


class NotificationDispatcher:
    """Fire-and-forget email dispatch for escrow outcomes."""

    @classmethod
    def notify(cls, outcome: SettlementOutcome) -> list[EmailLog]:
        """
        Create EmailLog rows for an outcome and queue their delivery.

        Never raises. A duplicate deadline reminder is skipped. Returns the
        logs that were created.
        """
        try:
            outcome_type = OutcomeType(outcome.type)
        except ValueError:
            logger.error(
                "Unknown settlement outcome type",
                extra={"outcome_type": str(outcome.type), "escrow_id": str(outcome.escrow_id)},
            )
            return []

        created: list[EmailLog] = []
        for email_type, party in OUTCOME_EMAILS[outcome_type]:
            address = outcome.recipient_email if party == "recipient" else outcome.sender_email
            if not address:
                logger.warning(
                    "No address for notification, skipping",
                    extra={
                        "email_type": email_type,
                        "party": party,
                        "escrow_id": str(outcome.escrow_id),
                    },
                )
                continue

            try:
                email_log = cls._create_log(outcome, email_type, address)
            except IntegrityError:
                logger.info(
                    "Notification already sent for message, skipping",
                    extra={"email_type": email_type, "message_id": str(outcome.message_id)},
                )
                continue
            except Exception:
                logger.exception(
                    "Failed to record notification",
                    extra={"email_type": email_type, "escrow_id": str(outcome.escrow_id)},
                )
                continue

            cls._queue(email_log)
            created.append(email_log)

        return created

    @classmethod
    def _create_log(cls, outcome: SettlementOutcome, email_type: str, address: str) -> EmailLog:
        with transaction.atomic():
            return EmailLog.objects.create(
                email_type=email_type,
                message_id=outcome.message_id,
                escrow_id=outcome.escrow_id,
                recipient_email=address,
                sender_email=outcome.sender_email,
                context=outcome.template_context(),
            )

    @staticmethod
    def _queue(email_log: EmailLog) -> None:
        from notifications.tasks import send_escrow_email

        log_id = str(email_log.id)
        transaction.on_commit(lambda: send_escrow_email.delay(log_id), robust=True)
        logger.debug(
            "Notification queued",
            extra={"email_log_id": log_id, "email_type": email_log.email_type},
        )
