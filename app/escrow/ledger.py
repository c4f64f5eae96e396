"""
Escrow Ledger.

Creates escrow records and exposes the read paths the Response Detector,
the Deadline Sweeper and the webhook handlers share. Nothing here takes
locks or changes status; consistency is enforced by the Settlement Engine.

Usage:
    from escrow.ledger import EscrowLedger

    escrow = EscrowLedger.create_escrow(
        message_id=message.id,
        amount=Decimal("20.00"),
        recipient_user=recipient,
        sender_email="sender@example.com",
        stripe_payment_intent_id="pi_123",
    )

    escrow = EscrowLedger.get_by_message_id(message.id)
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError
from django.utils import timezone
from django.utils.module_loading import import_string

from core.services import BaseService

from escrow.exceptions import EscrowNotFoundError, EscrowValidationError
from escrow.models import EscrowTransaction, MessageResponse, PayoutAccount
from escrow.state_machines import EscrowStatus

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser


def grace_period() -> timedelta:
    """Window after expires_at during which a response still counts."""
    return timedelta(minutes=settings.ESCROW_GRACE_PERIOD_MINUTES)


def resolve_recipient_share(recipient_user) -> int:
    """
    Recipient share percent for a new escrow.

    ESCROW_SPLIT_RESOLVER may name a callable taking the recipient and
    returning a percent (referral tiers live outside this app). Without
    one, ESCROW_RECIPIENT_SHARE_PERCENT applies.
    """
    resolver_path = getattr(settings, "ESCROW_SPLIT_RESOLVER", "")
    if resolver_path:
        resolver = import_string(resolver_path)
        return int(resolver(recipient_user))
    return int(settings.ESCROW_RECIPIENT_SHARE_PERCENT)


class EscrowLedger(BaseService):
    """Persistent record of payments held against messages."""

    @classmethod
    def create_escrow(
        cls,
        message_id: uuid.UUID | str,
        amount: Decimal | str,
        recipient_user: AbstractBaseUser,
        sender_email: str,
        deadline_hours: int | None = None,
        stripe_payment_intent_id: str = "",
        recipient_share_percent: int | None = None,
        metadata: dict | None = None,
    ) -> EscrowTransaction:
        """
        Create the escrow for a paid message.

        The escrow starts held, or pending_user_setup when the recipient
        cannot receive transfers yet. expires_at is now + deadline_hours.
        The MessageResponse row is created in the same transaction.

        Raises:
            EscrowValidationError: Invalid amount, deadline or split, or an
                escrow already exists for the message
        """
        logger = cls.get_logger()

        try:
            amount = Decimal(str(amount))
        except InvalidOperation:
            raise EscrowValidationError(
                "Amount is not a decimal",
                details={"amount": str(amount)},
            )
        if amount <= 0:
            raise EscrowValidationError(
                "Amount must be positive",
                details={"amount": str(amount)},
            )

        if deadline_hours is None:
            deadline_hours = settings.ESCROW_RESPONSE_DEADLINE_HOURS
        if deadline_hours <= 0:
            raise EscrowValidationError(
                "Deadline must be at least one hour",
                details={"deadline_hours": deadline_hours},
            )

        if recipient_share_percent is None:
            recipient_share_percent = resolve_recipient_share(recipient_user)
        if not 0 <= recipient_share_percent <= 100:
            raise EscrowValidationError(
                "Recipient share must be between 0 and 100",
                details={"recipient_share_percent": recipient_share_percent},
            )

        status = (
            EscrowStatus.HELD
            if PayoutAccount.is_user_ready(recipient_user)
            else EscrowStatus.PENDING_USER_SETUP
        )
        now = timezone.now()

        try:
            with cls.atomic():
                escrow = EscrowTransaction.objects.create(
                    message_id=message_id,
                    sender_email=sender_email,
                    recipient_user=recipient_user,
                    amount=amount,
                    currency=settings.ESCROW_CURRENCY,
                    recipient_share_percent=recipient_share_percent,
                    deadline_hours=deadline_hours,
                    expires_at=now + timedelta(hours=deadline_hours),
                    status=status,
                    stripe_payment_intent_id=stripe_payment_intent_id,
                    metadata=metadata or {},
                )
                MessageResponse.objects.create(message_id=message_id, escrow=escrow)
        except IntegrityError:
            raise EscrowValidationError(
                "An escrow already exists for this message",
                error_code="ESCROW_ALREADY_EXISTS",
                details={"message_id": str(message_id)},
            )

        logger.info(
            "Escrow created",
            extra={
                "escrow_id": str(escrow.id),
                "message_id": str(message_id),
                "amount": str(amount),
                "status": status,
                "expires_at": escrow.expires_at.isoformat(),
            },
        )
        return escrow

    @classmethod
    def get_by_message_id(cls, message_id: uuid.UUID | str) -> EscrowTransaction:
        """
        Raises:
            EscrowNotFoundError: No escrow for the message
        """
        escrow = (
            EscrowTransaction.objects.select_related("message_response")
            .filter(message_id=message_id)
            .first()
        )
        if escrow is None:
            raise EscrowNotFoundError(
                f"No escrow for message {message_id}",
                details={"message_id": str(message_id)},
            )
        return escrow

    @classmethod
    def find_by_message_id(cls, message_id: uuid.UUID | str) -> EscrowTransaction | None:
        return EscrowTransaction.objects.filter(message_id=message_id).first()

    @classmethod
    def get_by_payment_intent(cls, payment_intent_id: str) -> EscrowTransaction | None:
        if not payment_intent_id:
            return None
        return EscrowTransaction.objects.filter(
            stripe_payment_intent_id=payment_intent_id
        ).first()

    @classmethod
    def get_by_transfer(cls, transfer_id: str) -> EscrowTransaction | None:
        if not transfer_id:
            return None
        return EscrowTransaction.objects.filter(stripe_transfer_id=transfer_id).first()
