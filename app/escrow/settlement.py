"""
Settlement Engine.

The single authority for changing an escrow's status and moving its money.
The detector, the sweeper, the webhook handlers and the admin only ever
propose transitions by calling this module.

Every transition follows the same steps inside one database transaction:
    1. Read the escrow. Already in the target status -> no-op success.
    2. Validate the move against the FSM declared on the model.
    3. Conditional UPDATE ... WHERE status = <source>. Zero rows means
       someone else moved it first: re-read, no-op if they reached our
       target, SettlementConflictError otherwise.
    4. Insert the EscrowTransition row (unique idempotency key).
Notifications are registered with transaction.on_commit, so an email can
never announce a transition that rolled back.

Usage:
    from escrow.settlement import SettlementEngine
    from escrow.state_machines import SettlementCause

    escrow = SettlementEngine.release(escrow.id, cause=SettlementCause.RESPONSE_RECEIVED)
    escrow = SettlementEngine.refund(escrow.id, cause=SettlementCause.DEADLINE_EXPIRED)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone
from django_fsm import TransitionNotAllowed, can_proceed

from core.services import BaseService

from escrow.adapters import StripeAdapter
from escrow.exceptions import (
    EscrowNotFoundError,
    EscrowValidationError,
    InvalidTransitionError,
    PaymentProviderError,
    SettlementConflictError,
    StripeInvalidAccountError,
)
from escrow.ledger import grace_period
from escrow.models import (
    AdminAction,
    EmailResponseTracking,
    EscrowTransaction,
    EscrowTransition,
    MessageResponse,
    PayoutAccount,
)
from escrow.state_machines import AdminActionType, EscrowStatus, SettlementCause
from notifications.dispatcher import NotificationDispatcher, OutcomeType, SettlementOutcome

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser


# Columns a transition method may set besides status
TRANSITION_FIELDS = ("released_at", "refunded_at", "failed_at", "failure_reason")


class SettlementEngine(BaseService):
    """Transition operations for EscrowTransaction."""

    # =========================================================================
    # Public operations
    # =========================================================================

    @classmethod
    def release(
        cls,
        escrow_id: uuid.UUID | str,
        cause: str = SettlementCause.RESPONSE_RECEIVED,
        response_received_at: datetime | None = None,
    ) -> EscrowTransaction:
        """
        held -> released, then pay the recipient their share.

        The claim, the capture and the transfer share one transaction. A
        provider failure does not undo the claim: the escrow moves on to
        transfer_failed in the same transaction and an AdminAction asks an
        operator to step in.

        Returns:
            The escrow after the call (released, or transfer_failed)

        Raises:
            EscrowNotFoundError: Unknown escrow
            SettlementConflictError: Escrow resolved differently already
        """
        logger = cls.get_logger()
        failure: PaymentProviderError | None = None

        with cls.atomic():
            escrow, changed = cls._transition(
                escrow_id, "release", EscrowStatus.RELEASED, cause
            )
            if not changed:
                return escrow

            cls._mark_responded(escrow, response_received_at or timezone.now())

            try:
                transfer_id = cls._pay_recipient(escrow, f"transfer-{escrow.id}")
            except PaymentProviderError as e:
                failure = e
                escrow = cls._record_transfer_failure(escrow, e)
            else:
                escrow = cls._set_provider_reference(escrow, stripe_transfer_id=transfer_id)
                cls._notify_on_commit(OutcomeType.RELEASED, escrow)

        if failure is None:
            logger.info(
                "Escrow released",
                extra={
                    "escrow_id": str(escrow.id),
                    "message_id": str(escrow.message_id),
                    "cause": cause,
                    "transfer_id": escrow.stripe_transfer_id,
                    "recipient_amount": str(escrow.recipient_amount),
                },
            )
        return escrow

    @classmethod
    def refund(
        cls,
        escrow_id: uuid.UUID | str,
        cause: str = SettlementCause.DEADLINE_EXPIRED,
    ) -> EscrowTransaction:
        """
        held -> refunded, then return the full amount to the sender.

        An uncaptured PaymentIntent is cancelled, a captured one refunded.
        A provider failure rolls the claim back so the escrow stays held and
        the next sweep tries again; an AdminAction records the failure.
        A held escrow with a recorded response is never refunded; it is left
        to reconciliation and reported as a conflict.

        Raises:
            EscrowNotFoundError: Unknown escrow
            SettlementConflictError: Escrow resolved differently already
            PaymentProviderError: The provider refused or was unreachable
        """
        logger = cls.get_logger()

        try:
            with cls.atomic():
                cls._ensure_no_recorded_response(escrow_id, cause)
                escrow, changed = cls._transition(
                    escrow_id, "refund", EscrowStatus.REFUNDED, cause
                )
                if not changed:
                    return escrow

                refund_reference = cls._return_funds(escrow)
                escrow = cls._set_provider_reference(
                    escrow, stripe_refund_id=refund_reference
                )
                cls._notify_on_commit(OutcomeType.REFUNDED, escrow)

        except PaymentProviderError as e:
            logger.error(
                "Refund failed, escrow stays held",
                extra={
                    "escrow_id": str(escrow_id),
                    "error_code": e.error_code,
                    "retryable": e.is_retryable,
                },
            )
            AdminAction.record(
                AdminActionType.REFUND_FAILED,
                f"Refund failed: {e.message}",
                escrow=EscrowTransaction.objects.filter(pk=escrow_id).first(),
                requires_attention=True,
                error_code=e.error_code,
                retryable=e.is_retryable,
            )
            raise

        logger.info(
            "Escrow refunded",
            extra={
                "escrow_id": str(escrow.id),
                "message_id": str(escrow.message_id),
                "cause": cause,
                "refund_id": escrow.stripe_refund_id,
                "amount": str(escrow.amount),
            },
        )
        return escrow

    @classmethod
    def mark_payment_failed(
        cls,
        escrow_id: uuid.UUID | str,
        reason: str = "",
    ) -> EscrowTransaction:
        """held -> payment_failed, reported by the payment provider."""
        with cls.atomic():
            escrow, changed = cls._transition(
                escrow_id,
                "fail_payment",
                EscrowStatus.PAYMENT_FAILED,
                SettlementCause.PAYMENT_FAILED,
                reason=reason,
            )
            if changed:
                AdminAction.record(
                    AdminActionType.PAYMENT_FAILED,
                    f"Payment failed: {reason or 'no reason given'}",
                    escrow=escrow,
                    payment_intent_id=escrow.stripe_payment_intent_id,
                )

        if changed:
            cls.get_logger().warning(
                "Escrow payment failed",
                extra={"escrow_id": str(escrow.id), "reason": reason},
            )
        return escrow

    @classmethod
    def mark_transfer_failed(
        cls,
        escrow_id: uuid.UUID | str,
        reason: str = "",
    ) -> EscrowTransaction:
        """* -> transfer_failed, reported by the payment provider."""
        with cls.atomic():
            escrow = cls._load(escrow_id)
            if escrow.status == EscrowStatus.TRANSFER_FAILED:
                return escrow
            escrow = cls._fail_transfer(escrow, reason, retryable=False)

        return escrow

    @classmethod
    def activate_pending_for_user(cls, user: AbstractBaseUser) -> list[EscrowTransaction]:
        """
        pending_user_setup -> held for every escrow of a recipient whose
        payout account just became ready.

        Responses recorded while the escrow was waiting are then replayed
        through release(), provided they arrived within the grace window.
        """
        logger = cls.get_logger()
        activated: list[EscrowTransaction] = []

        pending_ids = list(
            EscrowTransaction.objects.filter(
                recipient_user=user,
                status=EscrowStatus.PENDING_USER_SETUP,
            ).values_list("id", flat=True)
        )

        for escrow_id in pending_ids:
            try:
                with cls.atomic():
                    escrow, changed = cls._transition(
                        escrow_id,
                        "activate",
                        EscrowStatus.HELD,
                        SettlementCause.PAYOUT_SETUP_COMPLETED,
                    )
            except SettlementConflictError as e:
                logger.info(
                    "Pending escrow already moved on",
                    extra={"escrow_id": str(escrow_id), "current_status": e.current_status},
                )
                continue

            if changed:
                activated.append(escrow)

        for escrow in activated:
            tracking = (
                EmailResponseTracking.objects.filter(escrow=escrow)
                .order_by("response_received_at")
                .first()
            )
            if tracking is None:
                continue
            if not (tracking.within_deadline or tracking.grace_period_used):
                continue
            try:
                cls.release(
                    escrow.id,
                    cause=SettlementCause.PAYOUT_SETUP_COMPLETED,
                    response_received_at=tracking.response_received_at,
                )
            except SettlementConflictError as e:
                logger.info(
                    "Replay lost race",
                    extra={"escrow_id": str(escrow.id), "current_status": e.current_status},
                )

        logger.info(
            "Pending escrows activated",
            extra={"user_id": str(user.pk), "count": len(activated)},
        )
        return activated

    @classmethod
    def retry_transfer(
        cls,
        escrow_id: uuid.UUID | str,
        actor: AbstractBaseUser | None = None,
    ) -> EscrowTransaction:
        """
        transfer_failed -> released with a fresh transfer attempt.

        Manual intervention only. A transient earlier failure reuses the
        original transfer idempotency key so a transfer that did go through
        is not paid twice; a permanent one gets a new key.
        """
        with cls.atomic():
            escrow = cls._load(escrow_id)
            retryable = bool(escrow.metadata.get("transfer_failure_retryable"))

            escrow, changed = cls._transition(
                escrow_id,
                "retry_release",
                EscrowStatus.RELEASED,
                SettlementCause.MANUAL_RETRY,
            )
            if not changed:
                return escrow

            key = f"transfer-{escrow.id}"
            if not retryable:
                key = f"{key}-retry-{escrow.version}"

            AdminAction.record(
                AdminActionType.TRANSFER_RETRY,
                "Transfer retried by operator",
                escrow=escrow,
                actor=actor,
                idempotency_key=key,
            )

            try:
                transfer_id = cls._pay_recipient(escrow, key)
            except PaymentProviderError as e:
                escrow = cls._record_transfer_failure(escrow, e)
            else:
                escrow = cls._set_provider_reference(escrow, stripe_transfer_id=transfer_id)
                cls._notify_on_commit(OutcomeType.RELEASED, escrow)

        return escrow

    @classmethod
    def settle(cls, message_id: uuid.UUID | str, cause: str) -> EscrowTransaction:
        """
        Settle by message id; entry point of the internal trigger endpoint.

        response_received releases and requires a recorded response.
        deadline_expired refunds and requires the grace window to be over.

        Raises:
            EscrowNotFoundError, EscrowValidationError, SettlementConflictError
        """
        escrow = EscrowTransaction.objects.filter(message_id=message_id).first()
        if escrow is None:
            raise EscrowNotFoundError(
                f"No escrow for message {message_id}",
                details={"message_id": str(message_id)},
            )

        if cause in (SettlementCause.RESPONSE_RECEIVED, SettlementCause.RECONCILIATION):
            tracking = (
                EmailResponseTracking.objects.filter(escrow=escrow)
                .order_by("response_received_at")
                .first()
            )
            if tracking is None and escrow.status != EscrowStatus.RELEASED:
                raise EscrowValidationError(
                    "No recorded response for this message",
                    details={"message_id": str(message_id)},
                )
            return cls.release(
                escrow.id,
                cause=cause,
                response_received_at=tracking.response_received_at if tracking else None,
            )

        if cause == SettlementCause.DEADLINE_EXPIRED:
            if escrow.status == EscrowStatus.HELD and timezone.now() <= escrow.expires_at + grace_period():
                raise EscrowValidationError(
                    "Response window has not closed yet",
                    details={
                        "message_id": str(message_id),
                        "expires_at": escrow.expires_at.isoformat(),
                    },
                )
            return cls.refund(escrow.id, cause=cause)

        raise EscrowValidationError(
            f"Unsupported settlement cause: {cause}",
            details={"cause": cause},
        )

    # =========================================================================
    # Transition primitive
    # =========================================================================

    @classmethod
    def _load(cls, escrow_id: uuid.UUID | str) -> EscrowTransaction:
        try:
            return EscrowTransaction.objects.select_related("recipient_user").get(pk=escrow_id)
        except EscrowTransaction.DoesNotExist:
            raise EscrowNotFoundError(
                f"Escrow {escrow_id} not found",
                details={"escrow_id": str(escrow_id)},
            )

    @classmethod
    def _transition(
        cls,
        escrow_id: uuid.UUID | str,
        method_name: str,
        target: str,
        cause: str,
        **kwargs,
    ) -> tuple[EscrowTransaction, bool]:
        """
        Apply one FSM transition with a conditional UPDATE.

        Must run inside an atomic block. Returns (escrow, changed); changed
        is False when the escrow already sat in the target status.
        """
        logger = cls.get_logger()
        escrow = cls._load(escrow_id)

        if escrow.status == target:
            logger.info(
                "Transition already applied",
                extra={"escrow_id": str(escrow.id), "status": target, "cause": cause},
            )
            return escrow, False

        source = escrow.status
        method = getattr(escrow, method_name)
        if not can_proceed(method):
            raise InvalidTransitionError(
                f"Cannot move escrow from {source} to {target}",
                current_status=source,
                target_status=target,
                details={"escrow_id": str(escrow.id), "cause": cause},
            )

        try:
            method(**kwargs)
        except TransitionNotAllowed:
            raise InvalidTransitionError(
                f"Cannot move escrow from {source} to {target}",
                current_status=source,
                target_status=target,
                details={"escrow_id": str(escrow.id), "cause": cause},
            )

        now = timezone.now()
        updated = EscrowTransaction.objects.filter(pk=escrow.pk, status=source).update(
            status=target,
            version=F("version") + 1,
            updated_at=now,
            **{name: getattr(escrow, name) for name in TRANSITION_FIELDS},
        )

        if updated == 0:
            current = (
                EscrowTransaction.objects.filter(pk=escrow.pk)
                .values_list("status", flat=True)
                .first()
            )
            if current == target:
                logger.info(
                    "Transition applied concurrently",
                    extra={"escrow_id": str(escrow.id), "status": target, "cause": cause},
                )
                return cls._load(escrow.pk), False

            logger.info(
                "Settlement conflict",
                extra={
                    "escrow_id": str(escrow.id),
                    "current_status": current,
                    "target_status": target,
                    "cause": cause,
                },
            )
            raise SettlementConflictError(
                f"Escrow is {current}, cannot move to {target}",
                current_status=current,
                target_status=target,
                details={"escrow_id": str(escrow.id), "cause": cause},
            )

        escrow = cls._load(escrow.pk)
        cls._record_transition(escrow, source, target, cause)
        return escrow, True

    @classmethod
    def _ensure_no_recorded_response(cls, escrow_id: uuid.UUID | str, cause: str) -> None:
        held = EscrowTransaction.objects.filter(pk=escrow_id, status=EscrowStatus.HELD)
        if not held.with_recorded_response().exists():
            return

        cls.get_logger().warning(
            "Refund refused, response already recorded",
            extra={"escrow_id": str(escrow_id), "cause": cause},
        )
        raise SettlementConflictError(
            "A response was recorded for this escrow",
            current_status=EscrowStatus.HELD,
            target_status=EscrowStatus.REFUNDED,
            error_code="RESPONSE_RECORDED",
            details={"escrow_id": str(escrow_id), "cause": cause},
        )

    @classmethod
    def _record_transition(
        cls,
        escrow: EscrowTransaction,
        source: str,
        target: str,
        cause: str,
    ) -> EscrowTransition:
        key = f"{escrow.id}:{target}"
        # Manual retries revisit a status the escrow has been in before
        if EscrowTransition.objects.filter(idempotency_key=key).exists():
            key = f"{key}:v{escrow.version}"

        try:
            return EscrowTransition.objects.create(
                escrow=escrow,
                from_status=source,
                to_status=target,
                cause=cause,
                idempotency_key=key,
                metadata={"version": escrow.version},
            )
        except IntegrityError:
            raise SettlementConflictError(
                f"Transition to {target} already recorded",
                current_status=target,
                target_status=target,
                details={"escrow_id": str(escrow.id), "idempotency_key": key},
            )

    # =========================================================================
    # Side effects
    # =========================================================================

    @classmethod
    def _set_provider_reference(cls, escrow: EscrowTransaction, **fields) -> EscrowTransaction:
        EscrowTransaction.objects.filter(pk=escrow.pk).update(
            updated_at=timezone.now(), **fields
        )
        for name, value in fields.items():
            setattr(escrow, name, value)
        return escrow

    @classmethod
    def _mark_responded(cls, escrow: EscrowTransaction, received_at: datetime) -> None:
        """Flip MessageResponse.has_response; never reverts a true value."""
        updated = MessageResponse.objects.filter(escrow=escrow, has_response=False).update(
            has_response=True,
            response_received_at=received_at,
            updated_at=timezone.now(),
        )
        if updated == 0 and not MessageResponse.objects.filter(escrow=escrow).exists():
            MessageResponse.objects.create(
                message_id=escrow.message_id,
                escrow=escrow,
                has_response=True,
                response_received_at=received_at,
            )

    @classmethod
    def _pay_recipient(cls, escrow: EscrowTransaction, idempotency_key: str) -> str:
        """
        Capture the sender's payment if needed and transfer the recipient share.

        Returns:
            Transfer ID, or "" when the share is zero
        """
        account = PayoutAccount.objects.filter(user_id=escrow.recipient_user_id).first()
        if account is None or not account.is_ready_for_payouts:
            raise StripeInvalidAccountError(
                "Recipient payout account is not ready",
                stripe_code="account_not_ready",
                details={"escrow_id": str(escrow.id)},
            )

        source_charge = None
        if escrow.stripe_payment_intent_id:
            intent = StripeAdapter.retrieve_payment_intent(escrow.stripe_payment_intent_id)
            if intent.requires_capture:
                intent = StripeAdapter.capture_payment_intent(
                    escrow.stripe_payment_intent_id,
                    idempotency_key=f"capture-{escrow.id}",
                )
            source_charge = intent.latest_charge

        if escrow.recipient_amount_cents == 0:
            return ""

        transfer = StripeAdapter.create_transfer(
            amount_cents=escrow.recipient_amount_cents,
            destination_account=account.stripe_account_id,
            idempotency_key=idempotency_key,
            currency=escrow.currency,
            metadata={
                "escrow_id": str(escrow.id),
                "message_id": str(escrow.message_id),
            },
            source_transaction=source_charge,
        )
        return transfer.id

    @classmethod
    def _return_funds(cls, escrow: EscrowTransaction) -> str:
        """
        Cancel or refund the sender's PaymentIntent.

        Returns:
            Refund ID, or the PaymentIntent ID when it was cancelled
        """
        payment_intent_id = escrow.stripe_payment_intent_id
        if not payment_intent_id:
            cls.get_logger().warning(
                "Escrow has no payment intent, nothing to return",
                extra={"escrow_id": str(escrow.id)},
            )
            return ""

        intent = StripeAdapter.retrieve_payment_intent(payment_intent_id)
        if intent.status == "canceled":
            return intent.id

        if intent.is_cancellable:
            cancelled = StripeAdapter.cancel_payment_intent(
                payment_intent_id,
                idempotency_key=f"cancel-{escrow.id}",
            )
            return cancelled.id

        refund = StripeAdapter.create_refund(
            payment_intent_id,
            idempotency_key=f"refund-{escrow.id}",
            metadata={
                "escrow_id": str(escrow.id),
                "message_id": str(escrow.message_id),
            },
        )
        return refund.id

    @classmethod
    def _record_transfer_failure(
        cls,
        escrow: EscrowTransaction,
        error: PaymentProviderError,
    ) -> EscrowTransaction:
        """released -> transfer_failed after our own transfer attempt failed."""
        cls.get_logger().error(
            "Transfer to recipient failed",
            extra={
                "escrow_id": str(escrow.id),
                "error_code": error.error_code,
                "retryable": error.is_retryable,
            },
        )
        return cls._fail_transfer(escrow, error.message, retryable=error.is_retryable)

    @classmethod
    def _fail_transfer(
        cls,
        escrow: EscrowTransaction,
        reason: str,
        retryable: bool,
    ) -> EscrowTransaction:
        escrow, changed = cls._transition(
            escrow.id,
            "fail_transfer",
            EscrowStatus.TRANSFER_FAILED,
            SettlementCause.TRANSFER_FAILED,
            reason=reason,
        )
        if not changed:
            return escrow

        metadata = {**escrow.metadata, "transfer_failure_retryable": retryable}
        EscrowTransaction.objects.filter(pk=escrow.pk).update(metadata=metadata)
        escrow.metadata = metadata

        AdminAction.record(
            AdminActionType.TRANSFER_FAILED,
            f"Transfer failed: {reason or 'no reason given'}",
            escrow=escrow,
            requires_attention=True,
            transfer_id=escrow.stripe_transfer_id,
            retryable=retryable,
        )
        cls._notify_on_commit(OutcomeType.TRANSFER_FAILED, escrow, failure_reason=reason)
        cls.get_logger().warning(
            "Escrow marked transfer_failed",
            extra={"escrow_id": str(escrow.id), "reason": reason},
        )
        return escrow

    # =========================================================================
    # Notifications
    # =========================================================================

    @staticmethod
    def build_outcome(
        outcome_type: OutcomeType,
        escrow: EscrowTransaction,
        **context,
    ) -> SettlementOutcome:
        return SettlementOutcome(
            type=outcome_type,
            escrow_id=escrow.id,
            message_id=escrow.message_id,
            recipient_email=escrow.recipient_user.email,
            sender_email=escrow.sender_email,
            amount=escrow.amount,
            currency=escrow.currency,
            context={"earnings": f"{escrow.recipient_amount:.2f}", **context},
        )

    @classmethod
    def _notify_on_commit(
        cls,
        outcome_type: OutcomeType,
        escrow: EscrowTransaction,
        **context,
    ) -> None:
        outcome = cls.build_outcome(outcome_type, escrow, **context)
        transaction.on_commit(lambda: NotificationDispatcher.notify(outcome), robust=True)
