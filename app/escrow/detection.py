"""
Response Detector.

Matches an inbound reply email to its escrow, decides whether it arrived in
time and, if so, asks the Settlement Engine to release the funds.

Outcomes (escrow.state_machines.DetectionOutcome):
    no_match          destination is not one of our reply addresses
    not_applicable    no escrow, or the escrow is not held (reason says why)
    late              arrived after expires_at + grace; logged, nothing moves
    duplicate         this provider MessageID was already processed
    released          settlement requested and applied
    conflict          someone else resolved the escrow first
    settlement_failed tracking recorded, settlement raised; reconciliation
                      picks it up later

Once the EmailResponseTracking row is written nothing after it may raise:
the remaining steps are logged and left to reconciliation instead.

Usage:
    from escrow.detection import InboundEmail, ResponseDetector

    result = ResponseDetector.process(
        InboundEmail(
            provider_message_id="a8c1...",
            to="reply+1f0e...@reply.example.com",
            from_address="recipient@example.com",
            subject="Re: your message",
            text_body="Thanks for reaching out...",
        )
    )
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from typing import Any

from django.db import IntegrityError
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from django.utils.html import strip_tags

from core.services import BaseService

from escrow.addresses import parse_reply_address
from escrow.exceptions import SettlementConflictError
from escrow.ledger import EscrowLedger, grace_period
from escrow.models import AdminAction, EmailResponseTracking, EscrowTransaction
from escrow.models.responses import CONTENT_PREVIEW_LENGTH
from escrow.settlement import SettlementEngine
from escrow.state_machines import (
    AdminActionType,
    DetectionMethod,
    DetectionOutcome,
    EscrowStatus,
    SettlementCause,
)
from notifications.dispatcher import NotificationDispatcher, OutcomeType

logger = logging.getLogger(__name__)


@dataclass
class InboundEmail:
    """An inbound email as delivered by the email provider's webhook."""

    provider_message_id: str
    to: str
    from_address: str = ""
    subject: str = ""
    text_body: str = ""
    html_body: str = ""
    headers: list[dict[str, Any]] = field(default_factory=list)

    @property
    def body(self) -> str:
        if self.text_body:
            return self.text_body
        return strip_tags(self.html_body).strip()


@dataclass
class Timeliness:
    """
    Attributes:
        accepted: Arrived at or before expires_at + grace
        within_deadline: Arrived at or before expires_at
        grace_period_used: Accepted, but only thanks to the grace window
        fallback: expires_at could not be read; grace-only window applied
    """

    accepted: bool
    within_deadline: bool
    grace_period_used: bool
    fallback: bool = False


@dataclass
class DetectionResult:
    outcome: str
    reason: str = ""
    message_id: uuid.UUID | None = None
    escrow_id: uuid.UUID | None = None
    escrow_status: str | None = None
    within_deadline: bool | None = None
    grace_period_used: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "reason": self.reason,
            "message_id": str(self.message_id) if self.message_id else None,
            "escrow_id": str(self.escrow_id) if self.escrow_id else None,
            "escrow_status": self.escrow_status,
            "within_deadline": self.within_deadline,
            "grace_period_used": self.grace_period_used,
        }


def _coerce_datetime(value: datetime | str | None) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = parse_datetime(value)
        except ValueError:
            return None
    else:
        return None

    if parsed is None:
        return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def evaluate_timeliness(
    expires_at: datetime | str | None,
    now: datetime,
    grace: timedelta,
) -> Timeliness:
    """
    Classify a response time against the deadline.

    The grace boundary is inclusive: a response at exactly expires_at +
    grace is accepted. An unreadable expires_at does not reject the reply;
    it is accepted as a grace-period response and flagged as a fallback.
    """
    deadline = _coerce_datetime(expires_at)
    if deadline is None:
        logger.warning(
            "Could not read escrow deadline, applying grace-only window",
            extra={"expires_at": repr(expires_at)},
        )
        return Timeliness(
            accepted=True,
            within_deadline=False,
            grace_period_used=True,
            fallback=True,
        )

    within_deadline = now <= deadline
    accepted = now <= deadline + grace
    return Timeliness(
        accepted=accepted,
        within_deadline=within_deadline,
        grace_period_used=accepted and not within_deadline,
    )


class ResponseDetector(BaseService):
    """Inbound email -> settlement proposal."""

    @classmethod
    def process(cls, email: InboundEmail, now: datetime | None = None) -> DetectionResult:
        logger = cls.get_logger()
        now = now or timezone.now()
        log_context = {"inbound_email_id": email.provider_message_id}

        message_id = parse_reply_address(email.to)
        if message_id is None:
            logger.info("Inbound email does not match a reply address", extra=log_context)
            return DetectionResult(DetectionOutcome.NO_MATCH, reason="no_reply_address")

        log_context["message_id"] = str(message_id)

        escrow = EscrowLedger.find_by_message_id(message_id)
        if escrow is None:
            logger.info("No escrow for inbound reply", extra=log_context)
            return DetectionResult(
                DetectionOutcome.NOT_APPLICABLE,
                reason="escrow_not_found",
                message_id=message_id,
            )

        log_context["escrow_id"] = str(escrow.id)

        if EmailResponseTracking.objects.filter(
            inbound_email_id=email.provider_message_id
        ).exists():
            return cls._duplicate(escrow, message_id, log_context)

        if escrow.status not in (EscrowStatus.HELD, EscrowStatus.PENDING_USER_SETUP):
            logger.info(
                "Escrow not held, ignoring reply",
                extra={**log_context, "escrow_status": escrow.status},
            )
            return DetectionResult(
                DetectionOutcome.NOT_APPLICABLE,
                reason=f"escrow_{escrow.status}",
                message_id=message_id,
                escrow_id=escrow.id,
                escrow_status=escrow.status,
            )

        timeliness = evaluate_timeliness(escrow.expires_at, now, grace_period())
        if not timeliness.accepted:
            cls._record_late(escrow, email, now)
            logger.info(
                "Late response, funds not released",
                extra={**log_context, "expires_at": escrow.expires_at.isoformat()},
            )
            return DetectionResult(
                DetectionOutcome.LATE,
                reason="after_grace_period",
                message_id=message_id,
                escrow_id=escrow.id,
                escrow_status=escrow.status,
                within_deadline=False,
                grace_period_used=False,
            )

        try:
            cls._record_tracking(escrow, email, now, timeliness)
        except IntegrityError:
            return cls._duplicate(escrow, message_id, log_context)

        result = DetectionResult(
            DetectionOutcome.RELEASED,
            message_id=message_id,
            escrow_id=escrow.id,
            within_deadline=timeliness.within_deadline,
            grace_period_used=timeliness.grace_period_used,
        )

        if escrow.status == EscrowStatus.PENDING_USER_SETUP:
            logger.info(
                "Response recorded, waiting for recipient payout setup",
                extra=log_context,
            )
            result.outcome = DetectionOutcome.NOT_APPLICABLE
            result.reason = "awaiting_payout_setup"
            result.escrow_status = escrow.status
        else:
            cls._settle(escrow, now, result, log_context)

        cls._forward_response(escrow, email, log_context)
        return result

    @classmethod
    def _duplicate(
        cls,
        escrow: EscrowTransaction,
        message_id: uuid.UUID,
        log_context: dict[str, Any],
    ) -> DetectionResult:
        cls.get_logger().info("Duplicate inbound email", extra=log_context)
        return DetectionResult(
            DetectionOutcome.DUPLICATE,
            reason="already_processed",
            message_id=message_id,
            escrow_id=escrow.id,
            escrow_status=escrow.status,
        )

    @classmethod
    def _record_tracking(
        cls,
        escrow: EscrowTransaction,
        email: InboundEmail,
        now: datetime,
        timeliness: Timeliness,
    ) -> EmailResponseTracking:
        """Atomic insert; IntegrityError on the unique inbound_email_id means duplicate."""
        with cls.atomic():
            return EmailResponseTracking.objects.create(
                inbound_email_id=email.provider_message_id,
                escrow=escrow,
                message_id=escrow.message_id,
                within_deadline=timeliness.within_deadline,
                grace_period_used=timeliness.grace_period_used,
                response_from=email.from_address[:320],
                response_subject=email.subject[:998],
                response_received_at=now,
                detection_method=DetectionMethod.REPLY_ADDRESS,
                content_preview=email.body[:CONTENT_PREVIEW_LENGTH],
                email_headers=email.headers,
                metadata={"deadline_fallback": timeliness.fallback},
            )

    @classmethod
    def _settle(
        cls,
        escrow: EscrowTransaction,
        now: datetime,
        result: DetectionResult,
        log_context: dict[str, Any],
    ) -> None:
        logger = cls.get_logger()
        try:
            settled = SettlementEngine.release(
                escrow.id,
                cause=SettlementCause.RESPONSE_RECEIVED,
                response_received_at=now,
            )
        except SettlementConflictError as e:
            logger.info(
                "Response lost settlement race",
                extra={**log_context, "current_status": e.current_status},
            )
            result.outcome = DetectionOutcome.CONFLICT
            result.reason = f"escrow_{e.current_status}"
            result.escrow_status = e.current_status
            return
        except Exception:
            logger.exception(
                "Settlement failed after response was recorded",
                extra=log_context,
            )
            result.outcome = DetectionOutcome.SETTLEMENT_FAILED
            result.reason = "left_for_reconciliation"
            return

        result.escrow_status = settled.status
        if settled.status == EscrowStatus.TRANSFER_FAILED:
            result.reason = "transfer_failed"
        logger.info(
            "Response accepted",
            extra={
                **log_context,
                "escrow_status": settled.status,
                "grace_period_used": result.grace_period_used,
            },
        )

    @classmethod
    def _record_late(cls, escrow: EscrowTransaction, email: InboundEmail, now: datetime) -> None:
        already_logged = AdminAction.objects.filter(
            action_type=AdminActionType.LATE_RESPONSE,
            metadata__inbound_email_id=email.provider_message_id,
        ).exists()
        if already_logged:
            return

        AdminAction.record(
            AdminActionType.LATE_RESPONSE,
            f"Response arrived after the grace period for message {escrow.message_id}",
            escrow=escrow,
            inbound_email_id=email.provider_message_id,
            received_at=now.isoformat(),
            expires_at=escrow.expires_at.isoformat(),
        )

    @classmethod
    def _forward_response(
        cls,
        escrow: EscrowTransaction,
        email: InboundEmail,
        log_context: dict[str, Any],
    ) -> None:
        """Best effort; a failure here never affects the settlement."""
        try:
            outcome = SettlementEngine.build_outcome(
                OutcomeType.RESPONSE_FORWARD,
                escrow,
                response_from=email.from_address,
                response_subject=email.subject,
                response_text=email.body,
            )
            NotificationDispatcher.notify(outcome)
        except Exception:
            cls.get_logger().exception("Failed to forward response to sender", extra=log_context)
