"""
Deadline Sweeper worker.

Celery tasks that enforce the response deadline:
- sweep_expired_escrows: Refund held escrows whose deadline plus grace has
  passed without a response
- send_deadline_reminders: Remind recipients at the halfway point of the
  response window (once per message)

run_deadline_sweep() runs both synchronously for the sweep endpoint.

Usage:
    # Typically called via celery-beat schedule
    from escrow.workers import sweep_expired_escrows

    sweep_expired_escrows.delay()

    # Or synchronously
    counts = run_deadline_sweep()  # {"refunded": 3, "reminded": 1, "skipped": 0}
"""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from decimal import Decimal

from celery import shared_task
from django.conf import settings
from django.db.models import Exists, OuterRef
from django.utils import timezone

from escrow.exceptions import PaymentProviderError, SettlementConflictError
from escrow.ledger import grace_period
from escrow.models import AdminAction, EscrowTransaction
from escrow.settlement import SettlementEngine
from escrow.state_machines import AdminActionType, SettlementCause
from notifications.dispatcher import NotificationDispatcher, OutcomeType
from notifications.models import EmailLog, EmailType

logger = logging.getLogger(__name__)


# =============================================================================
# Periodic Task: Refund Expired Escrows
# =============================================================================


@shared_task(bind=True, acks_late=True)
def sweep_expired_escrows(self) -> dict:
    """
    Refund held escrows whose deadline plus grace has passed.

    The task:
    1. Selects held escrows with expires_at + grace < now
    2. Skips those with a recorded response (a tracking row or
       has_response); a response that never settled belongs to reconciliation
    3. Refunds the rest, oldest deadline first, through the Settlement Engine
    4. Stops when the per-run circuit breaker trips (count or amount) and
       records an AdminAction

    Returns:
        Dict with refunded, skipped, conflicts, failed and limit_reached

    Note:
        Safe to run concurrently with the Response Detector: a response
        that wins the race makes the refund a conflict, which is counted
        and skipped.
    """
    now = timezone.now()
    max_refunds = settings.ESCROW_MAX_REFUNDS_PER_RUN
    max_amount = Decimal(str(settings.ESCROW_MAX_REFUND_AMOUNT_PER_RUN))

    logger.info("Starting deadline sweep", extra={"now": now.isoformat()})

    expired = EscrowTransaction.objects.past_grace(now, grace_period())
    responded = expired.with_recorded_response().count()
    if responded:
        logger.warning(
            "Expired escrows with a recorded response left for reconciliation",
            extra={"count": responded},
        )

    candidates = list(
        expired.awaiting_response()
        .order_by("expires_at")
        .values_list("id", "amount")
    )

    refunded = conflicts = failed = 0
    refunded_amount = Decimal("0")
    limit_reached = False

    for position, (escrow_id, amount) in enumerate(candidates):
        if refunded >= max_refunds or refunded_amount + amount > max_amount:
            limit_reached = True
            remaining = len(candidates) - position
            _record_limit_reached(refunded, refunded_amount, remaining)
            break

        try:
            SettlementEngine.refund(escrow_id, cause=SettlementCause.DEADLINE_EXPIRED)
        except SettlementConflictError as e:
            conflicts += 1
            logger.info(
                "Escrow resolved before refund",
                extra={"escrow_id": str(escrow_id), "current_status": e.current_status},
            )
            continue
        except PaymentProviderError as e:
            failed += 1
            logger.error(
                f"Refund failed, will retry next sweep: {e.message}",
                extra={"escrow_id": str(escrow_id), "error_code": e.error_code},
            )
            continue

        refunded += 1
        refunded_amount += amount

    skipped = len(candidates) - refunded - conflicts - failed + responded

    logger.info(
        f"Deadline sweep complete: refunded {refunded} escrows",
        extra={
            "refunded": refunded,
            "refunded_amount": str(refunded_amount),
            "skipped": skipped,
            "conflicts": conflicts,
            "failed": failed,
            "limit_reached": limit_reached,
        },
    )

    return {
        "refunded": refunded,
        "refunded_amount": str(refunded_amount),
        "skipped": skipped,
        "conflicts": conflicts,
        "failed": failed,
        "limit_reached": limit_reached,
    }


def _record_limit_reached(refunded: int, refunded_amount: Decimal, remaining: int) -> None:
    logger.error(
        "Refund circuit breaker tripped",
        extra={
            "refunded": refunded,
            "refunded_amount": str(refunded_amount),
            "remaining": remaining,
        },
    )
    AdminAction.record(
        AdminActionType.REFUND_LIMIT_REACHED,
        (
            f"Deadline sweep stopped after {refunded} refunds "
            f"({refunded_amount}); {remaining} escrows deferred to the next run"
        ),
        requires_attention=True,
        refunded=refunded,
        refunded_amount=str(refunded_amount),
        remaining=remaining,
        max_refunds=settings.ESCROW_MAX_REFUNDS_PER_RUN,
        max_amount=str(settings.ESCROW_MAX_REFUND_AMOUNT_PER_RUN),
    )


# =============================================================================
# Periodic Task: Halfway Reminders
# =============================================================================


def reminder_due(escrow: EscrowTransaction, now) -> bool:
    """True once half of the response window has elapsed and it has not closed."""
    if now >= escrow.expires_at:
        return False
    halfway = escrow.expires_at - timedelta(hours=escrow.deadline_hours) / 2
    return now >= halfway


def hours_left(escrow: EscrowTransaction, now) -> int:
    """Whole hours until the deadline, rounded up."""
    seconds = (escrow.expires_at - now).total_seconds()
    return max(0, math.ceil(seconds / 3600))


@shared_task(bind=True)
def send_deadline_reminders(self) -> dict:
    """
    Remind recipients that a paid message is waiting.

    Idempotent per message: an existing deadline_reminder EmailLog excludes
    the escrow, and the log's unique constraint stops a concurrent run from
    sending a second one. Settlement state is never touched.

    Returns:
        Dict with reminded and skipped counts
    """
    now = timezone.now()
    batch_size = settings.ESCROW_SWEEP_BATCH_SIZE

    already_reminded = EmailLog.objects.filter(
        message_id=OuterRef("message_id"),
        email_type=EmailType.DEADLINE_REMINDER,
    )
    candidates = (
        EscrowTransaction.objects.held()
        .filter(expires_at__gt=now)
        .awaiting_response()
        .exclude(Exists(already_reminded))
        .select_related("recipient_user")
        .order_by("expires_at")[:batch_size]
    )

    reminded = skipped = 0
    for escrow in candidates:
        if not reminder_due(escrow, now):
            continue

        outcome = SettlementEngine.build_outcome(
            OutcomeType.REMINDER,
            escrow,
            hours_left=hours_left(escrow, now),
            expires_at=escrow.expires_at.strftime("%Y-%m-%d %H:%M"),
        )
        if NotificationDispatcher.notify(outcome):
            reminded += 1
            logger.info(
                "Deadline reminder queued",
                extra={"escrow_id": str(escrow.id), "message_id": str(escrow.message_id)},
            )
        else:
            skipped += 1

    logger.info(
        f"Reminder sweep complete: reminded {reminded}",
        extra={"reminded": reminded, "skipped": skipped},
    )
    return {"reminded": reminded, "skipped": skipped}


def run_deadline_sweep() -> dict:
    """Run the refund sweep and the reminder sweep in-process."""
    sweep = sweep_expired_escrows()
    reminders = send_deadline_reminders()
    return {
        "refunded": sweep["refunded"],
        "reminded": reminders["reminded"],
        "skipped": sweep["skipped"] + reminders["skipped"],
    }
