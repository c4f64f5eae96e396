"""
Reconciliation worker for escrow settlement.

Closes the gap between "response recorded" and "funds released": the
detector writes EmailResponseTracking before it asks for settlement, so a
crash in between leaves a tracking row next to an escrow that is still held.

Tasks:
- reconcile_unsettled_responses: Re-submit those escrows for release
- daily_reconciliation: Summarise yesterday and flag anomalies

Also provides escrow_health() for the health endpoint.

Usage:
    # Typically called via celery-beat schedule
    from escrow.workers import reconcile_unsettled_responses

    reconcile_unsettled_responses.delay()
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from decimal import Decimal

from celery import shared_task
from django.db.models import Count, Sum
from django.utils import timezone

from escrow.exceptions import PaymentProviderError, SettlementConflictError
from escrow.ledger import grace_period
from escrow.models import AdminAction, EmailResponseTracking, EscrowTransaction
from escrow.settlement import SettlementEngine
from escrow.state_machines import AdminActionType, EscrowStatus, SettlementCause

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Leave in-flight detector requests alone
UNSETTLED_MIN_AGE = timedelta(minutes=5)

BATCH_SIZE = 100

# Refunds above this share of settled escrows are flagged
REFUND_RATE_THRESHOLD = Decimal("0.30")

NEAR_TIMEOUT_WINDOW = timedelta(hours=1)


def unsettled_responses(now: datetime | None = None):
    """Tracking rows whose escrow is still held."""
    now = now or timezone.now()
    return EmailResponseTracking.objects.filter(
        escrow__status=EscrowStatus.HELD,
        created_at__lt=now - UNSETTLED_MIN_AGE,
    )


# =============================================================================
# Periodic Task: Unsettled Responses
# =============================================================================


@shared_task(bind=True)
def reconcile_unsettled_responses(self) -> dict:
    """
    Release escrows whose response was recorded but never settled.

    The timeliness decision was made when the response arrived, so the
    escrow is released even if its deadline has passed since.

    Returns:
        Dict with reconciled, conflicts and failed counts
    """
    logger.info("Starting unsettled response reconciliation")

    trackings = (
        unsettled_responses()
        .order_by("escrow_id", "response_received_at")
        .values_list("escrow_id", "response_received_at")
    )

    seen: set = set()
    reconciled = conflicts = failed = 0

    for escrow_id, received_at in trackings[:BATCH_SIZE]:
        if escrow_id in seen:
            continue
        seen.add(escrow_id)

        try:
            escrow = SettlementEngine.release(
                escrow_id,
                cause=SettlementCause.RECONCILIATION,
                response_received_at=received_at,
            )
        except SettlementConflictError as e:
            conflicts += 1
            logger.info(
                "Unsettled response already resolved",
                extra={"escrow_id": str(escrow_id), "current_status": e.current_status},
            )
            continue
        except PaymentProviderError as e:
            failed += 1
            logger.error(
                f"Reconciliation release failed: {e.message}",
                extra={"escrow_id": str(escrow_id)},
            )
            continue

        reconciled += 1
        logger.info(
            "Unsettled response reconciled",
            extra={"escrow_id": str(escrow_id), "escrow_status": escrow.status},
        )

    if reconciled or conflicts or failed:
        AdminAction.record(
            AdminActionType.RECONCILIATION,
            f"Reconciled {reconciled} unsettled responses",
            requires_attention=failed > 0,
            reconciled=reconciled,
            conflicts=conflicts,
            failed=failed,
        )

    logger.info(
        f"Unsettled response reconciliation complete: {reconciled} released",
        extra={"reconciled": reconciled, "conflicts": conflicts, "failed": failed},
    )
    return {"reconciled": reconciled, "conflicts": conflicts, "failed": failed}


# =============================================================================
# Periodic Task: Daily Summary
# =============================================================================


def _status_breakdown(queryset) -> dict[str, dict[str, str | int]]:
    rows = queryset.values("status").annotate(count=Count("id"), total=Sum("amount"))
    breakdown = {status: {"count": 0, "amount": "0.00"} for status in EscrowStatus.values}
    for row in rows:
        breakdown[row["status"]] = {
            "count": row["count"],
            "amount": f"{row['total'] or Decimal('0'):.2f}",
        }
    return breakdown


@shared_task(bind=True)
def daily_reconciliation(self) -> dict:
    """
    Summarise escrows created yesterday (UTC) and flag anomalies.

    Issues flagged:
    - any transfer_failed or payment_failed escrow
    - refund rate above 30% of settled escrows
    - recorded responses that never settled

    The summary is stored as an AdminAction; it needs attention when any
    issue was found.

    Returns:
        Dict with the date, per-status breakdown and issues
    """
    today = timezone.now().date()
    day = today - timedelta(days=1)
    start = timezone.make_aware(datetime.combine(day, time.min))
    end = start + timedelta(days=1)

    breakdown = _status_breakdown(
        EscrowTransaction.objects.filter(created_at__gte=start, created_at__lt=end)
    )

    issues: list[str] = []
    transfer_failed = breakdown[EscrowStatus.TRANSFER_FAILED]["count"]
    payment_failed = breakdown[EscrowStatus.PAYMENT_FAILED]["count"]
    if transfer_failed:
        issues.append(f"{transfer_failed} transfer failures")
    if payment_failed:
        issues.append(f"{payment_failed} payment failures")

    released = breakdown[EscrowStatus.RELEASED]["count"]
    refunded = breakdown[EscrowStatus.REFUNDED]["count"]
    settled = released + refunded
    refund_rate = Decimal(refunded) / Decimal(settled) if settled else Decimal("0")
    if refund_rate > REFUND_RATE_THRESHOLD:
        issues.append(f"refund rate {refund_rate:.0%} above {REFUND_RATE_THRESHOLD:.0%}")

    unsettled = unsettled_responses().count()
    if unsettled:
        issues.append(f"{unsettled} recorded responses not settled")

    summary = {
        "date": day.isoformat(),
        "breakdown": breakdown,
        "refund_rate": f"{refund_rate:.4f}",
        "unsettled_responses": unsettled,
        "issues": issues,
    }

    AdminAction.record(
        AdminActionType.DAILY_RECONCILIATION,
        f"Daily reconciliation for {day.isoformat()}: "
        + ("; ".join(issues) if issues else "no issues"),
        requires_attention=bool(issues),
        **summary,
    )

    log = logger.warning if issues else logger.info
    log(
        "Daily reconciliation complete",
        extra={"date": day.isoformat(), "issues": issues},
    )
    return summary


# =============================================================================
# Health Snapshot
# =============================================================================


def escrow_health(now: datetime | None = None) -> dict:
    """
    Current health of the escrow pipeline.

    status is "warning" when transfers failed in the last 24h, held escrows
    are overdue past their grace period, recorded responses are unsettled,
    or operator alerts are open; otherwise "healthy".
    """
    now = now or timezone.now()
    last_day = EscrowTransaction.objects.filter(created_at__gte=now - timedelta(hours=24))
    breakdown = _status_breakdown(last_day)

    held = EscrowTransaction.objects.held()
    near_timeout = held.filter(
        expires_at__gt=now,
        expires_at__lte=now + NEAR_TIMEOUT_WINDOW,
    ).count()
    overdue = held.filter(expires_at__lt=now - grace_period()).count()

    pending = EscrowTransaction.objects.filter(status=EscrowStatus.PENDING_USER_SETUP)
    pending_totals = pending.aggregate(count=Count("id"), total=Sum("amount"))

    unsettled = unsettled_responses(now).count()
    open_alerts = AdminAction.objects.unresolved().filter(requires_attention=True).count()

    warnings: list[str] = []
    if breakdown[EscrowStatus.TRANSFER_FAILED]["count"]:
        warnings.append("transfer_failures")
    if overdue:
        warnings.append("overdue_escrows")
    if unsettled:
        warnings.append("unsettled_responses")
    if open_alerts:
        warnings.append("open_alerts")

    return {
        "status": "warning" if warnings else "healthy",
        "warnings": warnings,
        "checked_at": now.isoformat(),
        "last_24h": breakdown,
        "near_timeout": near_timeout,
        "overdue": overdue,
        "pending_user_setup": {
            "count": pending_totals["count"],
            "amount": f"{pending_totals['total'] or Decimal('0'):.2f}",
        },
        "unsettled_responses": unsettled,
        "open_alerts": open_alerts,
    }
