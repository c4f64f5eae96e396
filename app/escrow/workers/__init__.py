"""
Background workers for escrow processing.

This module contains Celery tasks for:
- Deadline sweep: refunding escrows past deadline plus grace
- Halfway reminders to recipients
- Reconciliation of recorded-but-unsettled responses
- Daily reconciliation summary

Usage:
    from escrow.workers import sweep_expired_escrows, run_deadline_sweep

    sweep_expired_escrows.delay()
"""

from escrow.workers.deadline_sweeper import (
    run_deadline_sweep,
    send_deadline_reminders,
    sweep_expired_escrows,
)
from escrow.workers.reconciliation import (
    daily_reconciliation,
    escrow_health,
    reconcile_unsettled_responses,
)

__all__ = [
    "daily_reconciliation",
    "escrow_health",
    "reconcile_unsettled_responses",
    "run_deadline_sweep",
    "send_deadline_reminders",
    "sweep_expired_escrows",
]
