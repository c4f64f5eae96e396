"""
State machine enums for escrow models.

This module defines the state enums used by escrow models with django-fsm.
"""

from escrow.state_machines.states import (
    AdminActionType,
    DetectionMethod,
    DetectionOutcome,
    EscrowStatus,
    SettlementCause,
    WebhookEventStatus,
)

__all__ = [
    "AdminActionType",
    "DetectionMethod",
    "DetectionOutcome",
    "EscrowStatus",
    "SettlementCause",
    "WebhookEventStatus",
]
