"""
Test configuration and fixtures for notification tests.

This module provides:
- SettlementOutcome fixtures for each outcome type
- EmailLog fixtures in pending and sent states
- A signer for delivery webhook payloads

Usage:
    def test_example(refunded_outcome):
        logs = NotificationDispatcher.notify(refunded_outcome)
        assert len(logs) == 2
"""

import hashlib
import hmac
import json
import uuid
from decimal import Decimal

import pytest

from notifications.dispatcher import OutcomeType, SettlementOutcome
from notifications.models import DeliveryStatus
from notifications.tests.factories import EmailLogFactory


# =============================================================================
# Outcome Fixtures
# =============================================================================


def make_outcome(outcome_type, **context) -> SettlementOutcome:
    return SettlementOutcome(
        type=outcome_type,
        escrow_id=uuid.uuid4(),
        message_id=uuid.uuid4(),
        recipient_email="recipient@example.com",
        sender_email="sender@example.com",
        amount=Decimal("20.00"),
        currency="eur",
        context=context,
    )


@pytest.fixture
def released_outcome():
    return make_outcome(OutcomeType.RELEASED, earnings="15.00")


@pytest.fixture
def refunded_outcome():
    return make_outcome(OutcomeType.REFUNDED)


@pytest.fixture
def reminder_outcome():
    return make_outcome(OutcomeType.REMINDER, hours_left=12, expires_at="2026-03-03T12:00:00+00:00")


# =============================================================================
# EmailLog Fixtures
# =============================================================================


@pytest.fixture
def pending_log(db):
    return EmailLogFactory()


@pytest.fixture
def sent_log(db):
    """Sent email the provider can report on."""
    return EmailLogFactory(
        status=DeliveryStatus.SENT,
        provider="smtp",
        provider_message_id="<abc123@mail.example.com>",
    )


# =============================================================================
# Webhook Helpers
# =============================================================================


@pytest.fixture
def signed_payload():
    """JSON body and X-Email-Signature for the delivery webhook."""

    def _sign(payload: dict, secret: str = "email-webhook-secret") -> tuple[bytes, str]:
        body = json.dumps(payload).encode()
        signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        return body, signature

    return _sign
