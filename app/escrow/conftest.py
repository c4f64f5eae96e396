"""
Pytest fixtures for escrow tests.

Stripe is never called: the `stripe_adapter` fixture replaces the adapter
used by the Settlement Engine with a mock that succeeds by default.

Usage:
    def test_release(held_escrow, stripe_adapter):
        SettlementEngine.release(held_escrow.id)
        stripe_adapter.create_transfer.assert_called_once()
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.utils import timezone

from escrow.adapters import RefundResult, TransferResult
from escrow.state_machines import EscrowStatus
from escrow.tests.factories import (
    EscrowTransactionFactory,
    PayoutAccountFactory,
    UserFactory,
    make_payment_intent,
)


# =============================================================================
# Users and Accounts
# =============================================================================


@pytest.fixture
def recipient(db):
    """Recipient with a payout account ready for transfers."""
    user = UserFactory()
    PayoutAccountFactory(user=user)
    return user


@pytest.fixture
def recipient_without_account(db):
    return UserFactory()


# =============================================================================
# Escrows
# =============================================================================


@pytest.fixture
def held_escrow(recipient):
    return EscrowTransactionFactory(recipient_user=recipient)


@pytest.fixture
def expired_escrow(recipient):
    """Held escrow whose deadline and grace period passed an hour ago."""
    return EscrowTransactionFactory(
        recipient_user=recipient,
        expires_at=timezone.now() - timedelta(hours=1, minutes=15),
    )


@pytest.fixture
def pending_escrow(recipient_without_account):
    return EscrowTransactionFactory(
        recipient_user=recipient_without_account,
        status=EscrowStatus.PENDING_USER_SETUP,
    )


# =============================================================================
# Stripe
# =============================================================================


@pytest.fixture
def stripe_adapter():
    """StripeAdapter as seen by the Settlement Engine, succeeding by default."""
    with patch("escrow.settlement.StripeAdapter") as adapter:
        adapter.retrieve_payment_intent.return_value = make_payment_intent()
        adapter.capture_payment_intent.return_value = make_payment_intent("succeeded")
        adapter.cancel_payment_intent.return_value = make_payment_intent("canceled")
        adapter.create_transfer.return_value = TransferResult(
            id="tr_test_123",
            amount_cents=1500,
            currency="eur",
            destination_account="acct_test",
        )
        adapter.create_refund.return_value = RefundResult(
            id="re_test_123",
            amount_cents=2000,
            currency="eur",
            status="succeeded",
            payment_intent_id="pi_test_123",
        )
        yield adapter


@pytest.fixture
def dispatcher():
    """Capture notifications instead of creating EmailLog rows."""
    with patch("escrow.settlement.NotificationDispatcher") as mock:
        mock.notify = MagicMock(return_value=[])
        yield mock
