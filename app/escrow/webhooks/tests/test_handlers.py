"""
Tests for Stripe webhook handlers.

Tests cover:
- Handler registry and dispatch
- payment_intent.payment_failed
- transfer.failed / transfer.reversed
- account.updated and activation of pending escrows
"""

from decimal import Decimal

import pytest

from escrow.models import AdminAction, EscrowTransaction, PayoutAccount
from escrow.state_machines import AdminActionType, EscrowStatus
from escrow.tests.factories import EscrowTransactionFactory, PayoutAccountFactory
from escrow.webhooks.handlers import WEBHOOK_HANDLERS, dispatch_webhook


def status_of(escrow) -> str:
    return EscrowTransaction.objects.get(pk=escrow.pk).status


# =============================================================================
# Registry
# =============================================================================


class TestDispatch:
    def test_handlers_registered(self):
        for event_type in (
            "payment_intent.succeeded",
            "payment_intent.payment_failed",
            "transfer.created",
            "transfer.failed",
            "transfer.reversed",
            "account.updated",
        ):
            assert event_type in WEBHOOK_HANDLERS

    def test_unknown_event_type_succeeds(self, make_webhook_event):
        event = make_webhook_event("customer.created", {"id": "cus_123"})

        result = dispatch_webhook(event)

        assert result.success
        assert result.data is None

    def test_informational_events_succeed(self, make_webhook_event):
        succeeded = make_webhook_event("payment_intent.succeeded", {"id": "pi_123"})
        created = make_webhook_event(
            "transfer.created", {"id": "tr_123", "metadata": {"escrow_id": "x"}}
        )

        assert dispatch_webhook(succeeded).success
        assert dispatch_webhook(created).success


# =============================================================================
# Payment Failed
# =============================================================================


class TestPaymentFailed:
    def test_marks_escrow_payment_failed(self, make_webhook_event, held_escrow):
        event = make_webhook_event(
            "payment_intent.payment_failed",
            {
                "id": held_escrow.stripe_payment_intent_id,
                "last_payment_error": {"message": "Your card was declined."},
            },
        )

        result = dispatch_webhook(event)

        assert result.success
        escrow = EscrowTransaction.objects.get(pk=held_escrow.pk)
        assert escrow.status == EscrowStatus.PAYMENT_FAILED
        assert escrow.failure_reason == "Your card was declined."
        assert AdminAction.objects.filter(
            action_type=AdminActionType.PAYMENT_FAILED, escrow=held_escrow
        ).exists()

    def test_unknown_payment_intent_ignored(self, make_webhook_event):
        event = make_webhook_event("payment_intent.payment_failed", {"id": "pi_unknown"})

        result = dispatch_webhook(event)

        assert result.success

    def test_already_refunded_is_conflict_success(self, make_webhook_event, recipient):
        escrow = EscrowTransactionFactory(recipient_user=recipient, status=EscrowStatus.REFUNDED)
        event = make_webhook_event(
            "payment_intent.payment_failed", {"id": escrow.stripe_payment_intent_id}
        )

        result = dispatch_webhook(event)

        assert result.success
        assert status_of(escrow) == EscrowStatus.REFUNDED

    def test_missing_object_id_fails(self, make_webhook_event):
        event = make_webhook_event("payment_intent.payment_failed", {})

        result = dispatch_webhook(event)

        assert not result.success
        assert result.error_code == "INVALID_WEBHOOK_PAYLOAD"


# =============================================================================
# Transfer Failed
# =============================================================================


@pytest.fixture
def released_escrow(recipient):
    return EscrowTransactionFactory(
        recipient_user=recipient,
        status=EscrowStatus.RELEASED,
        stripe_transfer_id="tr_test_failed",
    )


class TestTransferFailed:
    def test_found_by_transfer_id(self, make_webhook_event, released_escrow):
        event = make_webhook_event(
            "transfer.failed",
            {"id": "tr_test_failed", "failure_message": "Account closed"},
        )

        result = dispatch_webhook(event)

        assert result.success
        escrow = EscrowTransaction.objects.get(pk=released_escrow.pk)
        assert escrow.status == EscrowStatus.TRANSFER_FAILED
        assert escrow.failure_reason == "Account closed"
        assert escrow.metadata["transfer_failure_retryable"] is False

    def test_found_by_metadata(self, make_webhook_event, released_escrow):
        event = make_webhook_event(
            "transfer.reversed",
            {"id": "tr_other", "metadata": {"escrow_id": str(released_escrow.id)}},
        )

        result = dispatch_webhook(event)

        assert result.success
        escrow = EscrowTransaction.objects.get(pk=released_escrow.pk)
        assert escrow.status == EscrowStatus.TRANSFER_FAILED
        assert escrow.failure_reason == "Transfer reversed"

    def test_raises_admin_action(self, make_webhook_event, released_escrow):
        event = make_webhook_event("transfer.failed", {"id": "tr_test_failed"})

        dispatch_webhook(event)

        action = AdminAction.objects.get(action_type=AdminActionType.TRANSFER_FAILED)
        assert action.escrow_id == released_escrow.id
        assert action.requires_attention

    def test_repeat_is_noop(self, make_webhook_event, released_escrow):
        event = make_webhook_event("transfer.failed", {"id": "tr_test_failed"})

        dispatch_webhook(event)
        dispatch_webhook(event)

        assert AdminAction.objects.filter(action_type=AdminActionType.TRANSFER_FAILED).count() == 1

    @pytest.mark.parametrize(
        "data_object",
        [
            {"id": "tr_unknown"},
            {"id": "tr_unknown", "metadata": {"escrow_id": "not-a-uuid"}},
        ],
    )
    def test_unknown_escrow_fails(self, make_webhook_event, data_object):
        event = make_webhook_event("transfer.failed", data_object)

        result = dispatch_webhook(event)

        assert not result.success
        assert result.error_code == "ESCROW_NOT_FOUND"


# =============================================================================
# Account Updated
# =============================================================================


def account_object(account_id: str, ready: bool = True) -> dict:
    return {
        "id": account_id,
        "details_submitted": ready,
        "charges_enabled": ready,
        "payouts_enabled": ready,
        "requirements": {"currently_due": [] if ready else ["external_account"]},
    }


class TestAccountUpdated:
    @pytest.fixture
    def onboarding_account(self, recipient_without_account):
        return PayoutAccountFactory(
            user=recipient_without_account,
            details_submitted=False,
            charges_enabled=False,
            payouts_enabled=False,
            onboarding_completed_at=None,
        )

    def test_syncs_flags(self, make_webhook_event, onboarding_account):
        event = make_webhook_event(
            "account.updated", account_object(onboarding_account.stripe_account_id)
        )

        result = dispatch_webhook(event)

        assert result.success
        account = PayoutAccount.objects.get(pk=onboarding_account.pk)
        assert account.is_ready_for_payouts
        assert account.onboarding_completed_at is not None
        assert account.metadata["currently_due"] == []

    def test_not_ready_records_requirements(self, make_webhook_event, onboarding_account):
        event = make_webhook_event(
            "account.updated",
            account_object(onboarding_account.stripe_account_id, ready=False),
        )

        dispatch_webhook(event)

        account = PayoutAccount.objects.get(pk=onboarding_account.pk)
        assert not account.is_ready_for_payouts
        assert account.onboarding_completed_at is None
        assert account.metadata["currently_due"] == ["external_account"]

    def test_activates_pending_escrows_on_commit(
        self,
        make_webhook_event,
        onboarding_account,
        pending_escrow,
        django_capture_on_commit_callbacks,
    ):
        event = make_webhook_event(
            "account.updated", account_object(onboarding_account.stripe_account_id)
        )

        with django_capture_on_commit_callbacks(execute=True):
            dispatch_webhook(event)

        escrow = EscrowTransaction.objects.get(pk=pending_escrow.pk)
        assert escrow.status == EscrowStatus.HELD
        assert escrow.amount == Decimal("20.00")

    def test_pending_untouched_until_ready(
        self,
        make_webhook_event,
        onboarding_account,
        pending_escrow,
        django_capture_on_commit_callbacks,
    ):
        event = make_webhook_event(
            "account.updated",
            account_object(onboarding_account.stripe_account_id, ready=False),
        )

        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            dispatch_webhook(event)

        assert callbacks == []
        assert status_of(pending_escrow) == EscrowStatus.PENDING_USER_SETUP

    def test_unknown_account_succeeds(self, make_webhook_event):
        event = make_webhook_event("account.updated", account_object("acct_external"))

        result = dispatch_webhook(event)

        assert result.success
        assert result.data is None
