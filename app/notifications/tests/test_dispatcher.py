"""
Tests for NotificationDispatcher.

Tests cover:
- Outcome to EmailLog mapping
- One deadline reminder per message
- Delivery queued only after commit
- Failures never propagate to the caller
"""

import pytest

from notifications.dispatcher import NotificationDispatcher, OutcomeType
from notifications.models import DeliveryStatus, EmailLog, EmailType
from notifications.tests.conftest import make_outcome


@pytest.fixture
def mock_send(mocker):
    return mocker.patch("notifications.tasks.send_escrow_email.delay")


class TestOutcomeMapping:
    def test_released_emails_recipient(self, db, released_outcome, mock_send):
        logs = NotificationDispatcher.notify(released_outcome)

        assert [log.email_type for log in logs] == [EmailType.PAYMENT_RELEASED]
        assert logs[0].recipient_email == "recipient@example.com"
        assert logs[0].status == DeliveryStatus.PENDING
        assert logs[0].context["earnings"] == "15.00"
        assert logs[0].context["amount"] == "20.00"
        assert logs[0].context["currency"] == "EUR"

    def test_refunded_emails_both_parties(self, db, refunded_outcome, mock_send):
        logs = NotificationDispatcher.notify(refunded_outcome)

        by_type = {log.email_type: log.recipient_email for log in logs}
        assert by_type == {
            EmailType.REFUND: "sender@example.com",
            EmailType.TIMEOUT: "recipient@example.com",
        }

    @pytest.mark.parametrize(
        "outcome_type,email_type,address",
        [
            (OutcomeType.REMINDER, EmailType.DEADLINE_REMINDER, "recipient@example.com"),
            (OutcomeType.TRANSFER_FAILED, EmailType.TRANSFER_FAILED, "recipient@example.com"),
            (OutcomeType.RESPONSE_FORWARD, EmailType.RESPONSE_FORWARD, "sender@example.com"),
        ],
    )
    def test_single_email_outcomes(self, db, mock_send, outcome_type, email_type, address):
        logs = NotificationDispatcher.notify(make_outcome(outcome_type))

        assert len(logs) == 1
        assert logs[0].email_type == email_type
        assert logs[0].recipient_email == address

    def test_missing_address_skipped(self, db, mock_send):
        outcome = make_outcome(OutcomeType.REFUNDED)
        outcome.sender_email = ""

        logs = NotificationDispatcher.notify(outcome)

        assert [log.email_type for log in logs] == [EmailType.TIMEOUT]

    def test_unknown_outcome_type(self, db, mock_send):
        outcome = make_outcome("exploded")

        assert NotificationDispatcher.notify(outcome) == []
        assert not EmailLog.objects.exists()


class TestReminderIdempotency:
    def test_one_reminder_per_message(self, db, reminder_outcome, mock_send):
        first = NotificationDispatcher.notify(reminder_outcome)
        second = NotificationDispatcher.notify(reminder_outcome)

        assert len(first) == 1
        assert second == []
        assert EmailLog.objects.filter(email_type=EmailType.DEADLINE_REMINDER).count() == 1

    def test_other_outcomes_not_deduplicated(self, db, released_outcome, mock_send):
        NotificationDispatcher.notify(released_outcome)
        NotificationDispatcher.notify(released_outcome)

        assert EmailLog.objects.count() == 2


class TestQueueing:
    def test_delivery_queued_on_commit(
        self, db, released_outcome, mock_send, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            logs = NotificationDispatcher.notify(released_outcome)

        mock_send.assert_not_called()
        assert len(callbacks) == 1

        callbacks[0]()
        mock_send.assert_called_once_with(str(logs[0].id))

    def test_sends_email_after_commit(
        self, db, refunded_outcome, mailoutbox, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            NotificationDispatcher.notify(refunded_outcome)

        assert sorted(mail.to[0] for mail in mailoutbox) == [
            "recipient@example.com",
            "sender@example.com",
        ]
        assert set(EmailLog.objects.values_list("status", flat=True)) == {DeliveryStatus.SENT}

    def test_storage_error_is_swallowed(self, db, released_outcome, mock_send, mocker):
        mocker.patch.object(
            NotificationDispatcher, "_create_log", side_effect=RuntimeError("db gone")
        )

        assert NotificationDispatcher.notify(released_outcome) == []
        mock_send.assert_not_called()
