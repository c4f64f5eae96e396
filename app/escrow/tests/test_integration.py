"""
End-to-end tests for the paid message lifecycle.

Each test drives an escrow from creation to a terminal state through the
public entry points (ledger, inbound webhook, sweeps, Stripe webhook task)
and checks the money movement and the emails both parties receive.
Stripe is mocked; Celery runs eagerly.
"""

import base64
import json
import uuid
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone

from django.urls import reverse
from freezegun import freeze_time

from escrow.addresses import build_reply_address
from escrow.ledger import EscrowLedger
from escrow.models import EscrowTransaction, EscrowTransition
from escrow.state_machines import DetectionOutcome, EscrowStatus
from escrow.tasks import process_webhook_event
from escrow.tests.factories import PayoutAccountFactory, WebhookEventFactory, stripe_event
from escrow.workers import run_deadline_sweep
from notifications.models import DeliveryStatus, EmailLog, EmailType

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=dt_timezone.utc)

BASIC_AUTH = "Basic " + base64.b64encode(b"inbound:inbound-secret").decode()


def reply(client, escrow, inbound_id="inbound-1"):
    payload = {
        "MessageID": inbound_id,
        "From": escrow.recipient_user.email,
        "To": build_reply_address(escrow.message_id),
        "Subject": "Re: your question",
        "TextBody": "Here is my answer.",
    }
    return client.post(
        reverse("escrow:inbound-email-webhook"),
        data=json.dumps(payload),
        content_type="application/json",
        HTTP_AUTHORIZATION=BASIC_AUTH,
    )


def sent_emails(mailoutbox) -> dict[str, str]:
    """Map each recipient address to the subject it received."""
    return {mail.to[0]: mail.subject for mail in mailoutbox}


class TestAnsweredInTime:
    def test_reply_releases_and_notifies(
        self, client, recipient, stripe_adapter, mailoutbox, django_capture_on_commit_callbacks
    ):
        with freeze_time(T0):
            escrow = EscrowLedger.create_escrow(
                message_id=uuid.uuid4(),
                amount="20.00",
                recipient_user=recipient,
                sender_email="sender@example.com",
                stripe_payment_intent_id="pi_test_123",
            )

        with freeze_time(T0 + timedelta(hours=5)):
            with django_capture_on_commit_callbacks(execute=True):
                response = reply(client, escrow)

        assert response.json()["outcome"] == DetectionOutcome.RELEASED

        escrow = EscrowTransaction.objects.get(pk=escrow.pk)
        assert escrow.status == EscrowStatus.RELEASED
        assert escrow.stripe_transfer_id == "tr_test_123"
        assert escrow.message_response.has_response
        assert stripe_adapter.create_transfer.call_args.kwargs["amount_cents"] == 1500

        emails = sent_emails(mailoutbox)
        assert emails[recipient.email] == "You earned 15.00 EUR for your response"
        assert emails["sender@example.com"] == "Re: your question"
        assert set(EmailLog.objects.values_list("status", flat=True)) == {DeliveryStatus.SENT}

        # Nothing is left for the sweep
        with freeze_time(T0 + timedelta(hours=72)):
            assert run_deadline_sweep()["refunded"] == 0


class TestNeverAnswered:
    def test_reminder_then_refund(
        self, recipient, stripe_adapter, mailoutbox, django_capture_on_commit_callbacks
    ):
        with freeze_time(T0):
            escrow = EscrowLedger.create_escrow(
                message_id=uuid.uuid4(),
                amount="20.00",
                recipient_user=recipient,
                sender_email="sender@example.com",
                stripe_payment_intent_id="pi_test_123",
            )

        with freeze_time(T0 + timedelta(hours=30)):
            with django_capture_on_commit_callbacks(execute=True):
                assert run_deadline_sweep() == {"refunded": 0, "reminded": 1, "skipped": 0}

        with freeze_time(T0 + timedelta(hours=48, minutes=15)):
            assert run_deadline_sweep()["refunded"] == 0

        with freeze_time(T0 + timedelta(hours=48, minutes=15, seconds=1)):
            with django_capture_on_commit_callbacks(execute=True):
                assert run_deadline_sweep()["refunded"] == 1

        escrow = EscrowTransaction.objects.get(pk=escrow.pk)
        assert escrow.status == EscrowStatus.REFUNDED
        assert escrow.stripe_refund_id == "pi_test_123"
        stripe_adapter.cancel_payment_intent.assert_called_once()
        stripe_adapter.create_transfer.assert_not_called()

        email_types = sorted(EmailLog.objects.values_list("email_type", flat=True))
        assert email_types == sorted(
            [EmailType.DEADLINE_REMINDER, EmailType.REFUND, EmailType.TIMEOUT]
        )
        assert len(mailoutbox) == 3

    def test_late_reply_does_not_release(self, client, recipient, stripe_adapter):
        with freeze_time(T0):
            escrow = EscrowLedger.create_escrow(
                message_id=uuid.uuid4(),
                amount="20.00",
                recipient_user=recipient,
                sender_email="sender@example.com",
                stripe_payment_intent_id="pi_test_123",
            )

        with freeze_time(T0 + timedelta(hours=49)):
            response = reply(client, escrow)
            run_deadline_sweep()

        assert response.json()["outcome"] == DetectionOutcome.LATE
        assert EscrowTransaction.objects.get(pk=escrow.pk).status == EscrowStatus.REFUNDED


class TestRecipientWithoutPayoutAccount:
    def test_reply_waits_for_onboarding(
        self,
        client,
        recipient_without_account,
        stripe_adapter,
        django_capture_on_commit_callbacks,
    ):
        account = PayoutAccountFactory(
            user=recipient_without_account,
            details_submitted=False,
            charges_enabled=False,
            payouts_enabled=False,
            onboarding_completed_at=None,
        )
        with freeze_time(T0):
            escrow = EscrowLedger.create_escrow(
                message_id=uuid.uuid4(),
                amount="20.00",
                recipient_user=recipient_without_account,
                sender_email="sender@example.com",
                stripe_payment_intent_id="pi_test_123",
            )
        assert escrow.status == EscrowStatus.PENDING_USER_SETUP

        with freeze_time(T0 + timedelta(hours=2)):
            response = reply(client, escrow)
        assert response.json()["reason"] == "awaiting_payout_setup"

        event = WebhookEventFactory(
            event_type="account.updated",
            payload=stripe_event(
                "account.updated",
                {
                    "id": account.stripe_account_id,
                    "details_submitted": True,
                    "charges_enabled": True,
                    "payouts_enabled": True,
                },
            ),
        )
        with freeze_time(T0 + timedelta(hours=60)):
            with django_capture_on_commit_callbacks(execute=True):
                assert process_webhook_event(str(event.id))["status"] == "processed"

        escrow = EscrowTransaction.objects.get(pk=escrow.pk)
        assert escrow.status == EscrowStatus.RELEASED
        transitions = EscrowTransition.objects.filter(escrow=escrow)
        assert set(transitions.values_list("to_status", flat=True)) == {
            EscrowStatus.HELD,
            EscrowStatus.RELEASED,
        }
        stripe_adapter.create_transfer.assert_called_once()
