"""
Tests for the email delivery task.

Tests cover:
- Rendering and sending through the email backend
- Permanent and exhausted transient failures
- Skipping logs that are no longer pending
"""

import smtplib

from notifications.models import DeliveryStatus, EmailLog, EmailType
from notifications.tasks import build_message, send_escrow_email
from notifications.tests.factories import EmailLogFactory


def reload(email_log) -> EmailLog:
    return EmailLog.objects.get(pk=email_log.pk)


class TestBuildMessage:
    def test_renders_templates(self, pending_log):
        message = build_message(pending_log)

        assert message.subject == "You earned 15.00 EUR for your response"
        assert "15.00 EUR" in message.body
        assert message.to == [pending_log.recipient_email]
        assert message.from_email == "noreply@example.com"
        assert message.extra_headers["Message-ID"].endswith("@mail.example.com>")
        assert message.extra_headers["X-Escrow-Message-Id"] == str(pending_log.message_id)
        html, mimetype = message.alternatives[0]
        assert mimetype == "text/html"
        assert "15.00 EUR" in html

    def test_response_forward_replies_to_responder(self, db):
        email_log = EmailLogFactory(
            email_type=EmailType.RESPONSE_FORWARD,
            context={
                "message_id": "m-1",
                "response_from": "recipient@example.com",
                "response_subject": "Re: <your> question",
                "response_text": "Use a & b.",
            },
        )

        message = build_message(email_log)

        assert message.reply_to == ["recipient@example.com"]
        assert message.subject == "Re: <your> question"
        assert "Use a & b." in message.body


class TestSendEscrowEmail:
    def test_sends_and_marks_sent(self, pending_log, mailoutbox, settings):
        settings.EMAIL_PROVIDER = "smtp"

        assert send_escrow_email(str(pending_log.id)) is True

        assert len(mailoutbox) == 1
        email_log = reload(pending_log)
        assert email_log.status == DeliveryStatus.SENT
        assert email_log.provider == "smtp"
        assert email_log.sent_at is not None
        assert email_log.provider_message_id == mailoutbox[0].extra_headers["Message-ID"]
        assert email_log.subject == mailoutbox[0].subject

    def test_non_pending_log_skipped(self, sent_log, mailoutbox):
        assert send_escrow_email(str(sent_log.id)) is True
        assert mailoutbox == []

    def test_missing_log_skipped(self, db, mailoutbox):
        assert send_escrow_email("00000000-0000-0000-0000-000000000000") is True
        assert mailoutbox == []

    def test_refused_recipient_fails_permanently(self, pending_log, mocker):
        refused = smtplib.SMTPRecipientsRefused(
            {pending_log.recipient_email: (550, b"No such user")}
        )
        mocker.patch(
            "django.core.mail.EmailMultiAlternatives.send", side_effect=refused
        )

        assert send_escrow_email(str(pending_log.id)) is False

        email_log = reload(pending_log)
        assert email_log.status == DeliveryStatus.FAILED
        assert email_log.failure_reason.startswith("recipient_refused:")

    def test_transient_failure_marks_failed_once_retries_exhausted(
        self, pending_log, mocker
    ):
        mocker.patch(
            "django.core.mail.EmailMultiAlternatives.send",
            side_effect=ConnectionError("smtp down"),
        )
        mocker.patch.object(send_escrow_email, "max_retries", 0)

        assert send_escrow_email(str(pending_log.id)) is False

        email_log = reload(pending_log)
        assert email_log.status == DeliveryStatus.FAILED
        assert email_log.failure_reason == "smtp down"
