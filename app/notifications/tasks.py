"""
Celery tasks for escrow email delivery.

Tasks:
    send_escrow_email: Render and send one EmailLog

Design:
    - Tasks receive email_log_id (UUID string) instead of model instances
    - Re-running on a non-PENDING log is a no-op
    - Permanent vs transient errors are classified for retry logic
    - A failure marks the log failed; escrow state is never touched

Usage:
    from notifications.tasks import send_escrow_email

    # Queued by NotificationDispatcher after the settlement commits
    send_escrow_email.delay(email_log_id="123")
"""

from __future__ import annotations

import logging
import smtplib
from email.utils import make_msgid

from celery import shared_task
from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

from notifications.models import DeliveryStatus, EmailLog, EmailType

logger = logging.getLogger(__name__)


PERMANENT_SMTP_ERRORS = (
    smtplib.SMTPRecipientsRefused,
    smtplib.SMTPSenderRefused,
)


class DeliveryError(Exception):
    """Base exception for delivery failures."""

    def __init__(self, message: str, code: str, is_permanent: bool = False):
        super().__init__(message)
        self.code = code
        self.is_permanent = is_permanent


def _get_email_log(email_log_id: str) -> EmailLog | None:
    """
    Fetch the log to send.

    Returns None if not found or not in PENDING status.
    """
    try:
        email_log = EmailLog.objects.get(id=email_log_id)
    except EmailLog.DoesNotExist:
        logger.warning(f"Email log {email_log_id} not found")
        return None

    if email_log.status != DeliveryStatus.PENDING:
        logger.info(f"Email log {email_log_id} status is {email_log.status}, skipping")
        return None

    return email_log


def build_message(email_log: EmailLog) -> EmailMultiAlternatives:
    """Render an EmailLog into a message ready to send."""
    context = {**email_log.context, "email_type": email_log.email_type}
    template_base = f"notifications/email/{email_log.email_type}"

    subject = render_to_string(f"{template_base}_subject.txt", context)
    subject = " ".join(subject.split())
    body = render_to_string(f"{template_base}.txt", context)
    html_body = render_to_string(
        "notifications/email/base.html",
        {**context, "subject": subject, "body": body},
    )

    headers = {
        "Message-ID": make_msgid(domain=settings.EMAIL_MESSAGE_ID_DOMAIN),
        "X-Escrow-Message-Id": str(email_log.message_id),
    }
    reply_to = None
    if email_log.email_type == EmailType.RESPONSE_FORWARD:
        responder = context.get("response_from")
        reply_to = [responder] if responder else None

    message = EmailMultiAlternatives(
        subject=subject,
        body=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[email_log.recipient_email],
        headers=headers,
        reply_to=reply_to,
    )
    message.attach_alternative(html_body, "text/html")
    return message


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def send_escrow_email(self, email_log_id: str) -> bool:
    """
    Send one escrow email.

    Flow:
        1. Fetch the EmailLog, skip if status != PENDING
        2. Render subject, text and HTML bodies
        3. Send through the configured email backend
        4. On success: status=SENT, provider_message_id=Message-ID
        5. On permanent error: status=FAILED, no retry
        6. On transient error: raise for retry, FAILED once retries run out

    Args:
        email_log_id: UUID string of the EmailLog

    Returns:
        True if sent or skipped, False on permanent failure
    """
    email_log = _get_email_log(email_log_id)
    if email_log is None:
        return True

    logger.info(
        f"Sending {email_log.email_type} email for log {email_log_id}",
        extra={"email_log_id": email_log_id, "message_id": str(email_log.message_id)},
    )

    try:
        message = build_message(email_log)
        try:
            message.send(fail_silently=False)
        except PERMANENT_SMTP_ERRORS as e:
            raise DeliveryError(str(e), code="recipient_refused", is_permanent=True)

        provider_message_id = message.extra_headers["Message-ID"]
        email_log.mark_sent(settings.EMAIL_PROVIDER, provider_message_id, message.subject)

        logger.info(
            f"Email sent for log {email_log_id}, provider_message_id={provider_message_id}"
        )
        return True

    except DeliveryError as e:
        email_log.mark_failed(f"{e.code}: {e}")
        logger.warning(
            f"Email permanently failed for log {email_log_id}: {e.code} - {e}"
        )
        return False

    except Exception as e:
        if self.request.retries >= self.max_retries:
            email_log.mark_failed(str(e))
            logger.error(
                f"Email failed for log {email_log_id} after {self.request.retries} retries: {e}"
            )
            return False
        logger.warning(
            f"Email transiently failed for log {email_log_id}: {e}, will retry"
        )
        raise
