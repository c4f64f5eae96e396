"""
Notification delivery models.

EmailLog is the single record of every escrow email: one row per
(outcome, recipient address), created before the email is queued and
updated by the send task and the delivery-status webhook.

Design Decisions:
    - escrow_id / message_id are plain UUIDs, not foreign keys, so this app
      never imports escrow models and a log survives escrow cleanup
    - A deadline reminder is unique per message (partial unique constraint);
      the insert is the idempotency check for the reminder sweep
    - provider_message_id is unique when set, for webhook correlation

Usage:
    from notifications.models import EmailLog, EmailType

    already_reminded = EmailLog.objects.filter(
        message_id=escrow.message_id,
        email_type=EmailType.DEADLINE_REMINDER,
    ).exists()
"""

from __future__ import annotations

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone

from core.models import BaseModel


# =============================================================================
# Enums
# =============================================================================


class EmailType(models.TextChoices):
    """Kinds of escrow emails."""

    RESPONSE_FORWARD = "response_forward", "Response Forward"
    PAYMENT_RELEASED = "payment_released", "Payment Released"
    REFUND = "refund", "Refund"
    TIMEOUT = "timeout", "Timeout"
    DEADLINE_REMINDER = "deadline_reminder", "Deadline Reminder"
    TRANSFER_FAILED = "transfer_failed", "Transfer Failed"


class DeliveryStatus(models.TextChoices):
    """
    Status of an email.

    State Flow:
        PENDING -> SENT -> DELIVERED -> OPENED -> CLICKED (via webhook)
        PENDING -> FAILED (send task error)
        SENT -> BOUNCED (via webhook)
    """

    PENDING = "pending", "Pending"
    SENT = "sent", "Sent"
    DELIVERED = "delivered", "Delivered"
    OPENED = "opened", "Opened"
    CLICKED = "clicked", "Clicked"
    BOUNCED = "bounced", "Bounced"
    FAILED = "failed", "Failed"


# Webhook events only move an email forward along this order
STATUS_PROGRESSION = {
    DeliveryStatus.PENDING: 0,
    DeliveryStatus.SENT: 1,
    DeliveryStatus.DELIVERED: 2,
    DeliveryStatus.OPENED: 3,
    DeliveryStatus.CLICKED: 4,
}

# No delivery event moves a log out of these, except a bounce
TERMINAL_STATUSES = frozenset({DeliveryStatus.BOUNCED, DeliveryStatus.FAILED})


class EmailLog(BaseModel):
    """
    One escrow email and its delivery history.

    Fields:
        email_type: EmailType
        message_id / escrow_id: What the email is about
        recipient_email: Destination address
        sender_email: Address of the paying sender, for correlation
        subject: Rendered subject line
        provider: Delivery backend name
        provider_message_id: Message-ID assigned at send time
        status: DeliveryStatus
        context: Template context the email is rendered from
        failure_reason: Error text for failed/bounced emails
    """

    email_type = models.CharField(
        max_length=30,
        choices=EmailType.choices,
        db_index=True,
    )

    message_id = models.UUIDField(db_index=True)
    escrow_id = models.UUIDField(null=True, blank=True, db_index=True)

    recipient_email = models.EmailField()
    sender_email = models.EmailField(blank=True, default="")
    subject = models.CharField(max_length=255, blank=True, default="")

    provider = models.CharField(max_length=50, blank=True, default="")
    provider_message_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Message-ID from the provider for webhook lookup",
    )

    status = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
        db_index=True,
    )

    # Timestamps
    sent_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    opened_at = models.DateTimeField(null=True, blank=True)
    clicked_at = models.DateTimeField(null=True, blank=True)
    bounced_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(blank=True, default="")

    context = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "notifications_email_log"
        ordering = ["-created_at"]
        verbose_name = "email log"
        verbose_name_plural = "email logs"
        constraints = [
            models.UniqueConstraint(
                fields=["message_id", "email_type"],
                condition=models.Q(email_type="deadline_reminder"),
                name="unique_deadline_reminder_per_message",
            ),
            models.UniqueConstraint(
                fields=["provider_message_id"],
                condition=models.Q(provider_message_id__isnull=False),
                name="unique_email_provider_message_id",
            ),
        ]
        indexes = [
            models.Index(
                fields=["status", "-created_at"],
                name="email_log_status_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"EmailLog({self.email_type}, {self.recipient_email}, {self.status})"

    def mark_sent(self, provider: str, provider_message_id: str, subject: str = "") -> None:
        self.status = DeliveryStatus.SENT
        self.subject = subject[:255]
        self.sent_at = timezone.now()
        self.provider = provider
        self.provider_message_id = provider_message_id
        self.save(
            update_fields=[
                "status",
                "subject",
                "sent_at",
                "provider",
                "provider_message_id",
                "updated_at",
            ]
        )

    def mark_failed(self, reason: str) -> None:
        self.status = DeliveryStatus.FAILED
        self.failure_reason = reason
        self.save(update_fields=["status", "failure_reason", "updated_at"])
