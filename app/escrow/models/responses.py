"""
Response models.

- MessageResponse: whether a message has been answered (write-once true)
- EmailResponseTracking: one row per processed inbound reply email; its
  unique inbound_email_id rejects duplicate webhook deliveries
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import DetectionMethod

CONTENT_PREVIEW_LENGTH = 500


class MessageResponse(UUIDPrimaryKeyMixin, BaseModel):
    """
    Response state of a paid message.

    Created alongside its escrow. Only the Settlement Engine flips
    has_response, and once true it is never reverted.
    """

    message_id = models.UUIDField(
        unique=True,
        db_index=True,
        help_text="Message this response state belongs to",
    )

    escrow = models.OneToOneField(
        "escrow.EscrowTransaction",
        on_delete=models.CASCADE,
        related_name="message_response",
    )

    has_response = models.BooleanField(
        default=False,
        db_index=True,
        help_text="True once a timely response released the escrow",
    )

    response_received_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Message Response"
        verbose_name_plural = "Message Responses"

    def __str__(self) -> str:
        return f"MessageResponse({self.message_id}, has_response={self.has_response})"


class EmailResponseTracking(UUIDPrimaryKeyMixin, BaseModel):
    """
    Audit and idempotency record for a processed inbound reply.

    Inserted exactly once per provider message id, before settlement is
    attempted, and never updated afterwards. Rows whose escrow is still
    held mark responses that were recorded but never settled; the
    reconciliation job picks those up.

    Fields:
        inbound_email_id: Provider MessageID (unique)
        escrow / message_id: What the reply answered
        within_deadline: Arrived at or before expires_at
        grace_period_used: Arrived during the grace window
        response_from / response_subject: Envelope data
        response_received_at: When the webhook was processed
        detection_method: How the reply was matched
        content_preview: First 500 characters of the body
        email_headers: Raw headers as delivered by the provider
    """

    inbound_email_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Email provider MessageID - unique constraint for idempotency",
    )

    escrow = models.ForeignKey(
        "escrow.EscrowTransaction",
        on_delete=models.CASCADE,
        related_name="response_trackings",
    )

    message_id = models.UUIDField(db_index=True)

    within_deadline = models.BooleanField()
    grace_period_used = models.BooleanField()

    response_from = models.CharField(max_length=320, blank=True, default="")
    response_subject = models.CharField(max_length=998, blank=True, default="")
    response_received_at = models.DateTimeField()

    detection_method = models.CharField(
        max_length=20,
        choices=DetectionMethod.choices,
        default=DetectionMethod.REPLY_ADDRESS,
    )

    content_preview = models.TextField(blank=True, default="")
    email_headers = models.JSONField(default=list, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Email Response Tracking"
        verbose_name_plural = "Email Response Tracking"

    def __str__(self) -> str:
        return f"EmailResponseTracking({self.inbound_email_id}, {self.message_id})"
