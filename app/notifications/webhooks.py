"""
Webhook endpoint for email delivery callbacks.

Endpoints:
    POST /api/v1/notifications/webhooks/email/ - Email delivery callback

Security:
    - Requires HMAC-SHA256 signature verification (X-Email-Signature)
    - Invalid signatures return 401 Unauthorized
    - A missing EMAIL_WEBHOOK_SECRET returns 500 before anything is read

Delivery status is informational only: nothing here affects escrow state.
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.utils import timezone
from django.utils.decorators import method_decorator

from rest_framework import serializers, status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import extend_schema, OpenApiResponse

from core.decorators import requires_settings
from core.helpers import verify_hmac_signature
from notifications.models import (
    STATUS_PROGRESSION,
    TERMINAL_STATUSES,
    DeliveryStatus,
    EmailLog,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Webhook Serializers
# =============================================================================


class EmailWebhookRequestSerializer(serializers.Serializer):
    """Request body for email delivery webhook."""

    message_id = serializers.CharField(help_text="Provider message ID for correlation")
    event = serializers.ChoiceField(
        choices=["delivered", "opened", "clicked", "bounced", "complained", "dropped"],
        help_text="Email delivery event type",
    )
    error_code = serializers.CharField(
        required=False,
        allow_null=True,
        allow_blank=True,
        help_text="Error code for bounce/drop events",
    )
    error_message = serializers.CharField(
        required=False,
        allow_null=True,
        allow_blank=True,
        help_text="Error message for failed events",
    )


class WebhookSuccessResponseSerializer(serializers.Serializer):
    """Success response from webhooks."""

    success = serializers.BooleanField(default=True)


class WebhookErrorResponseSerializer(serializers.Serializer):
    """Error response from webhooks."""

    error = serializers.CharField(help_text="Error description")


# =============================================================================
# Helper Functions
# =============================================================================


EVENT_TO_STATUS = {
    "delivered": DeliveryStatus.DELIVERED,
    "opened": DeliveryStatus.OPENED,
    "clicked": DeliveryStatus.CLICKED,
    "bounced": DeliveryStatus.BOUNCED,
    "complained": DeliveryStatus.BOUNCED,
    "dropped": DeliveryStatus.BOUNCED,
}

STATUS_TIMESTAMP_FIELD = {
    DeliveryStatus.DELIVERED: "delivered_at",
    DeliveryStatus.OPENED: "opened_at",
    DeliveryStatus.CLICKED: "clicked_at",
    DeliveryStatus.BOUNCED: "bounced_at",
}


def _update_delivery_status(
    provider_message_id: str,
    delivery_status: str,
    error_message: str | None = None,
) -> bool:
    """
    Apply a delivery event to the matching EmailLog.

    The event timestamp is always recorded. The status only moves forward
    (an "opened" arriving after "clicked" does not downgrade it); a bounce
    always wins and a bounced or failed log keeps its status.

    Returns:
        True if the log was found
    """
    try:
        email_log = EmailLog.objects.get(provider_message_id=provider_message_id)
    except EmailLog.DoesNotExist:
        logger.warning(
            f"Email log not found for provider_message_id={provider_message_id}"
        )
        return False

    update_fields = ["updated_at"]
    timestamp_field = STATUS_TIMESTAMP_FIELD[delivery_status]
    if getattr(email_log, timestamp_field) is None:
        setattr(email_log, timestamp_field, timezone.now())
        update_fields.append(timestamp_field)

    if delivery_status == DeliveryStatus.BOUNCED:
        email_log.status = DeliveryStatus.BOUNCED
        email_log.failure_reason = error_message or ""
        update_fields += ["status", "failure_reason"]
    elif email_log.status not in TERMINAL_STATUSES and STATUS_PROGRESSION.get(
        delivery_status, 0
    ) > STATUS_PROGRESSION.get(email_log.status, -1):
        email_log.status = delivery_status
        update_fields.append("status")

    email_log.save(update_fields=update_fields)
    logger.info(f"Email log {email_log.id} updated from {delivery_status} event")
    return True


# =============================================================================
# Webhook Views
# =============================================================================


class EmailWebhookView(APIView):
    """
    Email delivery callback webhook.

    Receives delivery status updates from the email provider.
    Requires HMAC-SHA256 signature verification via X-Email-Signature header.
    """

    permission_classes = [AllowAny]
    authentication_classes = []  # Signature-based validation

    @extend_schema(
        operation_id="email_delivery_webhook",
        summary="Email delivery callback",
        description=(
            "Webhook endpoint for the email provider to report delivery, open, "
            "click and bounce events. Requires HMAC-SHA256 signature verification "
            "using the X-Email-Signature header."
        ),
        request=EmailWebhookRequestSerializer,
        responses={
            200: WebhookSuccessResponseSerializer,
            400: OpenApiResponse(
                response=WebhookErrorResponseSerializer,
                description="Invalid request payload",
            ),
            401: OpenApiResponse(
                response=WebhookErrorResponseSerializer,
                description="Invalid or missing signature",
            ),
            404: OpenApiResponse(
                response=WebhookErrorResponseSerializer,
                description="Email log not found",
            ),
        },
        tags=["Notifications - Webhooks"],
    )
    @method_decorator(requires_settings("EMAIL_WEBHOOK_SECRET"))
    def post(self, request):
        """Handle email delivery status callback."""
        signature = request.headers.get("X-Email-Signature", "")

        if not verify_hmac_signature(request.body, signature, settings.EMAIL_WEBHOOK_SECRET):
            logger.warning("Email webhook signature verification failed")
            return Response(
                {"error": "Invalid signature"},
                status=status.HTTP_401_UNAUTHORIZED,
            )

        serializer = EmailWebhookRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {"error": "Invalid payload", "details": serializer.errors},
                status=status.HTTP_400_BAD_REQUEST,
            )

        data = serializer.validated_data
        event = data["event"]
        error_message = data.get("error_message") or data.get("error_code") or event

        found = _update_delivery_status(
            provider_message_id=data["message_id"],
            delivery_status=EVENT_TO_STATUS[event],
            error_message=error_message if EVENT_TO_STATUS[event] == DeliveryStatus.BOUNCED else None,
        )

        if not found:
            return Response(
                {"error": "Email log not found"},
                status=status.HTTP_404_NOT_FOUND,
            )

        return Response({"success": True})
