"""
Webhook endpoint views.

stripe_webhook:
1. Verifies the webhook signature
2. Creates the WebhookEvent record (idempotent on stripe_event_id)
3. Queues the event for async processing after commit
4. Returns immediately

InboundEmailWebhookView:
1. Authenticates the email provider (Basic Auth or HMAC signature)
2. Validates the payload
3. Runs the Response Detector synchronously and returns its outcome

Usage:
    # In urls.py
    from escrow.webhooks.views import InboundEmailWebhookView, stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
        path("webhooks/inbound-email/", InboundEmailWebhookView.as_view()),
    ]
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.db import transaction
from django.http import HttpRequest, JsonResponse
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import extend_schema, OpenApiResponse

from core.decorators import requires_settings
from core.helpers import get_client_ip, verify_basic_auth, verify_hmac_signature
from escrow.adapters import StripeAdapter
from escrow.detection import ResponseDetector
from escrow.exceptions import StripeSignatureError
from escrow.models import WebhookEvent
from escrow.serializers import (
    DetectionResultSerializer,
    ErrorResponseSerializer,
    InboundEmailSerializer,
)
from escrow.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Stripe
# =============================================================================


def _unprocessed(reason: str) -> JsonResponse:
    # 200 so Stripe does not retry a payload we will never accept
    return JsonResponse({"received": True, "processed": False, "reason": reason})


@csrf_exempt
@require_POST
@requires_settings("STRIPE_WEBHOOK_SECRET")
def stripe_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive and queue Stripe webhook events.

    Signature verification happens before anything in the payload is
    interpreted. A request that fails verification is logged and answered
    with 200 ``{"received": true, "processed": false}``.

    Idempotency:
    - WebhookEvent.stripe_event_id is unique
    - A redelivered event finds its row and is not queued again
    - FAILED events are re-queued by an operator, not by redelivery

    Returns:
        JsonResponse with status 200 in every non-configuration case
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning(
            "Webhook received without Stripe-Signature header",
            extra={"client_ip": get_client_ip(request)},
        )
        return _unprocessed("missing_signature")

    try:
        event_data = StripeAdapter.verify_webhook_signature(payload, signature)
    except StripeSignatureError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": e.message, "client_ip": get_client_ip(request)},
        )
        return _unprocessed("invalid_signature")

    stripe_event_id = event_data.get("id")
    event_type = event_data.get("type")

    if not stripe_event_id or not event_type:
        logger.warning("Webhook missing required fields")
        return _unprocessed("invalid_event")

    logger.info(
        f"Received Stripe webhook: {event_type}",
        extra={"stripe_event_id": stripe_event_id, "event_type": event_type},
    )

    with transaction.atomic():
        webhook_event, created = WebhookEvent.objects.get_or_create(
            stripe_event_id=stripe_event_id,
            defaults={
                "event_type": event_type,
                "payload": event_data,
                "status": WebhookEventStatus.PENDING,
            },
        )

        if not created:
            logger.info(
                f"Duplicate webhook skipped, stored status: {webhook_event.status}",
                extra={"stripe_event_id": stripe_event_id},
            )
            return JsonResponse(
                {"received": True, "processed": False, "reason": "duplicate"}
            )

        from escrow.tasks import process_webhook_event

        event_id = str(webhook_event.id)
        transaction.on_commit(lambda: process_webhook_event.delay(event_id), robust=True)

    logger.info(
        "Webhook queued for processing",
        extra={"stripe_event_id": stripe_event_id, "webhook_event_id": event_id},
    )
    return JsonResponse({"received": True, "processed": True})


# =============================================================================
# Inbound Email
# =============================================================================


def _inbound_auth_configured() -> bool:
    basic = settings.INBOUND_EMAIL_WEBHOOK_USERNAME and settings.INBOUND_EMAIL_WEBHOOK_PASSWORD
    return bool(basic or settings.INBOUND_EMAIL_WEBHOOK_SECRET)


def _inbound_authenticated(request) -> bool:
    authorization = request.headers.get("Authorization", "")
    if authorization and verify_basic_auth(
        authorization,
        settings.INBOUND_EMAIL_WEBHOOK_USERNAME,
        settings.INBOUND_EMAIL_WEBHOOK_PASSWORD,
    ):
        return True

    signature = request.headers.get("X-Webhook-Signature", "")
    return verify_hmac_signature(
        request.body,
        signature,
        settings.INBOUND_EMAIL_WEBHOOK_SECRET,
    )


class InboundEmailWebhookView(APIView):
    """
    Inbound email webhook.

    Receives replies sent to reply+{messageId}@<reply domain> from the
    email provider. Every detector outcome, including duplicates and late
    replies, answers 200 so the provider does not redeliver.
    """

    permission_classes = [AllowAny]
    authentication_classes = []  # Provider credentials checked in the view

    @extend_schema(
        operation_id="inbound_email_webhook",
        summary="Inbound email",
        description=(
            "Webhook endpoint for the inbound email provider. Authenticated with "
            "HTTP Basic Auth or an HMAC-SHA256 signature in X-Webhook-Signature."
        ),
        request=InboundEmailSerializer,
        responses={
            200: DetectionResultSerializer,
            400: OpenApiResponse(
                response=ErrorResponseSerializer,
                description="Invalid request payload",
            ),
            401: OpenApiResponse(
                response=ErrorResponseSerializer,
                description="Missing or invalid provider credentials",
            ),
            500: OpenApiResponse(
                response=ErrorResponseSerializer,
                description="Webhook authentication is not configured",
            ),
        },
        tags=["Escrow - Webhooks"],
    )
    @method_decorator(requires_settings("ESCROW_REPLY_DOMAIN"))
    def post(self, request):
        """Detect a response and settle its escrow."""
        if not _inbound_auth_configured():
            logger.critical("Inbound email webhook has no credentials configured")
            return Response(
                {
                    "error": "Inbound email webhook authentication is not configured",
                    "error_code": "CONFIGURATION_ERROR",
                },
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        if not _inbound_authenticated(request):
            logger.warning(
                "Inbound email webhook authentication failed",
                extra={"client_ip": get_client_ip(request)},
            )
            return Response(
                {"error": "Unauthorized"},
                status=status.HTTP_401_UNAUTHORIZED,
            )

        serializer = InboundEmailSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {"error": "Invalid payload", "details": serializer.errors},
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = ResponseDetector.process(serializer.to_inbound_email())
        return Response(result.to_dict())
