"""
URL configuration for the escrow app.

Routes:
    - POST /webhooks/inbound-email/ - Inbound email provider webhook
    - POST /webhooks/stripe/ - Stripe webhook endpoint
    - POST /settlements/ - Settlement trigger (internal)
    - POST /sweeps/deadline/ - Deadline sweep (internal)
    - GET /health/ - Escrow health snapshot (internal)

All routes are prefixed with /api/v1/escrow/ when included in the main URLconf.
"""

from django.urls import path

from escrow.views import DeadlineSweepView, EscrowHealthView, SettlementTriggerView
from escrow.webhooks.views import InboundEmailWebhookView, stripe_webhook

app_name = "escrow"

urlpatterns = [
    # Webhook endpoints
    path(
        "webhooks/inbound-email/",
        InboundEmailWebhookView.as_view(),
        name="inbound-email-webhook",
    ),
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    # Internal endpoints
    path("settlements/", SettlementTriggerView.as_view(), name="settlement-trigger"),
    path("sweeps/deadline/", DeadlineSweepView.as_view(), name="deadline-sweep"),
    path("health/", EscrowHealthView.as_view(), name="health"),
]
