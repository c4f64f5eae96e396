"""
Webhook handling for the escrow app.

Two providers call in:
- Stripe: payment and transfer events, verified, stored idempotently and
  processed asynchronously via Celery tasks
- The inbound email provider: replies to paid messages, handed to the
  Response Detector synchronously

Usage:
    # In urls.py
    from escrow.webhooks import InboundEmailWebhookView, stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
        path("webhooks/inbound-email/", InboundEmailWebhookView.as_view()),
    ]
"""

from escrow.webhooks.handlers import dispatch_webhook, register_handler
from escrow.webhooks.views import InboundEmailWebhookView, stripe_webhook

__all__ = [
    "InboundEmailWebhookView",
    "dispatch_webhook",
    "register_handler",
    "stripe_webhook",
]
