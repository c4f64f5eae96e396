"""
Pytest fixtures for webhook tests.

Escrow, recipient and Stripe fixtures come from escrow/conftest.py.
"""

import pytest

from escrow.tests.factories import WebhookEventFactory, stripe_event


@pytest.fixture
def make_webhook_event(db):
    """Store a WebhookEvent for the given type and data object."""

    def _make(event_type: str, data_object: dict, **kwargs):
        event = WebhookEventFactory.build(event_type=event_type)
        payload = stripe_event(event_type, data_object, event.stripe_event_id)
        return WebhookEventFactory(
            stripe_event_id=event.stripe_event_id,
            event_type=event_type,
            payload=payload,
            **kwargs,
        )

    return _make
