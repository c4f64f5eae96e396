"""
Tests for webhook views.

Tests cover:
- Stripe signature verification, event storage and queuing
- Inbound email authentication (Basic Auth and HMAC)
- Inbound email validation and detector outcomes
- Refusal when webhook secrets are not configured
"""

import base64
import hashlib
import hmac
import json
from unittest.mock import patch

import pytest
from django.urls import reverse

from escrow.addresses import build_reply_address
from escrow.exceptions import StripeSignatureError
from escrow.models import EmailResponseTracking, EscrowTransaction, WebhookEvent
from escrow.state_machines import DetectionOutcome, EscrowStatus, WebhookEventStatus
from escrow.tests.factories import WebhookEventFactory, stripe_event

VERIFY_PATH = "escrow.webhooks.views.StripeAdapter.verify_webhook_signature"


# =============================================================================
# Stripe
# =============================================================================


@pytest.fixture
def stripe_url():
    return reverse("escrow:stripe-webhook")


def post_stripe(client, url, payload: dict, signature: str = "t=1,v1=test"):
    headers = {"HTTP_STRIPE_SIGNATURE": signature} if signature else {}
    return client.post(
        url,
        data=json.dumps(payload),
        content_type="application/json",
        **headers,
    )


class TestStripeWebhookSignature:
    def test_missing_signature_not_processed(self, client, db, stripe_url):
        response = post_stripe(client, stripe_url, {"id": "evt_test"}, signature="")

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "processed": False,
            "reason": "missing_signature",
        }
        assert not WebhookEvent.objects.exists()

    def test_invalid_signature_not_processed(self, client, db, stripe_url):
        with patch(VERIFY_PATH, side_effect=StripeSignatureError("Invalid signature")):
            response = post_stripe(client, stripe_url, {"id": "evt_test"})

        assert response.status_code == 200
        assert response.json()["reason"] == "invalid_signature"
        assert not WebhookEvent.objects.exists()

    def test_event_without_type_not_processed(self, client, db, stripe_url):
        with patch(VERIFY_PATH, return_value={"id": "evt_test"}):
            response = post_stripe(client, stripe_url, {"id": "evt_test"})

        assert response.json()["reason"] == "invalid_event"

    def test_unconfigured_secret_returns_500(self, client, db, stripe_url, settings):
        settings.STRIPE_WEBHOOK_SECRET = ""

        with patch(VERIFY_PATH) as mock_verify:
            response = post_stripe(client, stripe_url, {"id": "evt_test"})

        assert response.status_code == 500
        mock_verify.assert_not_called()

    def test_get_not_allowed(self, client, db, stripe_url):
        assert client.get(stripe_url).status_code == 405


class TestStripeWebhookEventCreation:
    def test_stores_and_queues_event(
        self, client, db, stripe_url, django_capture_on_commit_callbacks
    ):
        payload = stripe_event("payment_intent.succeeded", {"id": "pi_123"}, "evt_new_123")

        with (
            patch(VERIFY_PATH, return_value=payload),
            patch("escrow.tasks.process_webhook_event.delay") as mock_delay,
            django_capture_on_commit_callbacks(execute=True),
        ):
            response = post_stripe(client, stripe_url, payload)

        assert response.status_code == 200
        assert response.json() == {"received": True, "processed": True}

        event = WebhookEvent.objects.get(stripe_event_id="evt_new_123")
        assert event.event_type == "payment_intent.succeeded"
        assert event.status == WebhookEventStatus.PENDING
        assert event.payload == payload
        mock_delay.assert_called_once_with(str(event.id))

    def test_duplicate_event_not_queued_again(
        self, client, db, stripe_url, django_capture_on_commit_callbacks
    ):
        existing = WebhookEventFactory(status=WebhookEventStatus.FAILED)

        with (
            patch(VERIFY_PATH, return_value=existing.payload),
            patch("escrow.tasks.process_webhook_event.delay") as mock_delay,
            django_capture_on_commit_callbacks(execute=True),
        ):
            response = post_stripe(client, stripe_url, existing.payload)

        assert response.json()["reason"] == "duplicate"
        assert WebhookEvent.objects.count() == 1
        mock_delay.assert_not_called()


# =============================================================================
# Inbound Email
# =============================================================================


@pytest.fixture
def inbound_url():
    return reverse("escrow:inbound-email-webhook")


def basic_auth(username="inbound", password="inbound-secret") -> str:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {token}"


def inbound_payload(to: str, **overrides) -> dict:
    payload = {
        "MessageID": "inbound-abc-123",
        "From": "Recipient <recipient@example.com>",
        "To": to,
        "Subject": "Re: your message",
        "TextBody": "Happy to help.",
    }
    payload.update(overrides)
    return payload


def post_inbound(client, url, payload: dict, **headers):
    return client.post(
        url,
        data=json.dumps(payload),
        content_type="application/json",
        **headers,
    )


class TestInboundEmailAuthentication:
    def test_missing_credentials_returns_401(self, client, db, inbound_url):
        response = post_inbound(client, inbound_url, inbound_payload("someone@example.com"))

        assert response.status_code == 401

    def test_wrong_password_returns_401(self, client, db, inbound_url):
        response = post_inbound(
            client,
            inbound_url,
            inbound_payload("someone@example.com"),
            HTTP_AUTHORIZATION=basic_auth(password="wrong"),
        )

        assert response.status_code == 401

    def test_hmac_signature_accepted(self, client, db, inbound_url):
        body = json.dumps(inbound_payload("someone@example.com")).encode()
        signature = hmac.new(b"inbound-hmac-secret", body, hashlib.sha256).hexdigest()

        response = client.post(
            inbound_url,
            data=body,
            content_type="application/json",
            HTTP_X_WEBHOOK_SIGNATURE=signature,
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == DetectionOutcome.NO_MATCH

    def test_bad_hmac_signature_returns_401(self, client, db, inbound_url):
        response = post_inbound(
            client,
            inbound_url,
            inbound_payload("someone@example.com"),
            HTTP_X_WEBHOOK_SIGNATURE="0" * 64,
        )

        assert response.status_code == 401

    def test_unconfigured_returns_500(self, client, db, inbound_url, settings):
        settings.INBOUND_EMAIL_WEBHOOK_USERNAME = ""
        settings.INBOUND_EMAIL_WEBHOOK_PASSWORD = ""
        settings.INBOUND_EMAIL_WEBHOOK_SECRET = ""

        response = post_inbound(
            client,
            inbound_url,
            inbound_payload("someone@example.com"),
            HTTP_AUTHORIZATION=basic_auth(),
        )

        assert response.status_code == 500
        assert response.json()["error_code"] == "CONFIGURATION_ERROR"


class TestInboundEmailProcessing:
    def test_reply_releases_escrow(self, client, inbound_url, held_escrow, stripe_adapter):
        payload = inbound_payload(build_reply_address(held_escrow.message_id))

        response = post_inbound(client, inbound_url, payload, HTTP_AUTHORIZATION=basic_auth())

        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == DetectionOutcome.RELEASED
        assert data["escrow_id"] == str(held_escrow.id)
        assert data["within_deadline"] is True
        assert (
            EscrowTransaction.objects.get(pk=held_escrow.pk).status == EscrowStatus.RELEASED
        )

    def test_redelivery_is_duplicate(self, client, inbound_url, held_escrow, stripe_adapter):
        payload = inbound_payload(build_reply_address(held_escrow.message_id))

        post_inbound(client, inbound_url, payload, HTTP_AUTHORIZATION=basic_auth())
        response = post_inbound(client, inbound_url, payload, HTTP_AUTHORIZATION=basic_auth())

        assert response.status_code == 200
        assert response.json()["outcome"] == DetectionOutcome.DUPLICATE
        assert EmailResponseTracking.objects.count() == 1
        stripe_adapter.create_transfer.assert_called_once()

    def test_original_recipient_preferred(
        self, client, inbound_url, held_escrow, stripe_adapter
    ):
        payload = inbound_payload(
            "support@example.com",
            OriginalRecipient=build_reply_address(held_escrow.message_id),
        )

        response = post_inbound(client, inbound_url, payload, HTTP_AUTHORIZATION=basic_auth())

        assert response.json()["outcome"] == DetectionOutcome.RELEASED

    def test_missing_recipient_returns_400(self, client, db, inbound_url):
        payload = inbound_payload("")

        response = post_inbound(client, inbound_url, payload, HTTP_AUTHORIZATION=basic_auth())

        assert response.status_code == 400

    def test_missing_message_id_returns_400(self, client, db, inbound_url):
        payload = inbound_payload("someone@example.com")
        del payload["MessageID"]

        response = post_inbound(client, inbound_url, payload, HTTP_AUTHORIZATION=basic_auth())

        assert response.status_code == 400
        assert "MessageID" in response.json()["details"]
