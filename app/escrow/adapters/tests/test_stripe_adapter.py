"""
Tests for the Stripe adapter.

Tests cover:
- Result mapping for PaymentIntents, transfers and refunds
- Idempotency keys passed through to Stripe
- Error translation for each exception type
- Webhook signature verification
- Configuration from settings
"""

import pytest
import stripe
from django.test import override_settings

from escrow.adapters import PaymentIntentResult, RefundResult, StripeAdapter, TransferResult
from escrow.exceptions import (
    StripeAPIUnavailableError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeSignatureError,
    StripeTimeoutError,
)


@pytest.fixture(autouse=True)
def setup_mocks(mock_stripe_http_client):
    """Every test configures the client through the mocked RequestsClient."""


# =============================================================================
# PaymentIntents
# =============================================================================


class TestPaymentIntents:
    def test_retrieve_maps_result(self, mock_stripe_payment_intent):
        result = StripeAdapter.retrieve_payment_intent("pi_test123456")

        assert isinstance(result, PaymentIntentResult)
        assert result.status == "requires_capture"
        assert result.requires_capture
        assert result.is_cancellable
        assert not result.captured
        assert result.latest_charge == "ch_test123456"
        mock_stripe_payment_intent.retrieve.assert_called_once_with("pi_test123456")

    def test_expanded_latest_charge_reduced_to_id(
        self, mock_stripe_payment_intent, mock_payment_intent
    ):
        charge = stripe.Charge.construct_from({"id": "ch_expanded"}, "sk_test")
        mock_stripe_payment_intent.retrieve.return_value = mock_payment_intent(
            latest_charge=charge
        )

        result = StripeAdapter.retrieve_payment_intent("pi_test123456")

        assert result.latest_charge == "ch_expanded"

    def test_capture_passes_idempotency_key(self, mock_stripe_payment_intent):
        result = StripeAdapter.capture_payment_intent("pi_test123456", "capture-abc")

        assert result.captured
        assert not result.requires_capture
        mock_stripe_payment_intent.capture.assert_called_once_with(
            "pi_test123456", idempotency_key="capture-abc"
        )

    def test_cancel(self, mock_stripe_payment_intent):
        result = StripeAdapter.cancel_payment_intent("pi_test123456", "cancel-abc")

        assert result.status == "canceled"
        assert not result.is_cancellable
        call_kwargs = mock_stripe_payment_intent.cancel.call_args.kwargs
        assert call_kwargs["idempotency_key"] == "cancel-abc"
        assert call_kwargs["cancellation_reason"] == "abandoned"


# =============================================================================
# Transfers and Refunds
# =============================================================================


class TestCreateTransfer:
    def test_create_transfer_success(self, mock_stripe_transfer):
        result = StripeAdapter.create_transfer(
            amount_cents=1500,
            destination_account="acct_dest123",
            idempotency_key="transfer-abc",
            metadata={"escrow_id": "abc"},
        )

        assert isinstance(result, TransferResult)
        assert result.id == "tr_test123456"
        assert result.amount_cents == 1500
        assert result.destination_account == "acct_dest123"
        call_kwargs = mock_stripe_transfer.create.call_args.kwargs
        assert call_kwargs["idempotency_key"] == "transfer-abc"
        assert call_kwargs["metadata"] == {"escrow_id": "abc"}
        assert "source_transaction" not in call_kwargs

    def test_source_transaction_forwarded(self, mock_stripe_transfer):
        StripeAdapter.create_transfer(
            amount_cents=1500,
            destination_account="acct_dest123",
            idempotency_key="transfer-abc",
            source_transaction="ch_source123",
        )

        call_kwargs = mock_stripe_transfer.create.call_args.kwargs
        assert call_kwargs["source_transaction"] == "ch_source123"


class TestCreateRefund:
    def test_full_refund(self, mock_stripe_refund):
        result = StripeAdapter.create_refund("pi_test123456", idempotency_key="refund-abc")

        assert isinstance(result, RefundResult)
        assert result.id == "re_test123456"
        assert result.payment_intent_id == "pi_test123456"
        call_kwargs = mock_stripe_refund.create.call_args.kwargs
        assert call_kwargs["payment_intent"] == "pi_test123456"
        assert "amount" not in call_kwargs

    def test_partial_refund(self, mock_stripe_refund):
        StripeAdapter.create_refund("pi_test123456", idempotency_key="refund-abc", amount_cents=500)

        assert mock_stripe_refund.create.call_args.kwargs["amount"] == 500


# =============================================================================
# Error Translation
# =============================================================================


class TestErrorTranslation:
    def test_invalid_request(self, mock_stripe_payment_intent, invalid_request_error):
        mock_stripe_payment_intent.retrieve.side_effect = invalid_request_error()

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.retrieve_payment_intent("pi_missing")

        assert exc_info.value.is_retryable is False
        assert exc_info.value.stripe_code == "resource_missing"

    def test_invalid_account(self, mock_stripe_transfer, invalid_request_error):
        mock_stripe_transfer.create.side_effect = invalid_request_error(
            message="No such destination account: acct_invalid",
            param="destination",
            code="account_invalid",
        )

        with pytest.raises(StripeInvalidAccountError):
            StripeAdapter.create_transfer(
                amount_cents=1500,
                destination_account="acct_invalid",
                idempotency_key="transfer-abc",
            )

    def test_rate_limit(self, mock_stripe_payment_intent):
        mock_stripe_payment_intent.capture.side_effect = stripe.RateLimitError(
            message="Too many requests"
        )

        with pytest.raises(StripeRateLimitError) as exc_info:
            StripeAdapter.capture_payment_intent("pi_test123456", "capture-abc")

        assert exc_info.value.is_retryable is True

    def test_timeout(self, mock_stripe_refund):
        mock_stripe_refund.create.side_effect = stripe.APIConnectionError(
            message="Request timed out"
        )

        with pytest.raises(StripeTimeoutError):
            StripeAdapter.create_refund("pi_test123456", idempotency_key="refund-abc")

    @pytest.mark.parametrize(
        "error",
        [
            stripe.APIConnectionError(message="Could not connect"),
            stripe.APIError(message="Something went wrong"),
            RuntimeError("Unexpected"),
        ],
    )
    def test_unavailable(self, mock_stripe_payment_intent, error):
        mock_stripe_payment_intent.retrieve.side_effect = error

        with pytest.raises(StripeAPIUnavailableError) as exc_info:
            StripeAdapter.retrieve_payment_intent("pi_test123456")

        assert exc_info.value.is_retryable is True

    def test_authentication_error_is_permanent(self, mock_stripe_transfer):
        mock_stripe_transfer.create.side_effect = stripe.AuthenticationError(
            message="Invalid API Key provided."
        )

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.create_transfer(
                amount_cents=1500,
                destination_account="acct_dest123",
                idempotency_key="transfer-abc",
            )

        assert exc_info.value.is_retryable is False


# =============================================================================
# Webhook Verification
# =============================================================================


class TestVerifyWebhookSignature:
    def test_success(self, mock_stripe_webhook):
        result = StripeAdapter.verify_webhook_signature(b'{"id": "evt_test123"}', "t=1,v1=abc")

        assert result["id"] == "evt_test123"
        assert result["type"] == "transfer.failed"
        mock_stripe_webhook.construct_event.assert_called_once_with(
            b'{"id": "evt_test123"}', "t=1,v1=abc", "whsec_test_123"
        )

    def test_invalid_signature(self, mock_stripe_webhook, signature_verification_error):
        mock_stripe_webhook.construct_event.side_effect = signature_verification_error

        with pytest.raises(StripeSignatureError) as exc_info:
            StripeAdapter.verify_webhook_signature(b"tampered", "bad_signature")

        assert exc_info.value.stripe_code == "signature_verification_failed"

    def test_unparseable_payload(self, mock_stripe_webhook):
        mock_stripe_webhook.construct_event.side_effect = ValueError("Expecting value")

        with pytest.raises(StripeSignatureError) as exc_info:
            StripeAdapter.verify_webhook_signature(b"not json", "t=1,v1=abc")

        assert exc_info.value.stripe_code == "invalid_payload"


# =============================================================================
# Configuration
# =============================================================================


class TestConfiguration:
    @override_settings(STRIPE_SECRET_KEY="sk_test_custom")
    def test_uses_settings_api_key(self, mock_stripe_payment_intent):
        StripeAdapter.retrieve_payment_intent("pi_test123456")

        assert stripe.api_key == "sk_test_custom"

    @override_settings(STRIPE_API_TIMEOUT_SECONDS=30)
    def test_uses_settings_timeout(self, mock_stripe_payment_intent, mock_stripe_http_client):
        StripeAdapter.retrieve_payment_intent("pi_test123456")

        mock_stripe_http_client.assert_called_with(timeout=30)
        assert stripe.max_network_retries == 0
