"""
Escrow-specific exceptions.

Exception Hierarchy:
    EscrowError (base for escrow domain)
    ├── EscrowNotFoundError - No escrow for the given id / message
    ├── EscrowValidationError - Invalid escrow creation parameters
    └── PaymentProviderError - Payment provider failures
        └── StripeError - Base for all Stripe errors
            ├── StripeInvalidAccountError - Invalid connected account (permanent)
            ├── StripeInvalidRequestError - Invalid request params (permanent)
            ├── StripeSignatureError - Webhook signature mismatch (permanent)
            ├── StripeRateLimitError - Rate limited (transient)
            ├── StripeAPIUnavailableError - API unavailable (transient)
            └── StripeTimeoutError - Request timeout (transient)

    SettlementConflictError - Escrow already resolved differently (ConflictError)
    InvalidTransitionError - Transition not allowed from current state (ConflictError)

NotApplicable, Duplicate and Late inbound responses are not exceptions; the
Response Detector reports them as DetectionOutcome values.

Usage:
    from escrow.exceptions import SettlementConflictError

    try:
        SettlementEngine.refund(escrow.id, cause=SettlementCause.DEADLINE_EXPIRED)
    except SettlementConflictError as e:
        # Someone else resolved this escrow first
        logger.info("Race lost", extra=e.details)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Escrow Domain Exceptions
# =============================================================================


class EscrowError(BaseApplicationError):
    """Base exception for all escrow operations."""

    default_error_code: str = "ESCROW_ERROR"


class EscrowNotFoundError(EscrowError, NotFoundError):
    """
    Raised when an escrow cannot be found.

    Example:
        escrow = EscrowTransaction.objects.filter(message_id=message_id).first()
        if escrow is None:
            raise EscrowNotFoundError(
                f"No escrow for message {message_id}",
                details={"message_id": str(message_id)},
            )
    """

    default_error_code: str = "ESCROW_NOT_FOUND"


class EscrowValidationError(EscrowError, ValidationError):
    """Raised when escrow creation parameters are invalid."""

    default_error_code: str = "ESCROW_VALIDATION_ERROR"


# =============================================================================
# Settlement Conflicts
# =============================================================================


class SettlementConflictError(ConflictError):
    """
    Raised when an escrow already sits in a different terminal state.

    Callers (detector, sweeper, webhook handlers) treat this as
    "someone else already resolved this escrow", never as fatal.

    Attributes:
        current_status: Status observed after the failed claim
        target_status: Status the caller asked for
    """

    default_error_code: str = "SETTLEMENT_CONFLICT"

    def __init__(
        self,
        message: str,
        current_status: str,
        target_status: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details.setdefault("current_status", current_status)
        details.setdefault("target_status", target_status)
        super().__init__(message, error_code=error_code, details=details)
        self.current_status = current_status
        self.target_status = target_status


class InvalidTransitionError(SettlementConflictError):
    """
    Raised when the requested transition is not declared from the current state.

    Wraps django-fsm's TransitionNotAllowed with our standard error format,
    e.g. asking to refund an escrow still waiting for payout setup.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


# =============================================================================
# Payment Provider Exceptions
# =============================================================================


class PaymentProviderError(EscrowError, ExternalServiceError):
    """
    Base exception for payment provider failures.

    Attributes:
        is_retryable: True for transient failures. Nothing retries in-line;
            sweeps and reconciliation jobs retry later.
    """

    default_error_code: str = "PAYMENT_PROVIDER_ERROR"
    is_retryable: bool = False


class StripeError(PaymentProviderError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's internal error code
    """

    default_error_code: str = "STRIPE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code


# -----------------------------------------------------------------------------
# Permanent Errors
# -----------------------------------------------------------------------------


class StripeInvalidAccountError(StripeError):
    """
    The destination connected account cannot receive transfers.

    Typically the recipient's account was restricted or deleted after
    onboarding.
    """

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"


class StripeInvalidRequestError(StripeError):
    """Invalid request parameters or a resource in the wrong state."""

    default_error_code: str = "INVALID_STRIPE_REQUEST"


class StripeSignatureError(StripeError):
    """Webhook payload signature did not verify against the signing secret."""

    default_error_code: str = "STRIPE_SIGNATURE_INVALID"


# -----------------------------------------------------------------------------
# Transient Errors
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """Rate limited by the Stripe API."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    Covers network connectivity issues and Stripe 5xx responses.
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out (STRIPE_API_TIMEOUT_SECONDS).

    The operation may have succeeded on Stripe's side. Every money-moving
    call carries an idempotency key so a later retry is safe.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


__all__ = [
    "EscrowError",
    "EscrowNotFoundError",
    "EscrowValidationError",
    "InvalidTransitionError",
    "PaymentProviderError",
    "SettlementConflictError",
    "StripeAPIUnavailableError",
    "StripeError",
    "StripeInvalidAccountError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeSignatureError",
    "StripeTimeoutError",
]
