"""
EscrowTransaction and EscrowTransition models.

EscrowTransaction is the ledger row for one paid message: the amount the
sender paid, who may claim it, until when, and where the money currently is.
EscrowTransition is the append-only audit trail of status changes and the
idempotency record for each target status.

Status is a protected django-fsm field. The transition methods below only
validate the move and stamp timestamps in memory; the Settlement Engine
persists them with a conditional UPDATE so that two racing callers cannot
both succeed.

Usage:
    from escrow.models import EscrowTransaction
    from escrow.state_machines import EscrowStatus

    held = EscrowTransaction.objects.filter(status=EscrowStatus.HELD)

    # Never call transition methods outside escrow.settlement
"""

from __future__ import annotations

from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

from escrow.state_machines import EscrowStatus, SettlementCause

CENTS = Decimal("0.01")


class EscrowTransactionQuerySet(models.QuerySet):
    """Read paths shared by the detector, the sweeper and reporting."""

    def held(self):
        return self.filter(status=EscrowStatus.HELD)

    def past_grace(self, now, grace: timedelta):
        """Held escrows whose deadline plus grace lies strictly before now."""
        return self.held().filter(expires_at__lt=now - grace)

    def with_recorded_response(self):
        """Escrows with an accepted reply, settled or not."""
        return self.filter(
            Q(message_response__has_response=True) | Q(response_trackings__isnull=False)
        ).distinct()

    def awaiting_response(self):
        return self.exclude(message_response__has_response=True).exclude(
            response_trackings__isnull=False
        )


class EscrowTransaction(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Funds held against one message until a response or a timeout.

    Fields:
        message_id: Owning message (exactly one escrow per message)
        sender_email: Where refunds and forwarded responses go
        recipient_user: Who may claim the recipient share
        amount: Amount paid by the sender, in currency units
        currency: ISO 4217 code, lowercase
        recipient_share_percent: Revenue split resolved at creation time
        deadline_hours: Response window the escrow was created with
        expires_at: Response deadline (created_at + deadline_hours)
        status: Current EscrowStatus (protected FSM field)
        stripe_payment_intent_id: Sender's PaymentIntent (pi_xxx)
        stripe_transfer_id: Transfer to the recipient (tr_xxx)
        stripe_refund_id: Refund or cancellation reference
        released_at / refunded_at / failed_at: Transition timestamps
        failure_reason: Provider message for payment/transfer failures
        version: Optimistic locking counter
        metadata: Free-form JSON
    """

    message_id = models.UUIDField(
        unique=True,
        db_index=True,
        help_text="Message this escrow belongs to (one-to-one)",
    )

    sender_email = models.EmailField(
        help_text="Sender address for refunds and forwarded responses",
    )

    recipient_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="escrow_transactions",
        help_text="Recipient who can claim the funds by responding",
    )

    amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
        help_text="Amount paid by the sender",
    )

    currency = models.CharField(
        max_length=3,
        default="eur",
        help_text="ISO 4217 currency code (lowercase)",
    )

    recipient_share_percent = models.PositiveSmallIntegerField(
        default=75,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text="Percentage of the amount transferred to the recipient",
    )

    deadline_hours = models.PositiveIntegerField(
        default=48,
        help_text="Response window in hours",
    )

    expires_at = models.DateTimeField(
        db_index=True,
        help_text="Response deadline (UTC)",
    )

    status = FSMField(
        max_length=20,
        choices=EscrowStatus.choices,
        default=EscrowStatus.HELD,
        protected=True,
        db_index=True,
        help_text="Current escrow status",
    )

    # ==========================================================================
    # Payment provider references
    # ==========================================================================

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Stripe PaymentIntent ID (pi_xxx)",
    )

    stripe_transfer_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Stripe Transfer ID (tr_xxx) once released",
    )

    stripe_refund_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Refund ID (re_xxx) or cancelled PaymentIntent ID",
    )

    # ==========================================================================
    # Transition timestamps
    # ==========================================================================

    released_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(
        blank=True,
        default="",
        help_text="Provider error for payment/transfer failures",
    )

    metadata = models.JSONField(default=dict, blank=True)

    objects = EscrowTransactionQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Escrow Transaction"
        verbose_name_plural = "Escrow Transactions"
        indexes = [
            models.Index(fields=["status", "expires_at"], name="escrow_escr_status_3f1c2a_idx"),
            models.Index(fields=["recipient_user", "status"], name="escrow_escr_recipie_8b7d41_idx"),
        ]

    def __str__(self) -> str:
        return f"EscrowTransaction({self.message_id}, {self.status}, {self.amount})"

    # ==========================================================================
    # Derived amounts
    # ==========================================================================

    @property
    def amount_cents(self) -> int:
        return int((self.amount * 100).to_integral_value(rounding=ROUND_HALF_UP))

    @property
    def recipient_amount(self) -> Decimal:
        """Recipient share, rounded half-up to the cent."""
        share = self.amount * Decimal(self.recipient_share_percent) / Decimal(100)
        return share.quantize(CENTS, rounding=ROUND_HALF_UP)

    @property
    def recipient_amount_cents(self) -> int:
        return int(self.recipient_amount * 100)

    # ==========================================================================
    # State Transitions (invoked only by escrow.settlement)
    # ==========================================================================

    @transition(
        field=status,
        source=EscrowStatus.PENDING_USER_SETUP,
        target=EscrowStatus.HELD,
    )
    def activate(self) -> None:
        """Recipient completed payout-account setup."""

    @transition(field=status, source=EscrowStatus.HELD, target=EscrowStatus.RELEASED)
    def release(self) -> None:
        """Timely response received; funds go to the recipient."""
        self.released_at = timezone.now()

    @transition(
        field=status,
        source=EscrowStatus.TRANSFER_FAILED,
        target=EscrowStatus.RELEASED,
    )
    def retry_release(self) -> None:
        """Operator retried a failed transfer."""
        self.released_at = timezone.now()
        self.failure_reason = ""

    @transition(field=status, source=EscrowStatus.HELD, target=EscrowStatus.REFUNDED)
    def refund(self) -> None:
        """Deadline and grace passed without a response."""
        self.refunded_at = timezone.now()

    @transition(
        field=status,
        source=EscrowStatus.HELD,
        target=EscrowStatus.PAYMENT_FAILED,
    )
    def fail_payment(self, reason: str = "") -> None:
        self.failed_at = timezone.now()
        self.failure_reason = reason

    @transition(
        field=status,
        source=[
            EscrowStatus.PENDING_USER_SETUP,
            EscrowStatus.HELD,
            EscrowStatus.RELEASED,
        ],
        target=EscrowStatus.TRANSFER_FAILED,
    )
    def fail_transfer(self, reason: str = "") -> None:
        self.failed_at = timezone.now()
        self.failure_reason = reason


class EscrowTransition(UUIDPrimaryKeyMixin, BaseModel):
    """
    Audit log entry and idempotency record for one status change.

    The unique idempotency_key is written in the same database transaction
    as the status UPDATE, so a transition can never be recorded twice.
    """

    escrow = models.ForeignKey(
        EscrowTransaction,
        on_delete=models.CASCADE,
        related_name="transitions",
    )
    from_status = models.CharField(max_length=20, choices=EscrowStatus.choices)
    to_status = models.CharField(max_length=20, choices=EscrowStatus.choices)
    cause = models.CharField(max_length=30, choices=SettlementCause.choices)
    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="{escrow_id}:{to_status}[:suffix]",
    )
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Escrow Transition"
        verbose_name_plural = "Escrow Transitions"

    def __str__(self) -> str:
        return f"{self.escrow_id}: {self.from_status} -> {self.to_status} ({self.cause})"
