"""
PayoutAccount model for Stripe Connect integration.

A recipient's connected account. Escrows created for a recipient without a
ready account start in pending_user_setup and are activated once the
provider reports the account as enabled (account.updated webhook).
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin


class PayoutAccount(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Recipient's Stripe Connected Account.

    Fields:
        user: Recipient owning the account
        stripe_account_id: Stripe Account ID (acct_xxx)
        details_submitted: Recipient finished the onboarding form
        charges_enabled / payouts_enabled: Capabilities granted by Stripe
        metadata: Raw capability data from the last account.updated event
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payout_account",
    )

    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Stripe Account ID (acct_xxx)",
    )

    details_submitted = models.BooleanField(default=False)
    charges_enabled = models.BooleanField(default=False)
    payouts_enabled = models.BooleanField(default=False)

    onboarding_completed_at = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout Account"
        verbose_name_plural = "Payout Accounts"

    def __str__(self) -> str:
        return f"PayoutAccount({self.stripe_account_id}, ready={self.is_ready_for_payouts})"

    @property
    def is_ready_for_payouts(self) -> bool:
        """
        Check if account can receive transfers.

        All three flags must be set, mirroring what Stripe requires
        before a transfer to the account succeeds.
        """
        return self.details_submitted and self.charges_enabled and self.payouts_enabled

    @classmethod
    def is_user_ready(cls, user) -> bool:
        account = cls.objects.filter(user=user).first()
        return bool(account and account.is_ready_for_payouts)
