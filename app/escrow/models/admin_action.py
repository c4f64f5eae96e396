"""
AdminAction model: operator-facing audit and alert records.

Written when automation stops and a person should look: circuit breaker
trips, transfer and refund failures, manual retries and the daily
reconciliation summary.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import AdminActionType


class AdminActionQuerySet(models.QuerySet):
    def unresolved(self):
        return self.filter(resolved_at__isnull=True)


class AdminAction(UUIDPrimaryKeyMixin, BaseModel):
    """
    One operator-facing event.

    Fields:
        action_type: AdminActionType
        description: Human-readable summary
        escrow: Related escrow, when the event concerns a single one
        actor: Operator who performed a manual action (null for automation)
        requires_attention: Alert flag for dashboards
        resolved_at: Set by an operator once handled
        metadata: Structured details (counts, provider errors, stats)
    """

    action_type = models.CharField(
        max_length=40,
        choices=AdminActionType.choices,
        db_index=True,
    )

    description = models.TextField()

    escrow = models.ForeignKey(
        "escrow.EscrowTransaction",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="admin_actions",
    )

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    requires_attention = models.BooleanField(default=False, db_index=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True)

    objects = AdminActionQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Admin Action"
        verbose_name_plural = "Admin Actions"

    def __str__(self) -> str:
        return f"AdminAction({self.action_type}, {self.created_at:%Y-%m-%d %H:%M})"

    @classmethod
    def record(
        cls,
        action_type: str,
        description: str,
        escrow=None,
        actor=None,
        requires_attention: bool = False,
        **metadata,
    ) -> AdminAction:
        return cls.objects.create(
            action_type=action_type,
            description=description,
            escrow=escrow,
            actor=actor,
            requires_attention=requires_attention,
            metadata=metadata,
        )
