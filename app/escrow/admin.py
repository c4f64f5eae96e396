"""
Escrow admin configuration.

Status is never edited here: every change goes through the Settlement
Engine. The only write paths are the "Retry failed transfers" action, the
webhook re-queue action and resolving admin actions.
"""

from django.conf import settings
from django.contrib import admin, messages
from django.utils import timezone

from escrow.exceptions import SettlementConflictError
from escrow.models import (
    AdminAction,
    EmailResponseTracking,
    EscrowTransaction,
    EscrowTransition,
    MessageResponse,
    PayoutAccount,
    WebhookEvent,
)
from escrow.settlement import SettlementEngine
from escrow.state_machines import EscrowStatus, WebhookEventStatus


class ReadOnlyInline(admin.TabularInline):
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False


class EscrowTransitionInline(ReadOnlyInline):
    model = EscrowTransition
    fields = ["created_at", "from_status", "to_status", "cause", "idempotency_key"]
    readonly_fields = fields


class EmailResponseTrackingInline(ReadOnlyInline):
    model = EmailResponseTracking
    fields = [
        "response_received_at",
        "response_from",
        "within_deadline",
        "grace_period_used",
        "inbound_email_id",
    ]
    readonly_fields = fields


@admin.register(EscrowTransaction)
class EscrowTransactionAdmin(admin.ModelAdmin):
    """
    Admin configuration for EscrowTransaction.

    Read-only view of escrows, their transitions and recorded responses.
    """

    list_display = [
        "id",
        "message_id",
        "recipient_user",
        "amount_display",
        "status",
        "expires_at",
        "created_at",
    ]
    list_filter = ["status", "currency", "created_at"]
    search_fields = [
        "id",
        "message_id",
        "sender_email",
        "recipient_user__email",
        "stripe_payment_intent_id",
        "stripe_transfer_id",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [EscrowTransitionInline, EmailResponseTrackingInline]
    actions = ["retry_failed_transfers"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "message_id", "status", "sender_email", "recipient_user"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount", "currency", "recipient_share_percent"),
            },
        ),
        (
            "Deadline",
            {
                "fields": ("deadline_hours", "expires_at"),
            },
        ),
        (
            "Payment Provider",
            {
                "fields": (
                    "stripe_payment_intent_id",
                    "stripe_transfer_id",
                    "stripe_refund_id",
                ),
            },
        ),
        (
            "Outcome",
            {
                "fields": ("released_at", "refunded_at", "failed_at", "failure_reason"),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "version"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    @admin.display(description="Amount")
    def amount_display(self, obj: EscrowTransaction) -> str:
        return f"{obj.amount} {obj.currency.upper()}"

    @admin.action(description="Retry failed transfers")
    def retry_failed_transfers(self, request, queryset):
        limit = settings.ESCROW_MAX_TRANSFER_RETRIES_PER_RUN
        failed = queryset.filter(status=EscrowStatus.TRANSFER_FAILED).order_by("failed_at")

        retried = still_failing = 0
        for escrow in failed[:limit]:
            try:
                escrow = SettlementEngine.retry_transfer(escrow.id, actor=request.user)
            except SettlementConflictError:
                continue
            if escrow.status == EscrowStatus.RELEASED:
                retried += 1
            else:
                still_failing += 1

        self.message_user(request, f"{retried} transfers retried successfully.")
        if still_failing:
            self.message_user(
                request,
                f"{still_failing} transfers failed again.",
                level=messages.WARNING,
            )
        if failed.count() > limit:
            self.message_user(
                request,
                f"Only the first {limit} failed transfers were retried.",
                level=messages.WARNING,
            )

    def has_add_permission(self, request) -> bool:
        """Escrows are created by the ledger, not through admin."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for escrows (audit trail)."""
        return False


@admin.register(MessageResponse)
class MessageResponseAdmin(admin.ModelAdmin):
    list_display = ["message_id", "escrow", "has_response", "response_received_at"]
    list_filter = ["has_response"]
    search_fields = ["message_id"]
    readonly_fields = [
        "id",
        "message_id",
        "escrow",
        "has_response",
        "response_received_at",
        "created_at",
        "updated_at",
    ]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status. Failed events are
    re-queued from here.
    """

    list_display = [
        "id",
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "stripe_event_id",
        "event_type",
        "status",
        "payload",
        "processed_at",
        "error_message",
        "retry_count",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["requeue_failed_events"]

    @admin.action(description="Re-queue failed events")
    def requeue_failed_events(self, request, queryset):
        from escrow.tasks import process_webhook_event

        queued = 0
        for event in queryset.filter(status=WebhookEventStatus.FAILED):
            process_webhook_event.delay(str(event.id))
            queued += 1
        self.message_user(request, f"{queued} webhook events re-queued.")

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        """Disable adding webhook events through admin."""
        return False


@admin.register(PayoutAccount)
class PayoutAccountAdmin(admin.ModelAdmin):
    """Visibility into recipients' Stripe Connect account status."""

    list_display = [
        "id",
        "user",
        "stripe_account_id",
        "details_submitted",
        "charges_enabled",
        "payouts_enabled",
        "onboarding_completed_at",
    ]
    list_filter = ["details_submitted", "charges_enabled", "payouts_enabled"]
    search_fields = ["id", "stripe_account_id", "user__email"]
    readonly_fields = ["id", "created_at", "updated_at", "version", "onboarding_completed_at"]
    ordering = ["-created_at"]


@admin.register(AdminAction)
class AdminActionAdmin(admin.ModelAdmin):
    list_display = [
        "created_at",
        "action_type",
        "description",
        "escrow",
        "requires_attention",
        "resolved_at",
    ]
    list_filter = ["action_type", "requires_attention", "created_at"]
    search_fields = ["description", "escrow__message_id"]
    readonly_fields = [
        "id",
        "action_type",
        "description",
        "escrow",
        "actor",
        "requires_attention",
        "resolved_at",
        "metadata",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["mark_resolved"]

    @admin.action(description="Mark as resolved")
    def mark_resolved(self, request, queryset):
        updated = queryset.filter(resolved_at__isnull=True).update(
            resolved_at=timezone.now(),
            updated_at=timezone.now(),
        )
        self.message_user(request, f"{updated} admin actions resolved.")

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
