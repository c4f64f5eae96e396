"""
Django admin configuration for notification models.

EmailLog is read-only: rows are written by the dispatcher, the send task
and the delivery webhook.
"""

from django.contrib import admin

from notifications.models import EmailLog


@admin.register(EmailLog)
class EmailLogAdmin(admin.ModelAdmin):
    """
    Admin configuration for EmailLog.

    Provides read-only view of escrow emails for debugging and support.
    """

    list_display = [
        "id",
        "email_type",
        "recipient_email",
        "status",
        "message_id",
        "sent_at",
        "created_at",
    ]
    list_filter = ["email_type", "status", "provider"]
    search_fields = [
        "recipient_email",
        "sender_email",
        "provider_message_id",
        "message_id",
        "escrow_id",
    ]
    readonly_fields = [
        "email_type",
        "message_id",
        "escrow_id",
        "recipient_email",
        "sender_email",
        "subject",
        "provider",
        "provider_message_id",
        "status",
        "sent_at",
        "delivered_at",
        "opened_at",
        "clicked_at",
        "bounced_at",
        "failure_reason",
        "context",
        "metadata",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
