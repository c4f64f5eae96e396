"""
Serializers for the escrow webhook and internal endpoints.

The inbound email serializer keeps the provider's field names (From, To,
TextBody, ...) so the payload validates as delivered.
"""

from __future__ import annotations

from rest_framework import serializers

from escrow.detection import InboundEmail
from escrow.state_machines import DetectionOutcome, EscrowStatus, SettlementCause

# Causes the trigger endpoint accepts
TRIGGER_CAUSES = [
    SettlementCause.RESPONSE_RECEIVED,
    SettlementCause.DEADLINE_EXPIRED,
    SettlementCause.RECONCILIATION,
]


# =============================================================================
# Inbound Email Webhook
# =============================================================================


class EmailHeaderSerializer(serializers.Serializer):
    Name = serializers.CharField()
    Value = serializers.CharField(allow_blank=True)


class InboundEmailSerializer(serializers.Serializer):
    """Inbound email as posted by the email provider."""

    MessageID = serializers.CharField(help_text="Provider message id, used for deduplication")
    From = serializers.CharField(required=False, allow_blank=True, default="")
    To = serializers.CharField(required=False, allow_blank=True, default="")
    OriginalRecipient = serializers.CharField(required=False, allow_blank=True, default="")
    Subject = serializers.CharField(required=False, allow_blank=True, default="")
    TextBody = serializers.CharField(
        required=False, allow_blank=True, default="", trim_whitespace=False
    )
    HtmlBody = serializers.CharField(
        required=False, allow_blank=True, default="", trim_whitespace=False
    )
    Headers = EmailHeaderSerializer(many=True, required=False, default=list)

    def validate(self, attrs):
        if not attrs["To"] and not attrs["OriginalRecipient"]:
            raise serializers.ValidationError("To or OriginalRecipient is required.")
        return attrs

    def to_inbound_email(self) -> InboundEmail:
        data = self.validated_data
        return InboundEmail(
            provider_message_id=data["MessageID"],
            # OriginalRecipient survives forwarding rules that rewrite To
            to=data["OriginalRecipient"] or data["To"],
            from_address=data["From"],
            subject=data["Subject"],
            text_body=data["TextBody"],
            html_body=data["HtmlBody"],
            headers=[dict(header) for header in data["Headers"]],
        )


class DetectionResultSerializer(serializers.Serializer):
    outcome = serializers.ChoiceField(choices=DetectionOutcome.choices)
    reason = serializers.CharField()
    message_id = serializers.UUIDField(allow_null=True)
    escrow_id = serializers.UUIDField(allow_null=True)
    escrow_status = serializers.ChoiceField(choices=EscrowStatus.choices, allow_null=True)
    within_deadline = serializers.BooleanField(allow_null=True)
    grace_period_used = serializers.BooleanField(allow_null=True)


# =============================================================================
# Internal Endpoints
# =============================================================================


class SettlementTriggerSerializer(serializers.Serializer):
    messageId = serializers.UUIDField()
    cause = serializers.ChoiceField(choices=TRIGGER_CAUSES)


class SettlementResponseSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=EscrowStatus.choices)
    escrow_id = serializers.UUIDField()
    message_id = serializers.UUIDField()


class DeadlineSweepResponseSerializer(serializers.Serializer):
    refunded = serializers.IntegerField()
    reminded = serializers.IntegerField()
    skipped = serializers.IntegerField()


class ErrorResponseSerializer(serializers.Serializer):
    error = serializers.CharField()
    error_code = serializers.CharField(required=False)
    details = serializers.DictField(required=False)
