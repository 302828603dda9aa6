"""DRF serializers for the webhook operator API."""
from __future__ import annotations

from rest_framework import serializers

from billing.models import FailedWebhook, ProductMapping, WebhookLogEntry


class WebhookLogEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = WebhookLogEntry
        fields = (
            "id",
            "provider",
            "event_type",
            "status",
            "email",
            "transaction_id",
            "dedup_key",
            "duplicate",
            "warnings",
            "error_message",
            "source_ip",
            "raw_payload",
            "created_at",
            "processed_at",
        )
        read_only_fields = fields


class FailedWebhookSerializer(serializers.ModelSerializer):
    webhook_log_id = serializers.IntegerField(read_only=True)
    event_type = serializers.CharField(source="webhook_log.event_type", read_only=True, default="")
    transaction_id = serializers.CharField(source="webhook_log.transaction_id", read_only=True, default="")

    class Meta:
        model = FailedWebhook
        fields = (
            "id",
            "webhook_log_id",
            "source",
            "event_type",
            "transaction_id",
            "status",
            "error_message",
            "retry_count",
            "last_retry_at",
            "next_retry_at",
            "resolved_at",
            "payload",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class ProductMappingSerializer(serializers.ModelSerializer):
    class Meta:
        model = ProductMapping
        fields = (
            "id",
            "provider",
            "product_id",
            "offer_code",
            "plan_type",
            "duration_days",
            "description",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields
