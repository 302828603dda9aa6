"""Persistence models for subscription webhooks and their reconciliation."""
from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q

from accounts.models import User


class Provider(models.TextChoices):
    HOTMART = "hotmart", "Hotmart"
    DOPPUS = "doppus", "Doppus"


class Subscription(models.Model):
    """A user's subscription window; only the state machine changes its status."""

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        CANCELED = "canceled", "Canceled"
        EXPIRED = "expired", "Expired"
        REFUNDED = "refunded", "Refunded"
        DISPUTED = "disputed", "Disputed"

    TERMINAL_STATUSES = frozenset({Status.CANCELED, Status.EXPIRED, Status.REFUNDED, Status.DISPUTED})

    id = models.BigAutoField(primary_key=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    plan_type = models.CharField(max_length=20, choices=User.PlanType.choices, default=User.PlanType.NONE)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Null for lifetime plans.",
    )
    origin = models.CharField(max_length=20, choices=User.SubscriptionSource.choices)
    transaction_id = models.CharField(max_length=255, blank=True)
    last_event = models.CharField(max_length=100, blank=True)
    last_event_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Occurrence time of the last event applied to this subscription.",
    )
    canceled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_subscription"
        ordering = ["-start_date"]
        indexes = [
            models.Index(fields=["user", "status"], name="billing_sub_user_status_idx"),
            models.Index(fields=["status", "end_date"], name="billing_sub_status_end_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["user"],
                condition=Q(status="active"),
                name="billing_one_active_subscription_per_user",
            ),
        ]

    @property
    def is_lifetime(self) -> bool:
        return self.end_date is None

    def __str__(self):
        return f"Subscription<{self.user_id}:{self.plan_type}:{self.status}>"


class ProductMapping(models.Model):
    """Administrator-managed link between a provider product/offer and an internal plan."""

    id = models.BigAutoField(primary_key=True)
    provider = models.CharField(max_length=20, choices=Provider.choices)
    product_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Provider product identifier. Blank for offer-keyed providers.",
    )
    offer_code = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Offer code; leave empty for the product's default mapping.",
    )
    plan_type = models.CharField(max_length=20, choices=User.PlanType.choices)
    duration_days = models.PositiveIntegerField(default=30)
    description = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_product_mapping"
        ordering = ["provider", "product_id", "offer_code"]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "product_id", "offer_code"],
                condition=Q(offer_code__isnull=False),
                name="billing_unique_offer_mapping",
            ),
            models.UniqueConstraint(
                fields=["provider", "product_id"],
                condition=Q(offer_code__isnull=True),
                name="billing_single_default_mapping",
            ),
        ]

    def __str__(self):
        return f"ProductMapping<{self.provider}:{self.product_id}:{self.offer_code or '*'} -> {self.plan_type}>"


class WebhookLogEntry(models.Model):
    """Audit trail row written once per inbound webhook delivery."""

    class Status(models.TextChoices):
        RECEIVED = "received", "Received"
        PROCESSED = "processed", "Processed"
        ERROR = "error", "Error"

    id = models.BigAutoField(primary_key=True)
    provider = models.CharField(max_length=20, choices=Provider.choices)
    event_type = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.RECEIVED)
    email = models.CharField(max_length=254, blank=True)
    transaction_id = models.CharField(max_length=255, blank=True)
    dedup_key = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
        help_text="SHA256 of provider, transaction id and event type.",
    )
    raw_payload = models.JSONField(null=True, blank=True)
    error_message = models.TextField(blank=True)
    warnings = models.JSONField(default=list, blank=True)
    duplicate = models.BooleanField(default=False)
    source_ip = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "billing_webhook_log"
        verbose_name = "Webhook log entry"
        verbose_name_plural = "Webhook log entries"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="webhook_log_status_idx"),
            models.Index(fields=["provider", "event_type"], name="webhook_log_event_idx"),
            models.Index(fields=["email"], name="webhook_log_email_idx"),
            models.Index(fields=["transaction_id"], name="webhook_log_txn_idx"),
        ]

    def __str__(self):
        return f"WebhookLogEntry<{self.provider}:{self.event_type}:{self.status}>"


class ProcessedEvent(models.Model):
    """Dedup index: one row per successfully applied (provider, transaction, event type)."""

    id = models.BigAutoField(primary_key=True)
    dedup_key = models.CharField(max_length=64, unique=True)
    provider = models.CharField(max_length=20, choices=Provider.choices)
    transaction_id = models.CharField(max_length=255, blank=True)
    event_type = models.CharField(max_length=100, blank=True)
    webhook_log = models.ForeignKey(
        WebhookLogEntry,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="processed_events",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_processed_event"
        ordering = ["-created_at"]

    def __str__(self):
        return f"ProcessedEvent<{self.provider}:{self.transaction_id}:{self.event_type}>"


class FailedWebhook(models.Model):
    """Dead-letter row holding a delivery whose processing failed."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        RETRYING = "retrying", "Retrying"
        RESOLVED = "resolved", "Resolved"
        ABANDONED = "abandoned", "Abandoned"

    id = models.BigAutoField(primary_key=True)
    webhook_log = models.ForeignKey(
        WebhookLogEntry,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="failures",
    )
    source = models.CharField(max_length=20, choices=Provider.choices)
    payload = models.JSONField(help_text="Raw payload that failed processing.")
    error_message = models.TextField(help_text="Summary of why handling failed.")
    retry_count = models.PositiveIntegerField(default=0)
    last_retry_at = models.DateTimeField(null=True, blank=True)
    next_retry_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the retry worker may pick this row up. Null means manual retry only.",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_failed_webhook"
        verbose_name = "Failed webhook"
        verbose_name_plural = "Failed webhooks"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "next_retry_at"], name="failed_webhook_due_idx"),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in {self.Status.RESOLVED, self.Status.ABANDONED}

    def __str__(self):
        return f"FailedWebhook<{self.id}:{self.source}:{self.status}>"
