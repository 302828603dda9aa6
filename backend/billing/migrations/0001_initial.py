from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


PLAN_TYPE_CHOICES = [
    ("none", "None"),
    ("free_trial", "Free trial"),
    ("monthly", "Monthly"),
    ("semiannual", "Semiannual"),
    ("annual", "Annual"),
    ("lifetime", "Lifetime"),
    ("custom", "Custom"),
]

PROVIDER_CHOICES = [("hotmart", "Hotmart"), ("doppus", "Doppus")]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ProductMapping",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                (
                    "product_id",
                    models.CharField(
                        blank=True,
                        help_text="Provider product identifier. Blank for offer-keyed providers.",
                        max_length=255,
                    ),
                ),
                (
                    "offer_code",
                    models.CharField(
                        blank=True,
                        help_text="Offer code; leave empty for the product's default mapping.",
                        max_length=255,
                        null=True,
                    ),
                ),
                ("plan_type", models.CharField(choices=PLAN_TYPE_CHOICES, max_length=20)),
                ("duration_days", models.PositiveIntegerField(default=30)),
                ("description", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "billing_product_mapping",
                "ordering": ["provider", "product_id", "offer_code"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(offer_code__isnull=False),
                        fields=("provider", "product_id", "offer_code"),
                        name="billing_unique_offer_mapping",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(offer_code__isnull=True),
                        fields=("provider", "product_id"),
                        name="billing_single_default_mapping",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookLogEntry",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("event_type", models.CharField(blank=True, max_length=100)),
                (
                    "status",
                    models.CharField(
                        choices=[("received", "Received"), ("processed", "Processed"), ("error", "Error")],
                        default="received",
                        max_length=20,
                    ),
                ),
                ("email", models.CharField(blank=True, max_length=254)),
                ("transaction_id", models.CharField(blank=True, max_length=255)),
                (
                    "dedup_key",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="SHA256 of provider, transaction id and event type.",
                        max_length=64,
                    ),
                ),
                ("raw_payload", models.JSONField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True)),
                ("warnings", models.JSONField(blank=True, default=list)),
                ("duplicate", models.BooleanField(default=False)),
                ("source_ip", models.GenericIPAddressField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "verbose_name": "Webhook log entry",
                "verbose_name_plural": "Webhook log entries",
                "db_table": "billing_webhook_log",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status"], name="webhook_log_status_idx"),
                    models.Index(fields=["provider", "event_type"], name="webhook_log_event_idx"),
                    models.Index(fields=["email"], name="webhook_log_email_idx"),
                    models.Index(fields=["transaction_id"], name="webhook_log_txn_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("plan_type", models.CharField(choices=PLAN_TYPE_CHOICES, default="none", max_length=20)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("canceled", "Canceled"),
                            ("expired", "Expired"),
                            ("refunded", "Refunded"),
                            ("disputed", "Disputed"),
                        ],
                        default="active",
                        max_length=20,
                    ),
                ),
                ("start_date", models.DateTimeField()),
                ("end_date", models.DateTimeField(blank=True, help_text="Null for lifetime plans.", null=True)),
                (
                    "origin",
                    models.CharField(
                        choices=[("manual", "Manual"), ("hotmart", "Hotmart"), ("doppus", "Doppus")],
                        max_length=20,
                    ),
                ),
                ("transaction_id", models.CharField(blank=True, max_length=255)),
                ("last_event", models.CharField(blank=True, max_length=100)),
                (
                    "last_event_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Occurrence time of the last event applied to this subscription.",
                        null=True,
                    ),
                ),
                ("canceled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "billing_subscription",
                "ordering": ["-start_date"],
                "indexes": [
                    models.Index(fields=["user", "status"], name="billing_sub_user_status_idx"),
                    models.Index(fields=["status", "end_date"], name="billing_sub_status_end_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(status="active"),
                        fields=("user",),
                        name="billing_one_active_subscription_per_user",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ProcessedEvent",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("dedup_key", models.CharField(max_length=64, unique=True)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("transaction_id", models.CharField(blank=True, max_length=255)),
                ("event_type", models.CharField(blank=True, max_length=100)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "webhook_log",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="processed_events",
                        to="billing.webhooklogentry",
                    ),
                ),
            ],
            options={
                "db_table": "billing_processed_event",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="FailedWebhook",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("source", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("payload", models.JSONField(help_text="Raw payload that failed processing.")),
                ("error_message", models.TextField(help_text="Summary of why handling failed.")),
                ("retry_count", models.PositiveIntegerField(default=0)),
                ("last_retry_at", models.DateTimeField(blank=True, null=True)),
                (
                    "next_retry_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the retry worker may pick this row up. Null means manual retry only.",
                        null=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("retrying", "Retrying"),
                            ("resolved", "Resolved"),
                            ("abandoned", "Abandoned"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "webhook_log",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="failures",
                        to="billing.webhooklogentry",
                    ),
                ),
            ],
            options={
                "verbose_name": "Failed webhook",
                "verbose_name_plural": "Failed webhooks",
                "db_table": "billing_failed_webhook",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "next_retry_at"], name="failed_webhook_due_idx"),
                ],
            },
        ),
    ]
