from django.contrib import admin, messages
from django.urls import reverse
from django.utils.html import format_html

from .models import FailedWebhook, ProcessedEvent, ProductMapping, Subscription, WebhookLogEntry
from .services import dead_letter
from .services.results import DeadLetterError


def _short(text: str, limit: int = 120) -> str:
    if not text:
        return "-"
    snippet = text.strip().splitlines()[0]
    if len(snippet) > limit:
        snippet = f"{snippet[:limit - 3]}..."
    return snippet


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    """Inspect subscription windows written by provider webhooks."""

    list_display = ("id", "user_link", "plan_type", "status", "origin", "start_date", "end_date", "last_event")
    search_fields = ("user__email", "user__username", "transaction_id", "last_event")
    list_filter = ("status", "plan_type", "origin", "start_date")
    readonly_fields = ("created_at", "updated_at", "last_event", "last_event_at")
    ordering = ("-start_date",)
    list_select_related = ("user",)
    raw_id_fields = ("user",)

    fieldsets = (
        ("Subscription", {"fields": ("user", "plan_type", "status", "origin", "transaction_id")}),
        ("Window", {"fields": ("start_date", "end_date", "canceled_at")}),
        ("Last event", {"fields": ("last_event", "last_event_at")}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    @admin.display(description="User")
    def user_link(self, obj):
        url = reverse("admin:accounts_user_change", args=[obj.user_id])
        return format_html('<a href="{}">{}</a>', url, obj.user.email)


@admin.register(ProductMapping)
class ProductMappingAdmin(admin.ModelAdmin):
    list_display = ("provider", "product_id", "offer_display", "plan_type", "duration_days", "description", "updated_at")
    search_fields = ("product_id", "offer_code", "description")
    list_filter = ("provider", "plan_type")
    readonly_fields = ("created_at", "updated_at")
    ordering = ("provider", "product_id", "offer_code")

    @admin.display(description="Offer")
    def offer_display(self, obj):
        return obj.offer_code or "(default)"


@admin.register(WebhookLogEntry)
class WebhookLogEntryAdmin(admin.ModelAdmin):
    """Monitor webhook deliveries and their outcome."""

    list_display = (
        "id",
        "provider",
        "event_type",
        "status",
        "duplicate",
        "email",
        "transaction_id",
        "created_at",
        "error_short",
    )
    search_fields = ("email", "transaction_id", "event_type", "dedup_key")
    list_filter = ("provider", "status", "duplicate", "created_at")
    readonly_fields = tuple(field.name for field in WebhookLogEntry._meta.fields)
    ordering = ("-created_at",)

    fieldsets = (
        ("Delivery", {"fields": ("id", "provider", "event_type", "status", "duplicate", "source_ip")}),
        ("Identity", {"fields": ("email", "transaction_id", "dedup_key")}),
        ("Outcome", {"fields": ("error_message", "warnings", "created_at", "processed_at")}),
        ("Payload", {"fields": ("raw_payload",)}),
    )

    @admin.display(description="Error")
    def error_short(self, obj):
        return _short(obj.error_message)

    def has_add_permission(self, request):
        return False


@admin.register(ProcessedEvent)
class ProcessedEventAdmin(admin.ModelAdmin):
    list_display = ("dedup_key", "provider", "transaction_id", "event_type", "webhook_log", "created_at")
    search_fields = ("dedup_key", "transaction_id", "event_type")
    list_filter = ("provider", "event_type")
    readonly_fields = tuple(field.name for field in ProcessedEvent._meta.fields)
    ordering = ("-created_at",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(FailedWebhook)
class FailedWebhookAdmin(admin.ModelAdmin):
    """Allow support to inspect and replay failed webhook deliveries."""

    list_display = (
        "id",
        "source",
        "status",
        "retry_count",
        "next_retry_at",
        "last_retry_at",
        "log_link",
        "error_short",
        "created_at",
    )
    search_fields = ("error_message", "webhook_log__email", "webhook_log__transaction_id")
    list_filter = ("status", "source", "created_at")
    readonly_fields = (
        "webhook_log",
        "source",
        "payload",
        "error_message",
        "retry_count",
        "last_retry_at",
        "resolved_at",
        "created_at",
        "updated_at",
    )
    ordering = ("-created_at",)
    actions = ("retry_selected",)

    fieldsets = (
        ("Failure", {"fields": ("webhook_log", "source", "status", "error_message")}),
        ("Retries", {"fields": ("retry_count", "next_retry_at", "last_retry_at", "resolved_at")}),
        ("Payload", {"fields": ("payload", "created_at", "updated_at")}),
    )

    @admin.display(description="Webhook log")
    def log_link(self, obj):
        if not obj.webhook_log_id:
            return "-"
        url = reverse("admin:billing_webhooklogentry_change", args=[obj.webhook_log_id])
        return format_html('<a href="{}">#{}</a>', url, obj.webhook_log_id)

    @admin.display(description="Error")
    def error_short(self, obj):
        return _short(obj.error_message)

    @admin.action(description="Retry selected failed webhooks now")
    def retry_selected(self, request, queryset):
        resolved = failed = skipped = 0
        for failed_id in queryset.values_list("pk", flat=True):
            try:
                row = dead_letter.retry(failed_id, manual=True)
            except DeadLetterError:
                skipped += 1
                continue
            if row.status == FailedWebhook.Status.RESOLVED:
                resolved += 1
            else:
                failed += 1
        level = messages.SUCCESS if not failed else messages.WARNING
        self.message_user(request, f"Retried: {resolved} resolved, {failed} still failing, {skipped} skipped.", level)
