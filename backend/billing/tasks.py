"""Celery tasks for webhook processing, dead-letter retries and subscription upkeep."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail
from django.db import OperationalError
from django.db.models import Q
from django.template.loader import render_to_string
from django.utils import timezone
from django.utils.html import strip_tags

from billing.models import FailedWebhook, Subscription, WebhookLogEntry
from billing.observability.logging import mask_email
from billing.services import audit_log, dead_letter, subscription_lifecycle
from billing.services.pipeline import process_logged_delivery
from billing.services.results import DeadLetterError, HandlerResult

logger = logging.getLogger(__name__)

User = get_user_model()


@shared_task(bind=True, queue="billing", autoretry_for=(OperationalError,), retry_backoff=True, max_retries=3)
def process_webhook_delivery(self, log_id: int) -> Dict[str, Any]:
    """Process a delivery recorded by the webhook view in asynchronous mode."""

    entry = WebhookLogEntry.objects.filter(pk=log_id).first()
    if entry is None:
        logger.warning("Webhook log %s vanished before processing.", log_id)
        return {"status": HandlerResult.IGNORED, "detail": "missing log entry"}

    if entry.status != WebhookLogEntry.Status.RECEIVED or entry.processed_at is not None:
        logger.info("Webhook log %s already finished with status=%s.", log_id, entry.status)
        return {"status": entry.status}

    try:
        result = process_logged_delivery(entry, entry.raw_payload)
    except SoftTimeLimitExceeded:
        logger.warning("Webhook log %s hit the soft time limit.", log_id)
        audit_log.finalize(entry, WebhookLogEntry.Status.ERROR, error_message="Processing timed out.")
        dead_letter.enqueue(
            entry,
            entry.raw_payload,
            "Processing timed out.",
            source=entry.provider,
            retryable=True,
            reason="timeout",
        )
        return {"status": HandlerResult.FAILED, "detail": "timeout"}

    return {"status": result.status, "detail": result.detail}


@shared_task(queue="billing")
def retry_failed_webhook(failed_id: int, manual: bool = False) -> Dict[str, Any]:
    try:
        failed = dead_letter.retry(failed_id, manual=manual)
    except DeadLetterError as exc:
        logger.info("Skipping retry of failed webhook %s: %s", failed_id, exc)
        return {"status": "skipped", "detail": str(exc)}
    return {"status": failed.status, "retry_count": failed.retry_count}


@shared_task(queue="billing")
def retry_due_failed_webhooks(limit: int = 100) -> Dict[str, int]:
    """Retry every pending dead-letter row whose backoff has elapsed."""

    stats = {"processed": 0, "resolved": 0, "pending": 0, "abandoned": 0, "skipped": 0}

    for failed_id in dead_letter.due_failed_webhooks(limit=limit):
        try:
            failed = dead_letter.retry(failed_id)
        except DeadLetterError as exc:
            # Another worker claimed it or the row changed underneath us.
            stats["skipped"] += 1
            logger.debug("Failed webhook %s not retried: %s", failed_id, exc)
            continue

        stats["processed"] += 1
        if failed.status == FailedWebhook.Status.RESOLVED:
            stats["resolved"] += 1
        elif failed.status == FailedWebhook.Status.ABANDONED:
            stats["abandoned"] += 1
        else:
            stats["pending"] += 1

    if stats["processed"]:
        logger.info("Dead-letter sweep: %s", stats)
    return stats


@shared_task(queue="billing")
def expire_lapsed_subscriptions() -> Dict[str, int]:
    return subscription_lifecycle.expire_lapsed_subscriptions()


@shared_task(queue="maintenance")
def cleanup_webhook_logs(days: Optional[int] = None) -> int:
    """Remove processed webhook log entries older than ``days`` days."""

    if days is None:
        days = int(getattr(settings, "BILLING_WEBHOOK_LOG_RETENTION_DAYS", 90))

    cutoff = timezone.now() - timedelta(days=days)
    open_failures = Q(
        failures__status__in=[
            FailedWebhook.Status.PENDING,
            FailedWebhook.Status.RETRYING,
            FailedWebhook.Status.ABANDONED,
        ]
    )
    stale_ids = list(
        WebhookLogEntry.objects.filter(created_at__lt=cutoff)
        .exclude(status=WebhookLogEntry.Status.ERROR)
        .exclude(open_failures)
        .values_list("pk", flat=True)
    )
    deleted, _ = WebhookLogEntry.objects.filter(pk__in=stale_ids).delete()

    logger.info("Cleaned up %s webhook log entries older than %s days.", deleted, days)
    return deleted


@shared_task(
    bind=True,
    queue="notifications",
    autoretry_for=(ConnectionError,),
    retry_backoff=True,
    max_retries=3,
)
def send_subscription_notification(
    self,
    user_id: int,
    action: str,
    subscription_id: Optional[int] = None,
    new_account: bool = False,
) -> bool:
    """Email the customer about a subscription change."""

    user = User.objects.filter(pk=user_id).first()
    if user is None or not user.email:
        return False
    subscription = Subscription.objects.filter(pk=subscription_id).first() if subscription_id else None

    if action == "activate":
        if subscription is None or subscription.status != Subscription.Status.ACTIVE:
            return False
        subject = f"Your {getattr(settings, 'SITE_NAME', 'Payhooks')} subscription is active"
        template = "emails/subscription_activated.html"
    else:
        subject = f"Your {getattr(settings, 'SITE_NAME', 'Payhooks')} subscription has changed"
        template = "emails/subscription_ended.html"

    context = {
        "user": user,
        "subscription": subscription,
        "action": action,
        "new_account": new_account,
        "default_password": getattr(settings, "BILLING_DEFAULT_PASSWORD", "") if new_account else "",
        "site_name": getattr(settings, "SITE_NAME", "Payhooks"),
        "site_url": getattr(settings, "SITE_URL", "http://localhost:8000"),
    }
    html_message = render_to_string(template, context)

    try:
        send_mail(
            subject=subject,
            message=strip_tags(html_message),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[user.email],
            html_message=html_message,
            fail_silently=False,
        )
    except ConnectionError:
        raise
    except Exception as exc:
        logger.error("Failed to send %s notification to %s: %s", action, mask_email(user.email), exc)
        return False

    logger.info("Sent %s notification to %s.", action, mask_email(user.email))
    return True
