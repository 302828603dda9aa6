"""Dead-letter queue for webhook deliveries whose processing failed."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from billing.models import FailedWebhook, WebhookLogEntry
from billing.observability.logging import log_billing_event
from billing.observability.metrics import WEBHOOK_DEAD_LETTER_COUNT, WEBHOOK_RETRY_COUNT
from billing.services.results import DeadLetterError, HandlerResult

logger = logging.getLogger(__name__)


def max_retries() -> int:
    return int(getattr(settings, "BILLING_WEBHOOK_MAX_RETRIES", 5))


def compute_backoff(retry_count: int) -> timedelta:
    """Delay before the next attempt: ``base * 2**retry_count`` capped at the configured maximum."""

    base = int(getattr(settings, "BILLING_WEBHOOK_RETRY_BASE_SECONDS", 60))
    cap = int(getattr(settings, "BILLING_WEBHOOK_RETRY_MAX_SECONDS", 6 * 60 * 60))
    exponent = min(max(retry_count, 0), 32)
    return timedelta(seconds=min(base * (2 ** exponent), cap))


def enqueue(
    webhook_log: Optional[WebhookLogEntry],
    payload: Any,
    error_message: str,
    *,
    source: str,
    retryable: bool = True,
    reason: str = "",
) -> FailedWebhook:
    """Store a failed delivery. Non-retryable rows are only retried by an operator."""

    now = timezone.now()
    failed = FailedWebhook.objects.create(
        webhook_log=webhook_log,
        source=source,
        payload=payload if payload is not None else {},
        error_message=error_message or "unknown error",
        next_retry_at=now + compute_backoff(0) if retryable else None,
        status=FailedWebhook.Status.PENDING,
    )
    WEBHOOK_DEAD_LETTER_COUNT.labels(
        provider=source,
        reason=reason or ("retryable" if retryable else "fatal"),
    ).inc()
    log_billing_event(
        message="Webhook dead-lettered",
        provider=source,
        event_type=webhook_log.event_type if webhook_log else None,
        email=webhook_log.email if webhook_log else None,
        transaction_id=webhook_log.transaction_id if webhook_log else None,
        extra={"failed_webhook_id": failed.pk, "retryable": retryable, "error": error_message},
        level=logging.WARNING,
    )
    return failed


def due_failed_webhooks(*, now: Optional[datetime] = None, limit: int = 100) -> List[int]:
    now = now or timezone.now()
    return list(
        FailedWebhook.objects.filter(
            status=FailedWebhook.Status.PENDING,
            next_retry_at__isnull=False,
            next_retry_at__lte=now,
        )
        .order_by("next_retry_at")
        .values_list("pk", flat=True)[:limit]
    )


def _claim_for_retry(failed_id: int, *, manual: bool, now: datetime) -> FailedWebhook:
    with transaction.atomic():
        failed = (
            FailedWebhook.objects.select_for_update()
            .select_related("webhook_log")
            .filter(pk=failed_id)
            .first()
        )
        if failed is None:
            raise DeadLetterError(f"Failed webhook {failed_id} does not exist.")

        allowed = {FailedWebhook.Status.PENDING}
        if manual:
            allowed.add(FailedWebhook.Status.ABANDONED)
        if failed.status not in allowed:
            raise DeadLetterError(f"Failed webhook {failed_id} is {failed.status}; cannot retry.")
        if not manual and (failed.next_retry_at is None or failed.next_retry_at > now):
            raise DeadLetterError(f"Failed webhook {failed_id} is not due for automatic retry.")

        failed.status = FailedWebhook.Status.RETRYING
        failed.save(update_fields=["status", "updated_at"])
    return failed


def retry(failed_id: int, *, manual: bool = False) -> FailedWebhook:
    """Re-run the stored payload through the pipeline and record the attempt."""

    from billing.services.pipeline import process_logged_delivery
    from billing.services.audit_log import record_delivery

    now = timezone.now()
    failed = _claim_for_retry(failed_id, manual=manual, now=now)

    entry = failed.webhook_log
    if entry is None:
        # Log row purged; keep the audit trail for this attempt.
        entry = record_delivery(failed.source, failed.payload)
        failed.webhook_log = entry

    try:
        result = process_logged_delivery(entry, failed.payload, dead_letter=False)
    except Exception as exc:
        # A crash must not strand the row in RETRYING.
        logger.exception("Retry of failed webhook %s raised.", failed.pk)
        result = HandlerResult(
            status=HandlerResult.FAILED,
            detail=f"{exc.__class__.__name__}: {exc}",
            retryable=True,
        )

    finished = timezone.now()
    failed.retry_count += 1
    failed.last_retry_at = finished
    if result.success:
        failed.status = FailedWebhook.Status.RESOLVED
        failed.resolved_at = finished
        failed.next_retry_at = None
    else:
        failed.error_message = result.detail or failed.error_message
        if not result.retryable or failed.retry_count >= max_retries():
            failed.status = FailedWebhook.Status.ABANDONED
            failed.next_retry_at = None
        else:
            failed.status = FailedWebhook.Status.PENDING
            failed.next_retry_at = finished + compute_backoff(failed.retry_count)
    failed.save(
        update_fields=[
            "webhook_log",
            "retry_count",
            "last_retry_at",
            "status",
            "resolved_at",
            "next_retry_at",
            "error_message",
            "updated_at",
        ]
    )

    WEBHOOK_RETRY_COUNT.labels(outcome=failed.status).inc()
    logger.info(
        "Retry %s of failed webhook %s finished with status=%s (%s).",
        failed.retry_count,
        failed.pk,
        failed.status,
        result.detail or result.status,
    )
    return failed
