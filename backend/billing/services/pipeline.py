"""Webhook ingestion pipeline.

A delivery flows through: audit log receipt, credential check, normalization, dedup
claim, plan resolution, state machine, then the final audit status. Every outcome is
expressed as a HandlerResult; nothing here raises to the HTTP layer for a payload
problem. Failures land in the dead-letter queue.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional

from celery.exceptions import SoftTimeLimitExceeded
from django.conf import settings
from django.db import transaction

from billing.constants import SubscriptionAction
from billing.models import WebhookLogEntry
from billing.observability.logging import log_billing_event
from billing.observability.metrics import (
    WEBHOOK_DUPLICATE_COUNT,
    WEBHOOK_PROCESSING_LATENCY,
    WEBHOOK_RECEIVED_COUNT,
)
from billing.services import audit_log
from billing.services.dead_letter import enqueue as enqueue_dead_letter
from billing.services.idempotency import claim_event, compute_dedup_key, is_already_processed
from billing.services.normalizers import NormalizationError, SubscriptionEvent, decode_body, normalize_payload
from billing.services.product_mapping import resolve_plan
from billing.services.results import HandlerResult, WebhookAuthenticationError, WebhookProcessingError
from billing.services.signatures import verify_delivery
from billing.services.subscription_lifecycle import TransitionResult, apply_event

logger = logging.getLogger(__name__)


def processing_timeout() -> int:
    return int(getattr(settings, "BILLING_WEBHOOK_PROCESSING_TIMEOUT", 10))


def _raw_body_for_audit(body: bytes) -> Dict[str, Any]:
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else str(body or "")
    return {"_raw_body": text[:10000]}


def handle_delivery(
    provider: str,
    body: bytes,
    *,
    headers: Optional[Mapping[str, str]] = None,
    source_ip: Optional[str] = None,
) -> HandlerResult:
    """Record and process one inbound webhook delivery."""

    started = time.monotonic()
    headers = headers or {}

    try:
        payload = decode_body(body)
    except NormalizationError as exc:
        entry = audit_log.record_delivery(provider, _raw_body_for_audit(body), source_ip=source_ip)
        result = _fail(entry, entry.raw_payload, str(exc), retryable=False, reason=exc.code)
        return _observe(provider, result, started)

    entry = audit_log.record_delivery(provider, payload, source_ip=source_ip)

    try:
        warning = verify_delivery(provider, body, headers, payload)
    except WebhookAuthenticationError as exc:
        result = _fail(entry, payload, str(exc), retryable=False, reason="authentication")
        return _observe(provider, result, started)
    if warning:
        audit_log.add_warning(entry, warning)

    if getattr(settings, "BILLING_WEBHOOK_ASYNC", False):
        result = _enqueue_processing(entry, payload)
        return _observe(provider, result, started)

    result = process_logged_delivery(entry, payload, deadline=started + processing_timeout())
    return _observe(provider, result, started)


def _enqueue_processing(entry: WebhookLogEntry, payload: Mapping[str, Any]) -> HandlerResult:
    from billing.tasks import process_webhook_delivery

    timeout = processing_timeout()
    try:
        process_webhook_delivery.apply_async(
            args=[entry.pk],
            soft_time_limit=timeout,
            time_limit=timeout + 5,
        )
    except Exception as exc:
        logger.exception("Could not queue webhook log %s for processing.", entry.pk)
        return _fail(entry, payload, f"Could not queue for processing: {exc}", retryable=True, reason="enqueue")

    return HandlerResult(
        status=HandlerResult.QUEUED,
        detail="Webhook accepted for processing.",
        webhook_log_id=entry.pk,
        warnings=tuple(entry.warnings or ()),
    )


class ProcessingDeadlineExceeded(Exception):
    """Raised between pipeline stages once the synchronous budget is spent."""


def _check_deadline(deadline: Optional[float], stage: str) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        raise ProcessingDeadlineExceeded(f"Processing budget of {processing_timeout()}s exceeded before {stage}.")


def process_logged_delivery(
    entry: WebhookLogEntry,
    payload: Any,
    *,
    dead_letter: bool = True,
    deadline: Optional[float] = None,
) -> HandlerResult:
    """Run an already-recorded delivery through normalization and the state machine.

    With ``dead_letter=False`` failures are only reported, never enqueued; the
    dead-letter worker uses this while retrying a stored row. ``deadline`` is a
    ``time.monotonic()`` value; once it passes, the delivery is dead-lettered as a
    retryable timeout before the next stage starts. The mutation transaction itself is
    bounded by the database statement timeout.
    """

    warnings = []
    try:
        try:
            event = normalize_payload(entry.provider, payload)
        except NormalizationError as exc:
            audit_log.annotate_from_mapping(entry, exc.partial)
            return _fail(entry, payload, str(exc), retryable=False, reason=exc.code, dead_letter=dead_letter)

        dedup_key = compute_dedup_key(event.provider, event.transaction_id, event.event_type, payload)
        audit_log.annotate(
            entry,
            event_type=event.event_type,
            email=event.email,
            transaction_id=event.transaction_id,
            dedup_key=dedup_key,
        )

        if event.action == SubscriptionAction.UNHANDLED:
            return _ignored(entry, event)

        _check_deadline(deadline, "the duplicate check")
        if is_already_processed(dedup_key):
            return _duplicate(entry, event)

        plan = None
        if event.action == SubscriptionAction.ACTIVATE:
            plan = resolve_plan(event.provider, event.product_id, event.offer_code)
            if plan.fallback:
                warnings.append(
                    f"No product mapping for product '{event.product_id}' offer '{event.offer_code or ''}'; "
                    f"used {plan.describe()}."
                )

        _check_deadline(deadline, "the subscription update")
        with transaction.atomic():
            claimed = claim_event(
                dedup_key=dedup_key,
                provider=event.provider,
                transaction_id=event.transaction_id,
                event_type=event.event_type,
                webhook_log=entry,
            )
            transition = apply_event(event, plan=plan) if claimed else None
            if transition is not None and transition.applied:
                _schedule_notification(transition)
    except WebhookProcessingError as exc:
        return _fail(entry, payload, str(exc), retryable=False, reason="processing", dead_letter=dead_letter,
                     warnings=warnings)
    except ProcessingDeadlineExceeded as exc:
        logger.warning("Webhook log %s: %s", entry.pk, exc)
        return _fail(entry, payload, str(exc), retryable=True, reason="timeout",
                     dead_letter=dead_letter, warnings=warnings)
    except SoftTimeLimitExceeded:
        logger.warning("Webhook log %s exceeded its processing time limit.", entry.pk)
        return _fail(entry, payload, "Processing timed out.", retryable=True, reason="timeout",
                     dead_letter=dead_letter, warnings=warnings)
    except Exception as exc:
        logger.exception("Unexpected error processing webhook log %s.", entry.pk)
        return _fail(entry, payload, f"{exc.__class__.__name__}: {exc}", retryable=True, reason="error",
                     dead_letter=dead_letter, warnings=warnings)

    if transition is None:
        return _duplicate(entry, event)

    warnings.extend(transition.warnings)
    audit_log.finalize(entry, WebhookLogEntry.Status.PROCESSED, warnings=warnings)
    log_billing_event(
        message="Webhook processed",
        provider=event.provider,
        event_type=event.event_type,
        email=event.email,
        transaction_id=event.transaction_id,
        extra={"action": event.action.value, "applied": transition.applied, "detail": transition.detail},
    )
    return HandlerResult(
        status=HandlerResult.PROCESSED,
        detail=transition.detail,
        webhook_log_id=entry.pk,
        user_id=transition.user.pk if transition.user else None,
        subscription_id=transition.subscription.pk if transition.subscription else None,
        warnings=tuple(entry.warnings or ()),
    )


def _ignored(entry: WebhookLogEntry, event: SubscriptionEvent) -> HandlerResult:
    audit_log.finalize(entry, WebhookLogEntry.Status.RECEIVED)
    log_billing_event(
        message="Ignoring unhandled webhook event",
        provider=event.provider,
        event_type=event.event_type,
        email=event.email,
        transaction_id=event.transaction_id,
    )
    return HandlerResult(
        status=HandlerResult.IGNORED,
        detail=f"Event type '{event.event_type}' is not handled.",
        webhook_log_id=entry.pk,
        warnings=tuple(entry.warnings or ()),
    )


def _duplicate(entry: WebhookLogEntry, event: SubscriptionEvent) -> HandlerResult:
    audit_log.finalize(entry, WebhookLogEntry.Status.PROCESSED, duplicate=True)
    WEBHOOK_DUPLICATE_COUNT.labels(provider=event.provider).inc()
    log_billing_event(
        message="Duplicate webhook delivery",
        provider=event.provider,
        event_type=event.event_type,
        email=event.email,
        transaction_id=event.transaction_id,
    )
    return HandlerResult(
        status=HandlerResult.DUPLICATE,
        detail="Event already processed.",
        webhook_log_id=entry.pk,
    )


def _fail(
    entry: WebhookLogEntry,
    payload: Any,
    message: str,
    *,
    retryable: bool,
    reason: str,
    dead_letter: bool = True,
    warnings=(),
) -> HandlerResult:
    audit_log.finalize(entry, WebhookLogEntry.Status.ERROR, error_message=message, warnings=warnings)
    if dead_letter:
        enqueue_dead_letter(
            entry,
            payload,
            message,
            source=entry.provider,
            retryable=retryable,
            reason=reason,
        )
    return HandlerResult(
        status=HandlerResult.FAILED,
        detail=message,
        webhook_log_id=entry.pk,
        retryable=retryable,
        warnings=tuple(entry.warnings or ()),
    )


def _observe(provider: str, result: HandlerResult, started: float) -> HandlerResult:
    WEBHOOK_RECEIVED_COUNT.labels(provider=provider, outcome=result.status).inc()
    WEBHOOK_PROCESSING_LATENCY.labels(provider=provider).observe(time.monotonic() - started)
    return result


def _schedule_notification(transition: TransitionResult) -> None:
    from billing.tasks import send_subscription_notification

    user = transition.user
    subscription = transition.subscription
    if user is None or subscription is None:
        return
    kwargs = {
        "user_id": user.pk,
        "action": transition.action.value,
        "subscription_id": subscription.pk,
        "new_account": transition.user_created,
    }
    transaction.on_commit(lambda: send_subscription_notification.delay(**kwargs))
