"""Webhook audit trail: one WebhookLogEntry per inbound delivery."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from django.db import transaction
from django.utils import timezone

from billing.models import WebhookLogEntry

logger = logging.getLogger(__name__)


def record_delivery(
    provider: str,
    raw_payload: Optional[Any],
    *,
    source_ip: Optional[str] = None,
    event_type: str = "",
    email: str = "",
    transaction_id: str = "",
) -> WebhookLogEntry:
    """Persist the receipt of a delivery before any processing happens.

    Runs in its own transaction so the row survives a rollback of the processing
    that follows.
    """

    with transaction.atomic():
        entry = WebhookLogEntry.objects.create(
            provider=provider,
            event_type=(event_type or "")[:100],
            email=(email or "")[:254],
            transaction_id=(transaction_id or "")[:255],
            raw_payload=raw_payload,
            source_ip=source_ip or None,
            status=WebhookLogEntry.Status.RECEIVED,
        )
    return entry


def annotate(
    entry: WebhookLogEntry,
    *,
    event_type: str = "",
    email: str = "",
    transaction_id: str = "",
    dedup_key: str = "",
) -> None:
    """Copy identifying fields from the normalized (or partially parsed) event."""

    updates = []
    for field_name, value, limit in (
        ("event_type", event_type, 100),
        ("email", email, 254),
        ("transaction_id", transaction_id, 255),
        ("dedup_key", dedup_key, 64),
    ):
        value = (value or "")[:limit]
        if value and getattr(entry, field_name) != value:
            setattr(entry, field_name, value)
            updates.append(field_name)
    if updates:
        entry.save(update_fields=updates)


def annotate_from_mapping(entry: WebhookLogEntry, partial: Mapping[str, Any]) -> None:
    annotate(
        entry,
        event_type=str(partial.get("event_type") or ""),
        email=str(partial.get("email") or ""),
        transaction_id=str(partial.get("transaction_id") or ""),
    )


def finalize(
    entry: WebhookLogEntry,
    status: str,
    *,
    error_message: str = "",
    warnings: Iterable[str] = (),
    duplicate: bool = False,
) -> WebhookLogEntry:
    """Record the final outcome of a delivery on its log entry."""

    merged = list(entry.warnings or [])
    for warning in warnings:
        if warning and warning not in merged:
            merged.append(warning)

    entry.status = status
    entry.error_message = error_message or ""
    entry.warnings = merged
    entry.duplicate = duplicate
    entry.processed_at = timezone.now()
    entry.save(update_fields=["status", "error_message", "warnings", "duplicate", "processed_at"])

    if status == WebhookLogEntry.Status.ERROR:
        logger.warning("Webhook log %s finished with error: %s", entry.pk, error_message)
    return entry


def add_warning(entry: WebhookLogEntry, warning: str) -> None:
    warnings = list(entry.warnings or [])
    if warning not in warnings:
        warnings.append(warning)
        entry.warnings = warnings
        entry.save(update_fields=["warnings"])
