"""Deterministic dedup keys and the database-enforced processed-event claim."""
from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Mapping, Optional

from django.db import IntegrityError, transaction

from billing.models import ProcessedEvent, WebhookLogEntry

logger = logging.getLogger(__name__)


def hash_payload(payload: Any) -> str:
    try:
        serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    except TypeError:
        serialized = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def compute_dedup_key(
    provider: str,
    transaction_id: Optional[str],
    event_type: str,
    payload: Optional[Mapping[str, Any]] = None,
) -> str:
    """Return ``sha256(provider|transaction|event_type)``.

    Payloads without a transaction id fall back to the canonical payload hash so that
    byte-identical redeliveries still collapse to one key.
    """

    transaction_part = (transaction_id or "").strip()
    if not transaction_part:
        transaction_part = f"payload:{hash_payload(payload or {})}"
    material = "|".join((provider, transaction_part, (event_type or "").strip().upper()))
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def is_already_processed(dedup_key: str) -> bool:
    return ProcessedEvent.objects.filter(dedup_key=dedup_key).exists()


def claim_event(
    *,
    dedup_key: str,
    provider: str,
    transaction_id: str,
    event_type: str,
    webhook_log: Optional[WebhookLogEntry] = None,
) -> bool:
    """Insert the dedup row; False means another delivery already applied this event.

    Must run inside the transaction that applies the event's mutations so the claim
    commits or rolls back together with them. Concurrent claims of one key serialise
    on the unique index.
    """

    try:
        with transaction.atomic():
            ProcessedEvent.objects.create(
                dedup_key=dedup_key,
                provider=provider,
                transaction_id=transaction_id or "",
                event_type=event_type or "",
                webhook_log=webhook_log,
            )
    except IntegrityError:
        logger.info("Dedup key %s already claimed; treating delivery as duplicate.", dedup_key[:12])
        return False
    return True
