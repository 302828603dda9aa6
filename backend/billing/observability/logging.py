"""Structured logging helper for webhook processing."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("billing")


def mask_email(email: Optional[str]) -> str:
    if not email or "@" not in email:
        return email or ""
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"


def log_billing_event(*, message: str, provider: Optional[str] = None, event_type: Optional[str] = None,
                      email: Optional[str] = None, transaction_id: Optional[str] = None,
                      extra: Optional[Dict[str, Any]] = None, level: int = logging.INFO) -> None:
    payload: Dict[str, Any] = {"message": message}
    if provider:
        payload["provider"] = provider
    if event_type:
        payload["event_type"] = event_type
    if email:
        payload["email"] = mask_email(email)
    if transaction_id:
        payload["transaction_id"] = transaction_id
    if extra:
        payload.update(extra)
    logger.log(level, payload)
