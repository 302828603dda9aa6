"""Provider credential checks for inbound webhooks."""
from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any, Mapping, Optional

from django.conf import settings

from billing.constants import DOPPUS_SIGNATURE_HEADER, HOTMART_TOKEN_HEADERS
from billing.models import Provider
from billing.services.results import WebhookAuthenticationError

logger = logging.getLogger(__name__)


def _header(headers: Mapping[str, str], name: str) -> str:
    # HttpHeaders is case-insensitive; plain mappings are matched lower-cased.
    value = headers.get(name)
    if value is None:
        lowered = {str(key).lower(): val for key, val in headers.items()}
        value = lowered.get(name.lower())
    return (value or "").strip()


def verify_hotmart_token(headers: Mapping[str, str], payload: Mapping[str, Any]) -> None:
    expected = getattr(settings, "HOTMART_WEBHOOK_TOKEN", "") or ""
    if not expected:
        return

    supplied = ""
    for name in HOTMART_TOKEN_HEADERS:
        supplied = _header(headers, name)
        if supplied:
            break
    if not supplied and isinstance(payload, Mapping):
        supplied = str(payload.get("hottok") or "").strip()

    if not supplied:
        raise WebhookAuthenticationError("Missing Hotmart hottok.")
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise WebhookAuthenticationError("Invalid Hotmart hottok.")


def compute_doppus_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_doppus_signature(headers: Mapping[str, str], body: bytes) -> None:
    secret = getattr(settings, "DOPPUS_WEBHOOK_SECRET", "") or ""
    if not secret:
        return

    supplied = _header(headers, DOPPUS_SIGNATURE_HEADER)
    if supplied.lower().startswith("sha256="):
        supplied = supplied[len("sha256="):]
    if not supplied:
        raise WebhookAuthenticationError("Missing Doppus signature.")

    expected = compute_doppus_signature(body or b"", secret)
    if not hmac.compare_digest(supplied.lower().encode("utf-8"), expected.encode("utf-8")):
        raise WebhookAuthenticationError("Invalid Doppus signature.")


def verify_delivery(
    provider: str,
    body: bytes,
    headers: Mapping[str, str],
    payload: Mapping[str, Any],
) -> Optional[str]:
    """Check provider credentials.

    Returns a warning string when verification fails and unauthenticated deliveries
    are tolerated; raises WebhookAuthenticationError when they are rejected.
    """

    try:
        if provider == Provider.HOTMART:
            verify_hotmart_token(headers, payload)
        elif provider == Provider.DOPPUS:
            verify_doppus_signature(headers, body)
    except WebhookAuthenticationError as exc:
        if getattr(settings, "BILLING_REJECT_UNAUTHENTICATED_WEBHOOKS", False):
            raise
        logger.warning("Accepting %s webhook despite failed verification: %s", provider, exc)
        return str(exc)
    return None
