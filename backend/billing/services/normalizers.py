"""Per-provider parsers turning webhook bodies into a single SubscriptionEvent shape."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, Mapping, Optional

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from accounts.models import normalize_email_address
from billing.constants import SubscriptionAction, classify_event
from billing.models import Provider

logger = logging.getLogger(__name__)

# Epoch values above this are milliseconds (Hotmart sends millis, some payloads seconds).
_MILLIS_THRESHOLD = 10_000_000_000


class NormalizationError(ValueError):
    """Raised when a payload lacks the fields needed to build a SubscriptionEvent."""

    INVALID_JSON = "invalid_json"
    INVALID_PAYLOAD = "invalid_payload"
    MISSING_EMAIL = "missing_email"
    MISSING_EVENT_TYPE = "missing_event_type"

    def __init__(self, code: str, message: str, *, partial: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.partial = partial or {}


@dataclass(frozen=True)
class SubscriptionEvent:
    """Provider-independent view of a subscription webhook."""

    provider: str
    event_type: str
    email: str
    name: str
    transaction_id: str
    product_id: str
    offer_code: Optional[str]
    plan_name_hint: str
    occurred_at: datetime
    expires_at: Optional[datetime] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def action(self) -> SubscriptionAction:
        return classify_event(self.provider, self.event_type)


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _coerce_timestamp(value: Any) -> Optional[datetime]:
    """Accept epoch seconds/millis or ISO-8601 strings and return an aware UTC datetime."""

    if value in (None, ""):
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > _MILLIS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=dt_timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.isdecimal():
            try:
                return _coerce_timestamp(int(text))
            except ValueError:
                return None
        try:
            parsed = parse_datetime(text)
        except ValueError:
            return None
        if parsed is None:
            return None
        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed, dt_timezone.utc)
        return parsed.astimezone(dt_timezone.utc)
    return None


def _first_timestamp(*values: Any) -> Optional[datetime]:
    for value in values:
        coerced = _coerce_timestamp(value)
        if coerced is not None:
            return coerced
    return None


def decode_body(body: bytes | str) -> Dict[str, Any]:
    """Parse a raw request body into a JSON object or raise NormalizationError."""

    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise NormalizationError(NormalizationError.INVALID_JSON, "Body is not valid UTF-8.") from exc
    if not body or not body.strip():
        raise NormalizationError(NormalizationError.INVALID_JSON, "Empty request body.")
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise NormalizationError(NormalizationError.INVALID_JSON, f"Malformed JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise NormalizationError(NormalizationError.INVALID_PAYLOAD, "JSON body must be an object.")
    return payload


class HotmartPayloadParser:
    """Parses ``{event, data: {buyer|subscriber, purchase, product, subscription}}`` bodies."""

    provider = Provider.HOTMART

    def parse(self, payload: Mapping[str, Any]) -> SubscriptionEvent:
        data = _as_dict(payload.get("data"))
        # Subscription lifecycle events carry the customer under ``subscriber``.
        buyer = _as_dict(data.get("buyer")) or _as_dict(data.get("subscriber"))
        purchase = _as_dict(data.get("purchase"))
        subscription = _as_dict(data.get("subscription"))

        event_type = _as_text(payload.get("event"))
        email = normalize_email_address(_as_text(buyer.get("email")))
        transaction_id = (
            _as_text(purchase.get("transaction"))
            or _as_text(_as_dict(subscription.get("subscriber")).get("code"))
            or _as_text(_as_dict(data.get("subscriber")).get("code"))
        )
        partial = {"event_type": event_type, "email": email, "transaction_id": transaction_id}

        if not event_type:
            raise NormalizationError(
                NormalizationError.MISSING_EVENT_TYPE, "Hotmart payload has no 'event'.", partial=partial
            )
        if not email:
            raise NormalizationError(
                NormalizationError.MISSING_EMAIL, "Hotmart payload has no buyer email.", partial=partial
            )

        occurred_at = _first_timestamp(
            purchase.get("approved_date"),
            data.get("cancellation_date"),
            payload.get("creation_date"),
        ) or timezone.now()

        return SubscriptionEvent(
            provider=self.provider,
            event_type=event_type,
            email=email,
            name=_as_text(buyer.get("name")),
            transaction_id=transaction_id,
            product_id=_as_text(_as_dict(data.get("product")).get("id")),
            offer_code=_as_text(_as_dict(purchase.get("offer")).get("code")) or None,
            plan_name_hint=_as_text(_as_dict(subscription.get("plan")).get("name")),
            occurred_at=occurred_at,
            expires_at=_coerce_timestamp(purchase.get("date_next_charge")),
            raw=payload,
        )


class DoppusPayloadParser:
    """Parses ``{customer, items: [...], transaction, status: {code}, recurrence}`` bodies."""

    provider = Provider.DOPPUS

    def parse(self, payload: Mapping[str, Any]) -> SubscriptionEvent:
        customer = _as_dict(payload.get("customer"))
        items = payload.get("items") if isinstance(payload.get("items"), list) else []
        first_item = _as_dict(items[0]) if items else {}
        transaction = _as_dict(payload.get("transaction"))
        status = payload.get("status")

        if isinstance(status, dict):
            event_type = _as_text(status.get("code"))
        else:
            event_type = _as_text(status)
        event_type = event_type or _as_text(payload.get("event"))

        email = normalize_email_address(_as_text(customer.get("email")))
        transaction_id = (
            _as_text(transaction.get("code"))
            or _as_text(transaction.get("id"))
            or _as_text(payload.get("id"))
        )
        partial = {"event_type": event_type, "email": email, "transaction_id": transaction_id}

        if not event_type:
            raise NormalizationError(
                NormalizationError.MISSING_EVENT_TYPE, "Doppus payload has no status code.", partial=partial
            )
        if not email:
            raise NormalizationError(
                NormalizationError.MISSING_EMAIL, "Doppus payload has no customer email.", partial=partial
            )

        payment = _as_dict(payload.get("payment"))
        occurred_at = _first_timestamp(
            payment.get("paid_at"),
            payload.get("updated_at"),
            payload.get("created_at"),
        ) or timezone.now()

        return SubscriptionEvent(
            provider=self.provider,
            event_type=event_type,
            email=email,
            name=_as_text(customer.get("name")),
            transaction_id=transaction_id,
            product_id=_as_text(first_item.get("code")),
            offer_code=_as_text(first_item.get("offer")) or None,
            plan_name_hint=_as_text(first_item.get("offer_name")),
            occurred_at=occurred_at,
            expires_at=_coerce_timestamp(_as_dict(payload.get("recurrence")).get("expiration_date")),
            raw=payload,
        )


PARSERS = {
    Provider.HOTMART: HotmartPayloadParser(),
    Provider.DOPPUS: DoppusPayloadParser(),
}


def normalize_payload(provider: str, payload: Mapping[str, Any]) -> SubscriptionEvent:
    """Build a SubscriptionEvent from an already-decoded provider payload."""

    parser = PARSERS.get(provider)
    if parser is None:
        raise ValueError(f"Unknown webhook provider '{provider}'.")
    if not isinstance(payload, dict):
        raise NormalizationError(NormalizationError.INVALID_PAYLOAD, "JSON body must be an object.")
    event = parser.parse(payload)
    logger.debug("Normalized %s event %s (%s).", provider, event.event_type, event.action.value)
    return event
