"""Provider event vocabularies and their internal classification."""
from __future__ import annotations

from enum import Enum

from billing.models import Provider


class SubscriptionAction(str, Enum):
    """What a provider event asks the state machine to do."""

    ACTIVATE = "activate"
    CANCEL = "cancel"
    REFUND = "refund"
    DISPUTE = "dispute"
    EXPIRE = "expire"
    UNHANDLED = "unhandled"


HOTMART_EVENT_ACTIONS: dict[str, SubscriptionAction] = {
    "PURCHASE_APPROVED": SubscriptionAction.ACTIVATE,
    "PURCHASE_COMPLETE": SubscriptionAction.ACTIVATE,
    "SUBSCRIPTION_ACTIVATED": SubscriptionAction.ACTIVATE,
    "SUBSCRIPTION_RENEWED": SubscriptionAction.ACTIVATE,
    "SUBSCRIPTION_REACTIVATION": SubscriptionAction.ACTIVATE,
    "SUBSCRIPTION_CANCELLATION": SubscriptionAction.CANCEL,
    "SUBSCRIPTION_CANCELLED": SubscriptionAction.CANCEL,
    "SUBSCRIPTION_CANCELED": SubscriptionAction.CANCEL,
    "PURCHASE_CANCELED": SubscriptionAction.CANCEL,
    "PURCHASE_REFUNDED": SubscriptionAction.REFUND,
    "PURCHASE_PROTEST": SubscriptionAction.DISPUTE,
    "PURCHASE_CHARGEBACK": SubscriptionAction.DISPUTE,
    "SUBSCRIPTION_EXPIRED": SubscriptionAction.EXPIRE,
    "PURCHASE_EXPIRED": SubscriptionAction.EXPIRE,
}

DOPPUS_STATUS_ACTIONS: dict[str, SubscriptionAction] = {
    "approved": SubscriptionAction.ACTIVATE,
    "reversed": SubscriptionAction.REFUND,
    "refunded": SubscriptionAction.REFUND,
    "canceled": SubscriptionAction.CANCEL,
    "chargeback": SubscriptionAction.DISPUTE,
    "expired": SubscriptionAction.EXPIRE,
}


def classify_event(provider: str, event_type: str) -> SubscriptionAction:
    """Map a verbatim provider event type onto a SubscriptionAction."""

    if not event_type:
        return SubscriptionAction.UNHANDLED
    if provider == Provider.HOTMART:
        return HOTMART_EVENT_ACTIONS.get(event_type.strip().upper(), SubscriptionAction.UNHANDLED)
    if provider == Provider.DOPPUS:
        return DOPPUS_STATUS_ACTIONS.get(event_type.strip().lower(), SubscriptionAction.UNHANDLED)
    return SubscriptionAction.UNHANDLED


HOTMART_TOKEN_HEADERS: tuple[str, ...] = ("x-hotmart-hottok", "x-hotmart-webhook-token")
DOPPUS_SIGNATURE_HEADER = "x-doppus-signature"
