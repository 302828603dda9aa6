"""Subscription state machine applying normalized provider events to users."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from billing.constants import SubscriptionAction
from billing.models import Subscription
from billing.observability.logging import mask_email
from billing.services.normalizers import SubscriptionEvent
from billing.services.product_mapping import PlanResolution
from billing.services.user_provisioning import find_user, get_or_create_user

logger = logging.getLogger(__name__)

User = get_user_model()

TERMINAL_STATUS_BY_ACTION = {
    SubscriptionAction.CANCEL: Subscription.Status.CANCELED,
    SubscriptionAction.REFUND: Subscription.Status.REFUNDED,
    SubscriptionAction.DISPUTE: Subscription.Status.DISPUTED,
    SubscriptionAction.EXPIRE: Subscription.Status.EXPIRED,
}

# Money left the merchant: these override an already-ended subscription and skip any grace period.
_CHARGE_REVERSALS = frozenset({SubscriptionAction.REFUND, SubscriptionAction.DISPUTE})


class SubscriptionLifecycleError(RuntimeError):
    """Base error for subscription lifecycle operations."""


@dataclass
class TransitionResult:
    action: SubscriptionAction
    applied: bool
    detail: str = ""
    user: Optional[User] = None
    subscription: Optional[Subscription] = None
    user_created: bool = False
    warnings: List[str] = field(default_factory=list)


def grace_period() -> timedelta:
    hours = int(getattr(settings, "BILLING_GRACE_HOURS_AFTER_CANCELLATION", 0) or 0)
    return timedelta(hours=max(hours, 0))


def apply_event(
    event: SubscriptionEvent,
    *,
    plan: Optional[PlanResolution] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Apply one event to the user's subscription. Caller owns the transaction."""

    now = now or timezone.now()
    action = event.action

    if action == SubscriptionAction.UNHANDLED:
        return TransitionResult(action=action, applied=False, detail=f"Unhandled event type '{event.event_type}'.")
    if action == SubscriptionAction.ACTIVATE:
        if plan is None:
            raise SubscriptionLifecycleError("Activation requires a resolved plan.")
        return _activate(event, plan, now)
    return _terminate(event, action, now)


def current_subscription(user: User, *, lock: bool = False) -> Optional[Subscription]:
    queryset = Subscription.objects.filter(user=user)
    if lock:
        queryset = queryset.select_for_update()
    return queryset.order_by("-start_date", "-id").first()


def _is_stale(subscription: Optional[Subscription], event: SubscriptionEvent) -> bool:
    return subscription is not None and event.occurred_at < subscription.start_date


def _activate(event: SubscriptionEvent, plan: PlanResolution, now: datetime) -> TransitionResult:
    user, created = get_or_create_user(event.email, event.name)
    subscription = current_subscription(user, lock=True)
    result = TransitionResult(action=SubscriptionAction.ACTIVATE, applied=False, user=user, user_created=created)

    if _is_stale(subscription, event):
        result.subscription = subscription
        result.detail = "Activation predates the current subscription window; ignored."
        return result

    start = event.occurred_at
    end_date: Optional[datetime] = None
    if not plan.is_lifetime:
        end_date = start + timedelta(days=plan.duration_days)
        if plan.fallback and event.expires_at:
            end_date = event.expires_at

    if end_date is not None and end_date <= now:
        # Nothing left to grant: zero-day fallback plan or a very late redelivery.
        if subscription is None:
            subscription = Subscription.objects.create(
                user=user,
                plan_type=plan.plan_type,
                status=Subscription.Status.EXPIRED,
                start_date=start,
                end_date=end_date,
                origin=event.provider,
                transaction_id=event.transaction_id,
                last_event=event.event_type,
                last_event_at=event.occurred_at,
            )
        result.subscription = subscription
        result.applied = True
        result.detail = "Activation window already elapsed; access not granted."
        result.warnings.append(f"Activation for {plan.describe()} ended at {end_date.isoformat()}.")
        return result

    if subscription is None:
        subscription = Subscription.objects.create(
            user=user,
            plan_type=plan.plan_type,
            status=Subscription.Status.ACTIVE,
            start_date=start,
            end_date=end_date,
            origin=event.provider,
            transaction_id=event.transaction_id,
            last_event=event.event_type,
            last_event_at=event.occurred_at,
        )
    else:
        subscription.plan_type = plan.plan_type
        subscription.status = Subscription.Status.ACTIVE
        subscription.start_date = start
        subscription.end_date = end_date
        subscription.origin = event.provider
        subscription.transaction_id = event.transaction_id
        subscription.last_event = event.event_type
        subscription.last_event_at = event.occurred_at
        subscription.canceled_at = None
        subscription.save(
            update_fields=[
                "plan_type",
                "status",
                "start_date",
                "end_date",
                "origin",
                "transaction_id",
                "last_event",
                "last_event_at",
                "canceled_at",
                "updated_at",
            ]
        )

    grant_access(user, plan_type=plan.plan_type, source=event.provider, started_at=start, expires_at=end_date)
    logger.info(
        "Activated %s subscription %s for %s until %s.",
        plan.plan_type,
        subscription.pk,
        mask_email(user.email),
        end_date.isoformat() if end_date else "lifetime",
    )
    result.subscription = subscription
    result.applied = True
    result.detail = f"Subscription {plan.plan_type} active."
    return result


def _terminate(event: SubscriptionEvent, action: SubscriptionAction, now: datetime) -> TransitionResult:
    result = TransitionResult(action=action, applied=False)

    user = find_user(event.email, lock=True)
    if user is None:
        result.detail = "No user on record for this email; nothing to change."
        return result
    result.user = user

    subscription = current_subscription(user, lock=True)
    result.subscription = subscription
    if subscription is None:
        result.detail = "No subscription on record for this user; nothing to change."
        return result
    if _is_stale(subscription, event):
        result.detail = "Event predates the current subscription window; ignored."
        return result

    if action == SubscriptionAction.EXPIRE and (subscription.end_date is None or subscription.end_date > now):
        result.detail = "Subscription is still within its paid window; expiry ignored."
        return result

    if subscription.status in Subscription.TERMINAL_STATUSES and action not in _CHARGE_REVERSALS:
        result.detail = f"Subscription already {subscription.status}."
        return result

    subscription.status = TERMINAL_STATUS_BY_ACTION[action]
    subscription.last_event = event.event_type
    subscription.last_event_at = event.occurred_at
    update_fields = ["status", "last_event", "last_event_at", "updated_at"]
    if action == SubscriptionAction.CANCEL:
        subscription.canceled_at = event.occurred_at
        update_fields.append("canceled_at")
    subscription.save(update_fields=update_fields)

    revoke_access(user, immediate=action in _CHARGE_REVERSALS, now=now)
    logger.info("Subscription %s for %s is now %s.", subscription.pk, mask_email(user.email), subscription.status)

    result.applied = True
    result.detail = f"Subscription {subscription.status}."
    return result


def grant_access(
    user: User,
    *,
    plan_type: str,
    source: str,
    started_at: datetime,
    expires_at: Optional[datetime],
) -> None:
    user.plan_type = plan_type
    user.subscription_source = source
    user.subscription_started_at = started_at
    user.subscription_expires_at = expires_at
    update_fields = ["plan_type", "subscription_source", "subscription_started_at", "subscription_expires_at", "updated_at"]
    if user.access_level not in User.STAFF_ACCESS_LEVELS:
        user.access_level = User.AccessLevel.PREMIUM
        update_fields.append("access_level")
    user.save(update_fields=update_fields)


def revoke_access(user: User, *, immediate: bool, now: datetime) -> None:
    """Downgrade a premium user, or schedule the downgrade after the grace period."""

    if user.access_level in User.STAFF_ACCESS_LEVELS:
        user.subscription_expires_at = now
        user.save(update_fields=["subscription_expires_at", "updated_at"])
        return

    grace = grace_period()
    if not immediate and grace and user.access_level == User.AccessLevel.PREMIUM:
        # Premium until the sweep sees the grace deadline pass.
        user.subscription_expires_at = now + grace
        user.save(update_fields=["subscription_expires_at", "updated_at"])
        return

    if user.access_level == User.AccessLevel.PREMIUM:
        user.access_level = User.AccessLevel.FREE
    user.subscription_expires_at = now
    user.save(update_fields=["access_level", "subscription_expires_at", "updated_at"])


def expire_lapsed_subscriptions(*, now: Optional[datetime] = None) -> dict:
    """Expire active subscriptions past their end date and end elapsed grace periods."""

    now = now or timezone.now()
    stats = {"expired": 0, "downgraded": 0}

    lapsed_ids = list(
        Subscription.objects.filter(
            status=Subscription.Status.ACTIVE,
            end_date__isnull=False,
            end_date__lte=now,
        ).values_list("pk", flat=True)
    )
    for subscription_id in lapsed_ids:
        with transaction.atomic():
            subscription = (
                Subscription.objects.select_for_update(skip_locked=True)
                .select_related("user")
                .filter(pk=subscription_id, status=Subscription.Status.ACTIVE)
                .first()
            )
            if subscription is None:
                continue
            subscription.status = Subscription.Status.EXPIRED
            subscription.last_event = "scheduled_expiry"
            subscription.last_event_at = now
            subscription.save(update_fields=["status", "last_event", "last_event_at", "updated_at"])
            revoke_access(subscription.user, immediate=False, now=now)
            stats["expired"] += 1

    # Users still premium after their expiry (grace elapsed) with no live subscription.
    live_subscriptions = Subscription.objects.filter(status=Subscription.Status.ACTIVE).filter(
        Q(end_date__isnull=True) | Q(end_date__gt=now)
    )
    downgraded = (
        User.objects.filter(
            access_level=User.AccessLevel.PREMIUM,
            subscription_expires_at__isnull=False,
            subscription_expires_at__lte=now,
        )
        .exclude(pk__in=live_subscriptions.values("user_id"))
        .update(access_level=User.AccessLevel.FREE, updated_at=now)
    )
    stats["downgraded"] = downgraded

    if stats["expired"] or stats["downgraded"]:
        logger.info("Expiry sweep: %s subscriptions expired, %s users downgraded.", stats["expired"], downgraded)
    return stats
