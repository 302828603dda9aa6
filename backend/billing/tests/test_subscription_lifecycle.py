from datetime import timedelta

import pytest
from django.utils import timezone

from billing.constants import SubscriptionAction
from billing.models import Subscription
from billing.services.normalizers import SubscriptionEvent
from billing.services.product_mapping import PlanResolution
from billing.services.subscription_lifecycle import (
    SubscriptionLifecycleError,
    apply_event,
    expire_lapsed_subscriptions,
)

ANNUAL = PlanResolution(plan_type="annual", duration_days=365, mapping_id=1)
MONTHLY = PlanResolution(plan_type="monthly", duration_days=30, mapping_id=2)
LIFETIME = PlanResolution(plan_type="lifetime", duration_days=0, mapping_id=3)
FALLBACK = PlanResolution(plan_type="free_trial", duration_days=0, fallback=True)


def make_event(event_type, *, email="ana@x.com", occurred_at=None, provider="hotmart", expires_at=None,
               transaction_id="T1"):
    return SubscriptionEvent(
        provider=provider,
        event_type=event_type,
        email=email,
        name="Ana",
        transaction_id=transaction_id,
        product_id="1001",
        offer_code="annual",
        plan_name_hint="",
        occurred_at=occurred_at or timezone.now() - timedelta(minutes=5),
        expires_at=expires_at,
    )


def assert_sound(user, subscription):
    """Active implies premium; terminal implies not premium (no grace configured)."""
    user.refresh_from_db()
    subscription.refresh_from_db()
    if subscription.status == Subscription.Status.ACTIVE:
        assert user.access_level == "premium"
    else:
        assert user.access_level != "premium"


@pytest.mark.django_db
def test_activation_creates_user_subscription_and_grants_premium():
    occurred = timezone.now() - timedelta(minutes=5)

    result = apply_event(make_event("PURCHASE_APPROVED", occurred_at=occurred), plan=ANNUAL)

    assert result.applied is True
    assert result.user_created is True
    subscription = result.subscription
    assert subscription.status == Subscription.Status.ACTIVE
    assert subscription.plan_type == "annual"
    assert subscription.end_date == occurred + timedelta(days=365)
    user = result.user
    user.refresh_from_db()
    assert user.access_level == "premium"
    assert user.plan_type == "annual"
    assert user.subscription_source == "hotmart"
    assert user.subscription_expires_at == subscription.end_date


@pytest.mark.django_db
def test_lifetime_activation_has_no_end_date():
    result = apply_event(make_event("PURCHASE_APPROVED"), plan=LIFETIME)

    assert result.subscription.end_date is None
    assert result.subscription.is_lifetime
    assert result.user.subscription_expires_at is None


@pytest.mark.django_db
@pytest.mark.parametrize(
    "terminal_event,expected_status",
    [
        ("SUBSCRIPTION_CANCELLATION", Subscription.Status.CANCELED),
        ("PURCHASE_REFUNDED", Subscription.Status.REFUNDED),
        ("PURCHASE_PROTEST", Subscription.Status.DISPUTED),
    ],
)
def test_terminal_events_downgrade_user(terminal_event, expected_status):
    activated = apply_event(make_event("PURCHASE_APPROVED"), plan=ANNUAL)

    result = apply_event(make_event(terminal_event, occurred_at=timezone.now()))

    assert result.applied is True
    subscription = activated.subscription
    subscription.refresh_from_db()
    assert subscription.status == expected_status
    assert_sound(activated.user, subscription)
    if expected_status == Subscription.Status.CANCELED:
        assert subscription.canceled_at is not None


@pytest.mark.django_db
def test_resubscription_reactivates_existing_subscription():
    first = apply_event(make_event("PURCHASE_APPROVED", occurred_at=timezone.now() - timedelta(days=10)), plan=MONTHLY)
    apply_event(make_event("SUBSCRIPTION_CANCELLATION", occurred_at=timezone.now() - timedelta(days=5)))

    renewed_at = timezone.now() - timedelta(minutes=1)
    result = apply_event(make_event("PURCHASE_APPROVED", occurred_at=renewed_at, transaction_id="T2"), plan=ANNUAL)

    assert result.subscription.pk == first.subscription.pk
    assert Subscription.objects.filter(user=result.user).count() == 1
    subscription = result.subscription
    subscription.refresh_from_db()
    assert subscription.status == Subscription.Status.ACTIVE
    assert subscription.start_date == renewed_at
    assert subscription.canceled_at is None
    assert_sound(result.user, subscription)


@pytest.mark.django_db
def test_event_older_than_current_window_is_ignored():
    apply_event(make_event("PURCHASE_APPROVED", occurred_at=timezone.now() - timedelta(minutes=1)), plan=ANNUAL)

    stale = apply_event(make_event("SUBSCRIPTION_CANCELLATION", occurred_at=timezone.now() - timedelta(days=2)))

    assert stale.applied is False
    stale.subscription.refresh_from_db()
    assert stale.subscription.status == Subscription.Status.ACTIVE


@pytest.mark.django_db
def test_cancel_for_unknown_email_never_creates_user():
    from django.contrib.auth import get_user_model

    result = apply_event(make_event("SUBSCRIPTION_CANCELLATION", email="ghost@x.com"))

    assert result.applied is False
    assert not get_user_model().objects.filter(email="ghost@x.com").exists()


@pytest.mark.django_db
def test_expire_requires_end_date_in_the_past():
    active = apply_event(make_event("PURCHASE_APPROVED"), plan=ANNUAL)

    result = apply_event(make_event("SUBSCRIPTION_EXPIRED", occurred_at=timezone.now()))

    assert result.applied is False
    active.subscription.refresh_from_db()
    assert active.subscription.status == Subscription.Status.ACTIVE


@pytest.mark.django_db
def test_expire_after_window_end_downgrades():
    active = apply_event(make_event("PURCHASE_APPROVED"), plan=MONTHLY)
    Subscription.objects.filter(pk=active.subscription.pk).update(end_date=timezone.now() - timedelta(seconds=1))

    result = apply_event(make_event("SUBSCRIPTION_EXPIRED", occurred_at=timezone.now()))

    assert result.applied is True
    assert_sound(active.user, active.subscription)
    assert active.subscription.status == Subscription.Status.EXPIRED


@pytest.mark.django_db
def test_refund_overrides_cancellation():
    active = apply_event(make_event("PURCHASE_APPROVED"), plan=ANNUAL)
    apply_event(make_event("SUBSCRIPTION_CANCELLATION", occurred_at=timezone.now()))

    result = apply_event(make_event("PURCHASE_REFUNDED", occurred_at=timezone.now()))
    second_cancel = apply_event(make_event("PURCHASE_CANCELED", occurred_at=timezone.now()))

    assert result.applied is True
    assert second_cancel.applied is False
    active.subscription.refresh_from_db()
    assert active.subscription.status == Subscription.Status.REFUNDED


@pytest.mark.django_db
def test_staff_access_level_is_never_changed(make_user):
    designer = make_user("ana@x.com", access_level="designer")

    apply_event(make_event("PURCHASE_APPROVED"), plan=ANNUAL)
    designer.refresh_from_db()
    assert designer.access_level == "designer"
    assert designer.plan_type == "annual"

    apply_event(make_event("PURCHASE_REFUNDED", occurred_at=timezone.now()))
    designer.refresh_from_db()
    assert designer.access_level == "designer"


@pytest.mark.django_db
def test_late_activation_for_elapsed_window_does_not_grant_premium():
    result = apply_event(
        make_event("PURCHASE_APPROVED", occurred_at=timezone.now() - timedelta(days=40)),
        plan=MONTHLY,
    )

    assert result.subscription.status == Subscription.Status.EXPIRED
    result.user.refresh_from_db()
    assert result.user.access_level == "free"


@pytest.mark.django_db
def test_zero_day_fallback_does_not_grant_premium():
    result = apply_event(make_event("PURCHASE_APPROVED"), plan=FALLBACK)

    assert result.applied is True
    assert result.warnings
    assert result.subscription.status == Subscription.Status.EXPIRED
    result.user.refresh_from_db()
    assert result.user.access_level == "free"


@pytest.mark.django_db
def test_fallback_uses_provider_declared_expiry():
    expires = timezone.now() + timedelta(days=12)

    result = apply_event(make_event("approved", provider="doppus", expires_at=expires), plan=FALLBACK)

    assert result.subscription.status == Subscription.Status.ACTIVE
    assert result.subscription.end_date == expires
    result.user.refresh_from_db()
    assert result.user.access_level == "premium"


@pytest.mark.django_db
def test_unhandled_event_changes_nothing():
    result = apply_event(make_event("PURCHASE_BILLET_PRINTED"))

    assert result.action == SubscriptionAction.UNHANDLED
    assert result.applied is False
    assert not Subscription.objects.exists()


@pytest.mark.django_db
def test_activation_without_plan_is_an_error():
    with pytest.raises(SubscriptionLifecycleError):
        apply_event(make_event("PURCHASE_APPROVED"))


@pytest.mark.django_db
def test_cancellation_with_grace_keeps_premium_until_sweep(settings):
    settings.BILLING_GRACE_HOURS_AFTER_CANCELLATION = 48
    active = apply_event(make_event("PURCHASE_APPROVED"), plan=ANNUAL)

    apply_event(make_event("SUBSCRIPTION_CANCELLATION", occurred_at=timezone.now()))

    user = active.user
    user.refresh_from_db()
    assert user.access_level == "premium"
    assert user.subscription_expires_at > timezone.now() + timedelta(hours=47)

    stats = expire_lapsed_subscriptions(now=timezone.now() + timedelta(hours=49))

    user.refresh_from_db()
    assert stats["downgraded"] == 1
    assert user.access_level == "free"


@pytest.mark.django_db
def test_refund_ignores_grace_period(settings):
    settings.BILLING_GRACE_HOURS_AFTER_CANCELLATION = 48
    active = apply_event(make_event("PURCHASE_APPROVED"), plan=ANNUAL)

    apply_event(make_event("PURCHASE_REFUNDED", occurred_at=timezone.now()))

    active.user.refresh_from_db()
    assert active.user.access_level == "free"


@pytest.mark.django_db
def test_sweep_expires_lapsed_subscriptions():
    active = apply_event(make_event("PURCHASE_APPROVED"), plan=MONTHLY)
    Subscription.objects.filter(pk=active.subscription.pk).update(end_date=timezone.now() - timedelta(minutes=1))
    lifetime = apply_event(make_event("PURCHASE_APPROVED", email="life@x.com"), plan=LIFETIME)

    stats = expire_lapsed_subscriptions()

    assert stats["expired"] == 1
    assert_sound(active.user, active.subscription)
    assert active.subscription.status == Subscription.Status.EXPIRED
    lifetime.subscription.refresh_from_db()
    assert lifetime.subscription.status == Subscription.Status.ACTIVE


@pytest.mark.django_db
@pytest.mark.parametrize(
    "sequence",
    [
        ["PURCHASE_APPROVED", "SUBSCRIPTION_CANCELLATION", "PURCHASE_APPROVED"],
        ["PURCHASE_APPROVED", "PURCHASE_PROTEST", "PURCHASE_REFUNDED"],
        ["PURCHASE_APPROVED", "PURCHASE_APPROVED", "SUBSCRIPTION_CANCELLED", "PURCHASE_REFUNDED"],
        ["SUBSCRIPTION_CANCELLATION", "PURCHASE_APPROVED"],
    ],
)
def test_state_machine_soundness_over_sequences(sequence):
    base = timezone.now() - timedelta(hours=len(sequence) + 1)
    result = None
    for index, event_type in enumerate(sequence):
        result = apply_event(
            make_event(event_type, occurred_at=base + timedelta(hours=index), transaction_id=f"T{index}"),
            plan=ANNUAL,
        )

    subscription = Subscription.objects.get(user__email="ana@x.com")
    assert_sound(subscription.user, subscription)
    assert result is not None
