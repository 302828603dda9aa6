import json
from datetime import timedelta
from unittest import mock

import pytest
from django.db import OperationalError
from django.utils import timezone

from billing.models import FailedWebhook, Subscription, WebhookLogEntry
from billing.services import dead_letter
from billing.services.pipeline import handle_delivery
from billing.services.results import DeadLetterError
from billing.tests.conftest import hotmart_purchase


def deliver_failing(payload):
    with mock.patch("billing.services.pipeline.apply_event", side_effect=OperationalError("db down")):
        result = handle_delivery("hotmart", json.dumps(payload).encode("utf-8"))
    assert result.success is False
    return FailedWebhook.objects.get(webhook_log_id=result.webhook_log_id)


def make_due(failed):
    FailedWebhook.objects.filter(pk=failed.pk).update(next_retry_at=timezone.now() - timedelta(seconds=1))
    failed.refresh_from_db()
    return failed


@pytest.mark.parametrize(
    "retry_count,seconds",
    [(0, 60), (1, 120), (3, 480), (8, 15360), (9, 6 * 60 * 60), (40, 6 * 60 * 60)],
)
def test_backoff_doubles_and_is_capped(settings, retry_count, seconds):
    settings.BILLING_WEBHOOK_RETRY_BASE_SECONDS = 60
    settings.BILLING_WEBHOOK_RETRY_MAX_SECONDS = 6 * 60 * 60

    assert dead_letter.compute_backoff(retry_count) == timedelta(seconds=seconds)


@pytest.mark.django_db
def test_retry_reprocesses_stored_payload_and_resolves(annual_mapping):
    failed = make_due(deliver_failing(hotmart_purchase(email="r@x.com", transaction="HP-R")))
    log_count = WebhookLogEntry.objects.count()

    retried = dead_letter.retry(failed.pk)

    assert retried.status == FailedWebhook.Status.RESOLVED
    assert retried.retry_count == 1
    assert retried.resolved_at is not None
    assert retried.next_retry_at is None
    assert WebhookLogEntry.objects.count() == log_count
    entry = WebhookLogEntry.objects.get(pk=failed.webhook_log_id)
    assert entry.status == WebhookLogEntry.Status.PROCESSED
    assert Subscription.objects.get(user__email="r@x.com").status == Subscription.Status.ACTIVE


@pytest.mark.django_db
def test_failing_retry_schedules_next_attempt(annual_mapping):
    failed = make_due(deliver_failing(hotmart_purchase(transaction="HP-F")))

    with mock.patch("billing.services.pipeline.apply_event", side_effect=OperationalError("still down")):
        retried = dead_letter.retry(failed.pk)

    assert retried.status == FailedWebhook.Status.PENDING
    assert retried.retry_count == 1
    assert "still down" in retried.error_message
    assert retried.next_retry_at > timezone.now() + timedelta(seconds=100)
    # A retry never adds a second dead-letter row.
    assert FailedWebhook.objects.count() == 1


@pytest.mark.django_db
def test_retry_abandons_after_max_attempts(annual_mapping, settings):
    settings.BILLING_WEBHOOK_MAX_RETRIES = 2
    failed = deliver_failing(hotmart_purchase(transaction="HP-A"))

    with mock.patch("billing.services.pipeline.apply_event", side_effect=OperationalError("down")):
        make_due(failed)
        first = dead_letter.retry(failed.pk)
        make_due(first)
        second = dead_letter.retry(failed.pk)

    assert first.status == FailedWebhook.Status.PENDING
    assert second.status == FailedWebhook.Status.ABANDONED
    assert second.retry_count == 2
    assert second.next_retry_at is None


@pytest.mark.django_db
def test_automatic_retry_requires_due_pending_row(annual_mapping):
    failed = deliver_failing(hotmart_purchase(transaction="HP-N"))

    with pytest.raises(DeadLetterError):
        dead_letter.retry(failed.pk)

    assert dead_letter.due_failed_webhooks() == []
    make_due(failed)
    assert dead_letter.due_failed_webhooks() == [failed.pk]


@pytest.mark.django_db
def test_manual_retry_of_non_retryable_failure_abandons_it():
    payload = hotmart_purchase(transaction="HP-X")
    del payload["data"]["buyer"]["email"]
    handle_delivery("hotmart", json.dumps(payload).encode("utf-8"))
    failed = FailedWebhook.objects.get()
    assert failed.next_retry_at is None
    assert dead_letter.due_failed_webhooks() == []

    retried = dead_letter.retry(failed.pk, manual=True)

    assert retried.status == FailedWebhook.Status.ABANDONED
    assert retried.retry_count == 1


@pytest.mark.django_db
def test_resolved_rows_cannot_be_retried(annual_mapping):
    failed = make_due(deliver_failing(hotmart_purchase(transaction="HP-D")))
    dead_letter.retry(failed.pk)

    with pytest.raises(DeadLetterError):
        dead_letter.retry(failed.pk, manual=True)


@pytest.mark.django_db
def test_retry_of_unknown_row_raises():
    with pytest.raises(DeadLetterError):
        dead_letter.retry(123456, manual=True)


@pytest.mark.django_db
def test_retry_after_concurrent_success_resolves_as_duplicate(annual_mapping):
    payload = hotmart_purchase(email="dup@x.com", transaction="HP-C")
    failed = make_due(deliver_failing(payload))
    # Provider redelivery succeeded before the worker got to the dead letter.
    handle_delivery("hotmart", json.dumps(payload).encode("utf-8"))

    retried = dead_letter.retry(failed.pk)

    assert retried.status == FailedWebhook.Status.RESOLVED
    assert WebhookLogEntry.objects.get(pk=failed.webhook_log_id).duplicate is True
    assert Subscription.objects.filter(user__email="dup@x.com").count() == 1


@pytest.mark.django_db
def test_crashing_retry_is_rescheduled_instead_of_stuck(annual_mapping):
    failed = make_due(deliver_failing(hotmart_purchase(transaction="HP-K")))

    with mock.patch("billing.services.pipeline.process_logged_delivery", side_effect=RuntimeError("worker crash")):
        retried = dead_letter.retry(failed.pk)

    assert retried.status == FailedWebhook.Status.PENDING
    assert retried.retry_count == 1
    assert "worker crash" in retried.error_message
    assert retried.next_retry_at > timezone.now()
    retried.refresh_from_db()
    assert retried.status == FailedWebhook.Status.PENDING


@pytest.mark.django_db
def test_crashing_retry_abandons_on_last_attempt(annual_mapping, settings):
    settings.BILLING_WEBHOOK_MAX_RETRIES = 1
    failed = make_due(deliver_failing(hotmart_purchase(transaction="HP-K2")))

    with mock.patch("billing.services.pipeline.process_logged_delivery", side_effect=RuntimeError("worker crash")):
        retried = dead_letter.retry(failed.pk)

    assert retried.status == FailedWebhook.Status.ABANDONED
    assert retried.next_retry_at is None
