import json
from io import StringIO
from unittest import mock

import pytest
from django.core.management import CommandError, call_command
from django.db import OperationalError

from billing.models import FailedWebhook
from billing.services.pipeline import handle_delivery
from billing.tests.conftest import hotmart_purchase


def failing_delivery(transaction):
    payload = hotmart_purchase(email=f"{transaction.lower()}@x.com", transaction=transaction)
    with mock.patch("billing.services.pipeline.apply_event", side_effect=OperationalError("db down")):
        handle_delivery("hotmart", json.dumps(payload).encode("utf-8"))
    return FailedWebhook.objects.get(webhook_log__transaction_id=transaction)


@pytest.mark.django_db
def test_replay_dry_run_changes_nothing(annual_mapping):
    failed = failing_delivery("HP-DRY")
    out = StringIO()

    call_command("replay_failed_webhooks", "--dry-run", stdout=out)

    assert "1 failed webhooks would be replayed" in out.getvalue()
    failed.refresh_from_db()
    assert failed.status == FailedWebhook.Status.PENDING
    assert failed.retry_count == 0


@pytest.mark.django_db
def test_replay_resolves_selected_rows(annual_mapping):
    first = failing_delivery("HP-ONE")
    second = failing_delivery("HP-TWO")
    out = StringIO()

    call_command("replay_failed_webhooks", "--id", str(first.pk), stdout=out)

    assert "1 resolved, 0 failed" in out.getvalue()
    first.refresh_from_db()
    second.refresh_from_db()
    assert first.status == FailedWebhook.Status.RESOLVED
    assert second.status == FailedWebhook.Status.PENDING


@pytest.mark.django_db
def test_replay_raises_when_a_row_still_fails(annual_mapping):
    failing_delivery("HP-STUCK")

    with mock.patch("billing.services.pipeline.apply_event", side_effect=OperationalError("still down")):
        with pytest.raises(CommandError, match="0 resolved, 1 failed"):
            call_command("replay_failed_webhooks", stdout=StringIO())


@pytest.mark.django_db
def test_replay_skips_abandoned_rows_unless_asked(annual_mapping):
    failed = failing_delivery("HP-OLD")
    FailedWebhook.objects.filter(pk=failed.pk).update(status=FailedWebhook.Status.ABANDONED)
    out = StringIO()

    call_command("replay_failed_webhooks", stdout=out)
    assert "No failed webhooks matched" in out.getvalue()

    call_command("replay_failed_webhooks", "--include-abandoned", stdout=out)
    failed.refresh_from_db()
    assert failed.status == FailedWebhook.Status.RESOLVED
