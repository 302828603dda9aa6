import json
from unittest import mock

import pytest
from django.db import OperationalError
from rest_framework.test import APIClient

from billing.models import FailedWebhook, Subscription
from billing.services.pipeline import handle_delivery
from billing.tests.conftest import DOPPUS_URL, HOTMART_URL, doppus_event, hotmart_purchase

WEBHOOK_LOGS_URL = "/api/billing/webhook-logs/"
FAILED_WEBHOOKS_URL = "/api/billing/failed-webhooks/"
PRODUCT_MAPPINGS_URL = "/api/billing/product-mappings/"


def failing_delivery(payload):
    with mock.patch("billing.services.pipeline.apply_event", side_effect=OperationalError("db down")):
        handle_delivery("hotmart", json.dumps(payload).encode("utf-8"))
    return FailedWebhook.objects.get(webhook_log__transaction_id=payload["data"]["purchase"]["transaction"])


@pytest.mark.django_db
def test_operator_lists_and_filters_webhook_logs(operator_client, post_webhook, annual_mapping):
    post_webhook(HOTMART_URL, hotmart_purchase(email="a@x.com", transaction="HP-1"))
    post_webhook(HOTMART_URL, hotmart_purchase(email="a@x.com", transaction="HP-1"))
    post_webhook(DOPPUS_URL, doppus_event(email="b@x.com"))

    response = operator_client.get(WEBHOOK_LOGS_URL)

    assert response.status_code == 200
    assert response.data["count"] == 3

    hotmart_duplicates = operator_client.get(WEBHOOK_LOGS_URL, {"provider": "hotmart", "duplicate": "true"})
    assert hotmart_duplicates.data["count"] == 1
    assert hotmart_duplicates.data["results"][0]["transaction_id"] == "HP-1"

    by_email = operator_client.get(WEBHOOK_LOGS_URL, {"email": "B@X.COM"})
    assert [row["provider"] for row in by_email.data["results"]] == ["doppus"]


@pytest.mark.django_db
def test_webhook_log_detail_includes_raw_payload(operator_client, post_webhook, annual_mapping):
    payload = hotmart_purchase(transaction="HP-DETAIL")
    post_webhook(HOTMART_URL, payload)
    entry_id = operator_client.get(WEBHOOK_LOGS_URL).data["results"][0]["id"]

    response = operator_client.get(f"{WEBHOOK_LOGS_URL}{entry_id}/")

    assert response.status_code == 200
    assert response.data["raw_payload"] == payload
    assert response.data["status"] == "processed"


@pytest.mark.django_db
def test_regular_user_is_forbidden(make_user):
    client = APIClient()
    client.force_authenticate(user=make_user("buyer@x.com"))

    for url in (WEBHOOK_LOGS_URL, FAILED_WEBHOOKS_URL, PRODUCT_MAPPINGS_URL):
        assert client.get(url).status_code == 403


@pytest.mark.django_db
def test_anonymous_user_is_rejected(api_client):
    response = api_client.get(FAILED_WEBHOOKS_URL)

    assert response.status_code in (401, 403)


@pytest.mark.django_db
def test_staff_user_is_an_operator(make_user):
    client = APIClient()
    client.force_authenticate(user=make_user("staff@x.com", is_staff=True))

    assert client.get(PRODUCT_MAPPINGS_URL).status_code == 200


@pytest.mark.django_db
def test_failed_webhooks_list_exposes_log_fields(operator_client, annual_mapping):
    failed = failing_delivery(hotmart_purchase(transaction="HP-FAIL"))

    response = operator_client.get(FAILED_WEBHOOKS_URL, {"status": "pending", "provider": "hotmart"})

    assert response.status_code == 200
    row = response.data["results"][0]
    assert row["id"] == failed.pk
    assert row["webhook_log_id"] == failed.webhook_log_id
    assert row["transaction_id"] == "HP-FAIL"
    assert row["event_type"] == "PURCHASE_APPROVED"
    assert "db down" in row["error_message"]


@pytest.mark.django_db
def test_manual_retry_endpoint_resolves_row(operator_client, annual_mapping):
    failed = failing_delivery(hotmart_purchase(email="retry@x.com", transaction="HP-RETRY"))

    response = operator_client.post(f"{FAILED_WEBHOOKS_URL}{failed.pk}/retry/")

    assert response.status_code == 200
    assert response.data["status"] == "resolved"
    assert response.data["retry_count"] == 1
    assert Subscription.objects.get(user__email="retry@x.com").status == Subscription.Status.ACTIVE


@pytest.mark.django_db
def test_manual_retry_of_resolved_row_conflicts(operator_client, annual_mapping):
    failed = failing_delivery(hotmart_purchase(transaction="HP-TWICE"))
    operator_client.post(f"{FAILED_WEBHOOKS_URL}{failed.pk}/retry/")

    response = operator_client.post(f"{FAILED_WEBHOOKS_URL}{failed.pk}/retry/")

    assert response.status_code == 409
    assert response.data["code"] == "retry_not_allowed"


@pytest.mark.django_db
def test_manual_retry_of_unknown_row_is_404(operator_client):
    response = operator_client.post(f"{FAILED_WEBHOOKS_URL}999999/retry/")

    assert response.status_code == 404
    assert response.data == {
        "code": "failed_webhook_not_found",
        "message": "Failed webhook not found.",
        "details": {},
    }


@pytest.mark.django_db
def test_product_mappings_are_listed_and_filtered(operator_client, annual_mapping, monthly_doppus_mapping):
    response = operator_client.get(PRODUCT_MAPPINGS_URL, {"provider": "doppus"})

    assert response.status_code == 200
    assert response.data["count"] == 1
    mapping = response.data["results"][0]
    assert mapping["product_id"] == "P-PRO"
    assert mapping["offer_code"] == "OFF-MONTH"
    assert mapping["duration_days"] == 30


@pytest.mark.django_db
def test_product_mappings_are_read_only(operator_client):
    response = operator_client.post(PRODUCT_MAPPINGS_URL, {"provider": "hotmart"}, format="json")

    assert response.status_code == 405
