import json
from datetime import timedelta

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from billing.models import ProductMapping, Provider

HOTMART_URL = "/api/billing/webhooks/hotmart/"
DOPPUS_URL = "/api/billing/webhooks/doppus/"


def epoch_millis(moment):
    return int(moment.timestamp() * 1000)


def hotmart_purchase(
    *,
    event="PURCHASE_APPROVED",
    email="a@x.com",
    name="Ana Souza",
    transaction="HP1000001",
    product_id="1001",
    offer_code="annual",
    occurred_at=None,
):
    occurred_at = occurred_at or timezone.now() - timedelta(minutes=1)
    return {
        "id": "c7f1e0d3",
        "event": event,
        "version": "2.0.0",
        "creation_date": epoch_millis(occurred_at),
        "data": {
            "buyer": {"email": email, "name": name},
            "product": {"id": product_id, "name": "Design Pack"},
            "purchase": {
                "transaction": transaction,
                "status": "APPROVED",
                "approved_date": epoch_millis(occurred_at),
                "offer": {"code": offer_code},
            },
            "subscription": {"plan": {"name": "Anual"}, "status": "ACTIVE"},
        },
    }


def hotmart_cancellation(
    *,
    event="SUBSCRIPTION_CANCELLATION",
    email="a@x.com",
    subscriber_code="SUB-1",
    occurred_at=None,
):
    occurred_at = occurred_at or timezone.now()
    return {
        "id": "9ab2",
        "event": event,
        "creation_date": epoch_millis(occurred_at),
        "data": {
            "subscriber": {"email": email, "name": "Ana Souza", "code": subscriber_code},
            "cancellation_date": epoch_millis(occurred_at),
            "product": {"id": "1001"},
        },
    }


def doppus_event(
    *,
    status="approved",
    email="b@x.com",
    name="Bruno Lima",
    transaction="DP-5001",
    product_code="P-PRO",
    offer="OFF-MONTH",
    paid_at=None,
    expiration_date=None,
):
    paid_at = paid_at or timezone.now() - timedelta(minutes=1)
    payload = {
        "customer": {"email": email, "name": name},
        "items": [{"code": product_code, "offer": offer, "offer_name": "Mensal"}],
        "transaction": {"code": transaction},
        "status": {"code": status, "message": status.title()},
        "payment": {"paid_at": paid_at.isoformat()},
    }
    if expiration_date is not None:
        payload["recurrence"] = {"expiration_date": expiration_date.isoformat()}
    return payload


@pytest.fixture(autouse=True)
def webhook_settings(settings):
    settings.HOTMART_WEBHOOK_TOKEN = ""
    settings.DOPPUS_WEBHOOK_SECRET = ""
    settings.BILLING_WEBHOOK_ASYNC = False
    settings.BILLING_REJECT_UNAUTHENTICATED_WEBHOOKS = False
    settings.BILLING_GRACE_HOURS_AFTER_CANCELLATION = 0
    settings.BILLING_WEBHOOK_MAX_RETRIES = 5
    settings.BILLING_WEBHOOK_RETRY_BASE_SECONDS = 60
    settings.BILLING_WEBHOOK_RETRY_MAX_SECONDS = 6 * 60 * 60
    settings.BILLING_FALLBACK_PLAN = {"plan_type": "free_trial", "duration_days": 0}
    return settings


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def post_webhook(api_client):
    def _post(url, payload, **headers):
        body = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
        return api_client.post(url, data=body, content_type="application/json", **headers)

    return _post


@pytest.fixture
def annual_mapping(db):
    return ProductMapping.objects.create(
        provider=Provider.HOTMART,
        product_id="1001",
        offer_code="annual",
        plan_type="annual",
        duration_days=365,
    )


@pytest.fixture
def monthly_doppus_mapping(db):
    return ProductMapping.objects.create(
        provider=Provider.DOPPUS,
        product_id="P-PRO",
        offer_code="OFF-MONTH",
        plan_type="monthly",
        duration_days=30,
    )


@pytest.fixture
def make_user(db):
    def _make(email="existing@x.com", **fields):
        username = fields.pop("username", email.split("@")[0])
        return get_user_model().objects.create_user(
            username=username,
            email=email,
            password="pass1234",
            **fields,
        )

    return _make


@pytest.fixture
def operator_client(make_user):
    operator = make_user("ops@x.com", username="ops", access_level="support")
    client = APIClient()
    client.force_authenticate(user=operator)
    return client
