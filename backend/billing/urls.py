"""URL routes for billing endpoints."""
from django.urls import path

from .views import (
    FailedWebhookRetryView,
    FailedWebhookViewSet,
    ProductMappingViewSet,
    WebhookLogViewSet,
)
from .views_webhook import DoppusWebhookView, HotmartWebhookView

app_name = "billing"

urlpatterns = [
    path("webhooks/hotmart/", HotmartWebhookView.as_view(), name="hotmart-webhook"),
    path("webhooks/doppus/", DoppusWebhookView.as_view(), name="doppus-webhook"),
    path(
        "webhook-logs/",
        WebhookLogViewSet.as_view({"get": "list"}),
        name="webhook-logs",
    ),
    path(
        "webhook-logs/<int:pk>/",
        WebhookLogViewSet.as_view({"get": "retrieve"}),
        name="webhook-log-detail",
    ),
    path(
        "failed-webhooks/",
        FailedWebhookViewSet.as_view({"get": "list"}),
        name="failed-webhooks",
    ),
    path(
        "failed-webhooks/<int:pk>/",
        FailedWebhookViewSet.as_view({"get": "retrieve"}),
        name="failed-webhook-detail",
    ),
    path(
        "failed-webhooks/<int:failed_id>/retry/",
        FailedWebhookRetryView.as_view(),
        name="failed-webhook-retry",
    ),
    path(
        "product-mappings/",
        ProductMappingViewSet.as_view({"get": "list"}),
        name="product-mappings",
    ),
]
