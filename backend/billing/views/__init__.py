"""Billing API views."""
from .webhooks import FailedWebhookRetryView, FailedWebhookViewSet, ProductMappingViewSet, WebhookLogViewSet

__all__ = [
    "FailedWebhookRetryView",
    "FailedWebhookViewSet",
    "ProductMappingViewSet",
    "WebhookLogViewSet",
]
