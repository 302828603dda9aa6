"""FilterSet definitions for billing endpoints."""
from __future__ import annotations

import django_filters

from billing.models import FailedWebhook, ProductMapping, WebhookLogEntry


class WebhookLogEntryFilter(django_filters.FilterSet):
    provider = django_filters.CharFilter(field_name="provider", lookup_expr="iexact")
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    event_type = django_filters.CharFilter(field_name="event_type", lookup_expr="iexact")
    email = django_filters.CharFilter(field_name="email", lookup_expr="iexact")
    transaction_id = django_filters.CharFilter(field_name="transaction_id")
    duplicate = django_filters.BooleanFilter(field_name="duplicate")
    created_after = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = WebhookLogEntry
        fields = ["provider", "status", "event_type", "email", "transaction_id", "duplicate"]


class FailedWebhookFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    provider = django_filters.CharFilter(field_name="source", lookup_expr="iexact")
    due_before = django_filters.DateTimeFilter(field_name="next_retry_at", lookup_expr="lte")

    class Meta:
        model = FailedWebhook
        fields = ["status", "provider"]


class ProductMappingFilter(django_filters.FilterSet):
    provider = django_filters.CharFilter(field_name="provider", lookup_expr="iexact")
    plan_type = django_filters.CharFilter(field_name="plan_type", lookup_expr="iexact")
    product_id = django_filters.CharFilter(field_name="product_id")

    class Meta:
        model = ProductMapping
        fields = ["provider", "plan_type", "product_id"]
