"""Prometheus metrics helpers for webhook ingestion."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

WEBHOOK_RECEIVED_COUNT = Counter(
    "billing_webhook_received_total",
    "Number of inbound provider webhook deliveries",
    labelnames=("provider", "outcome"),
)

WEBHOOK_DUPLICATE_COUNT = Counter(
    "billing_webhook_duplicate_total",
    "Deliveries short-circuited as already processed",
    labelnames=("provider",),
)

WEBHOOK_PROCESSING_LATENCY = Histogram(
    "billing_webhook_processing_seconds",
    "Time spent processing a webhook delivery",
    labelnames=("provider",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

MAPPING_FALLBACK_COUNT = Counter(
    "billing_product_mapping_fallback_total",
    "Product/offer lookups that fell back to the default plan",
    labelnames=("provider",),
)

WEBHOOK_DEAD_LETTER_COUNT = Counter(
    "billing_webhook_dead_letter_total",
    "Total dead-lettered webhook deliveries",
    labelnames=("provider", "reason"),
)

WEBHOOK_RETRY_COUNT = Counter(
    "billing_webhook_retry_total",
    "Dead-letter retry attempts by outcome",
    labelnames=("outcome",),
)
