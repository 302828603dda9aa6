"""Expose commonly used billing services."""

from .normalizers import NormalizationError, SubscriptionEvent, normalize_payload
from .pipeline import handle_delivery, process_logged_delivery
from .product_mapping import PlanResolution, resolve_plan
from .results import DeadLetterError, HandlerResult, WebhookAuthenticationError, WebhookProcessingError
