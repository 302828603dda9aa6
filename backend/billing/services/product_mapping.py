"""Resolve provider product/offer codes into internal plan types and durations."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from django.conf import settings
from django.db import OperationalError, ProgrammingError

from accounts.models import User
from billing.models import ProductMapping
from billing.observability.metrics import MAPPING_FALLBACK_COUNT

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_PLAN = {"plan_type": User.PlanType.FREE_TRIAL, "duration_days": 0}


@dataclass(frozen=True)
class PlanResolution:
    plan_type: str
    duration_days: int
    mapping_id: Optional[int] = None
    fallback: bool = False

    @property
    def is_lifetime(self) -> bool:
        return self.plan_type == User.PlanType.LIFETIME

    def describe(self) -> str:
        if self.fallback:
            return f"fallback {self.plan_type}/{self.duration_days}d"
        return f"mapping #{self.mapping_id} {self.plan_type}/{self.duration_days}d"


def fallback_plan() -> PlanResolution:
    config = getattr(settings, "BILLING_FALLBACK_PLAN", None) or DEFAULT_FALLBACK_PLAN
    return PlanResolution(
        plan_type=config.get("plan_type", DEFAULT_FALLBACK_PLAN["plan_type"]),
        duration_days=int(config.get("duration_days", DEFAULT_FALLBACK_PLAN["duration_days"])),
        fallback=True,
    )


def resolve_plan(provider: str, product_id: Optional[str], offer_code: Optional[str]) -> PlanResolution:
    """Return the plan for a product/offer; never raises for unknown codes.

    Resolution order: exact ``(product_id, offer_code)``, then the product's default
    mapping (``offer_code IS NULL``), then the configured fallback plan.
    """

    product_id = (product_id or "").strip()
    offer_code = (offer_code or "").strip() or None
    candidates = ProductMapping.objects.filter(provider=provider, product_id=product_id)

    mapping = None
    if offer_code:
        mapping = candidates.filter(offer_code=offer_code).first()
    if mapping is None:
        mapping = candidates.filter(offer_code__isnull=True).first()

    if mapping is not None:
        return PlanResolution(
            plan_type=mapping.plan_type,
            duration_days=mapping.duration_days,
            mapping_id=mapping.pk,
        )

    resolution = fallback_plan()
    MAPPING_FALLBACK_COUNT.labels(provider=provider).inc()
    logger.warning(
        "No product mapping for %s product=%r offer=%r; using %s.",
        provider,
        product_id,
        offer_code,
        resolution.describe(),
    )
    return resolution


def ensure_default_product_mappings(
    mappings: Optional[Iterable[Mapping[str, object]]] = None,
) -> Dict[str, List[str]]:
    """Ensure the seed product mappings from settings exist with the expected plan."""

    if mappings is None:
        mappings = getattr(settings, "BILLING_DEFAULT_PRODUCT_MAPPINGS", None) or []

    created, updated = [], []
    try:
        for entry in mappings:
            provider = str(entry["provider"])
            product_id = str(entry.get("product_id") or "")
            offer_code = entry.get("offer_code") or None
            defaults = {
                "plan_type": entry["plan_type"],
                "duration_days": int(entry.get("duration_days", 30)),
                "description": str(entry.get("description", "")),
            }
            label = f"{provider}:{product_id}:{offer_code or '*'}"

            mapping, was_created = ProductMapping.objects.get_or_create(
                provider=provider,
                product_id=product_id,
                offer_code=offer_code,
                defaults=defaults,
            )
            if was_created:
                created.append(label)
                continue

            fields_to_update = []
            for field, expected in defaults.items():
                if getattr(mapping, field) != expected:
                    setattr(mapping, field, expected)
                    fields_to_update.append(field)
            if fields_to_update:
                mapping.save(update_fields=fields_to_update + ["updated_at"])
                updated.append(label)
    except (OperationalError, ProgrammingError):
        logger.debug("Database not ready for product mapping initialisation.")
        return {"created": [], "updated": []}

    if created or updated:
        logger.info("Product mapping initialisation completed. created=%s updated=%s", created, updated)
    return {"created": created, "updated": updated}
