"""Inbound subscription webhook endpoints for Hotmart and Doppus."""
from __future__ import annotations

import logging
from typing import Optional

from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.models import Provider
from billing.services.pipeline import handle_delivery

logger = logging.getLogger(__name__)


def client_ip(request) -> Optional[str]:
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR", "")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.META.get("REMOTE_ADDR") or None


@method_decorator(csrf_exempt, name="dispatch")
class ProviderWebhookView(APIView):
    """Record and process a provider delivery. Providers always receive HTTP 200."""

    authentication_classes = []
    permission_classes = []
    http_method_names = ["post"]
    provider: str = ""

    def post(self, request, *args, **kwargs):
        # Read the raw body before DRF touches request.data; signatures cover these bytes.
        body = request.body
        try:
            result = handle_delivery(
                self.provider,
                body,
                headers=request.headers,
                source_ip=client_ip(request),
            )
        except Exception:
            logger.exception("Unhandled failure while receiving %s webhook.", self.provider)
            return Response({"success": False, "message": "Internal error while recording webhook."}, status=200)

        return Response(result.as_response(), status=200)


class HotmartWebhookView(ProviderWebhookView):
    provider = Provider.HOTMART


class DoppusWebhookView(ProviderWebhookView):
    provider = Provider.DOPPUS
