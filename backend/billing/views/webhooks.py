"""Operator endpoints for webhook logs, dead letters and product mappings."""
from __future__ import annotations

import logging

from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework.viewsets import ReadOnlyModelViewSet

from billing.filters import FailedWebhookFilter, ProductMappingFilter, WebhookLogEntryFilter
from billing.models import FailedWebhook, ProductMapping, WebhookLogEntry
from billing.observability.logging import log_billing_event
from billing.pagination import BoundedPageNumberPagination
from billing.permissions import IsBillingOperator
from billing.serializers import FailedWebhookSerializer, ProductMappingSerializer, WebhookLogEntrySerializer
from billing.services import dead_letter
from billing.services.results import DeadLetterError

logger = logging.getLogger(__name__)


class WebhookLogViewSet(ReadOnlyModelViewSet):
    """List every recorded webhook delivery."""

    serializer_class = WebhookLogEntrySerializer
    permission_classes = [IsAuthenticated, IsBillingOperator]
    pagination_class = BoundedPageNumberPagination
    filterset_class = WebhookLogEntryFilter

    def get_queryset(self):
        return WebhookLogEntry.objects.order_by("-created_at", "-id")


class FailedWebhookViewSet(ReadOnlyModelViewSet):
    """List dead-lettered deliveries."""

    serializer_class = FailedWebhookSerializer
    permission_classes = [IsAuthenticated, IsBillingOperator]
    pagination_class = BoundedPageNumberPagination
    filterset_class = FailedWebhookFilter

    def get_queryset(self):
        return FailedWebhook.objects.select_related("webhook_log").order_by("-created_at", "-id")


class FailedWebhookRetryView(APIView):
    """Trigger an immediate retry of a pending or abandoned dead letter."""

    permission_classes = [IsAuthenticated, IsBillingOperator]

    def post(self, request, failed_id):
        if not FailedWebhook.objects.filter(pk=failed_id).exists():
            return self._error_response(status=404, code="failed_webhook_not_found", message="Failed webhook not found.")

        try:
            failed = dead_letter.retry(failed_id, manual=True)
        except DeadLetterError as exc:
            return self._error_response(status=409, code="retry_not_allowed", message=str(exc))

        log_billing_event(
            message="Manual dead-letter retry",
            provider=failed.source,
            extra={"failed_webhook_id": failed.pk, "status": failed.status, "operator_id": request.user.pk},
        )
        return Response(FailedWebhookSerializer(failed).data, status=200)

    @staticmethod
    def _error_response(*, status: int, code: str, message: str):
        return Response({"code": code, "message": message, "details": {}}, status=status)


class ProductMappingViewSet(ReadOnlyModelViewSet):
    serializer_class = ProductMappingSerializer
    permission_classes = [IsAuthenticated, IsBillingOperator]
    pagination_class = BoundedPageNumberPagination
    filterset_class = ProductMappingFilter

    def get_queryset(self):
        return ProductMapping.objects.order_by("provider", "product_id", "offer_code", "id")
