"""
Billing operator permissions.

Webhook logs, dead letters and product mappings are visible to Django staff and to
accounts whose access level is ``admin`` or ``support``.
"""
import logging

from rest_framework.permissions import BasePermission

logger = logging.getLogger(__name__)


class IsBillingOperator(BasePermission):
    """Allow authenticated staff, admin and support users."""

    message = "Only billing operators can access webhook administration."

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        allowed = bool(getattr(user, "is_billing_operator", False))
        if not allowed:
            logger.info("Denied billing operator access to user %s on %s.", user.pk, view.__class__.__name__)
        return allowed
