"""Pagination for the webhook operator endpoints."""
from __future__ import annotations

from rest_framework.pagination import PageNumberPagination


class BoundedPageNumberPagination(PageNumberPagination):
    """Page-number pagination with a capped ``page_size`` query parameter.

    Webhook logs grow without bound, so operators may ask for larger pages but never
    more than ``max_page_size`` rows at once.
    """

    page_size = 25
    page_size_query_param = "page_size"
    max_page_size = 100
    last_page_strings = ("last",)
