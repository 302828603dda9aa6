"""Outcome and error types shared by the webhook pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


class WebhookProcessingError(Exception):
    """Raised when a webhook cannot be processed and retrying will not help."""


class WebhookAuthenticationError(WebhookProcessingError):
    """Raised when a delivery fails provider token or signature verification."""


class DeadLetterError(Exception):
    """Raised when a dead-letter row cannot be retried."""


@dataclass(frozen=True)
class HandlerResult:
    """Outcome of running one delivery through the pipeline."""

    status: str
    detail: str = ""
    webhook_log_id: Optional[int] = None
    user_id: Optional[int] = None
    subscription_id: Optional[int] = None
    retryable: bool = False
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    QUEUED = "queued"
    FAILED = "failed"

    @property
    def success(self) -> bool:
        return self.status != self.FAILED

    @property
    def duplicate(self) -> bool:
        return self.status == self.DUPLICATE

    def as_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": self.success,
            "message": self.detail or self.status,
            "status": self.status,
            "duplicate": self.duplicate,
        }
        if self.webhook_log_id is not None:
            body["webhook_log_id"] = self.webhook_log_id
        if self.warnings:
            body["warnings"] = list(self.warnings)
        return body
