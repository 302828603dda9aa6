"""Find-or-create the account tied to a webhook's customer email."""
from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction

from accounts.models import normalize_email_address
from billing.observability.logging import mask_email

logger = logging.getLogger(__name__)

User = get_user_model()

_USERNAME_STRIP = re.compile(r"[^a-zA-Z0-9._-]")
_USERNAME_MAX_LENGTH = 150
_MAX_SUFFIX_ATTEMPTS = 1000


def find_user(email: str, *, lock: bool = False) -> Optional[User]:
    queryset = User.objects.all()
    if lock:
        queryset = queryset.select_for_update()
    return queryset.filter(email=normalize_email_address(email)).first()


def generate_username(email: str) -> str:
    """Email local-part stripped to safe characters plus a numeric suffix when taken."""

    local_part = normalize_email_address(email).split("@", 1)[0]
    base = _USERNAME_STRIP.sub("", local_part)[:_USERNAME_MAX_LENGTH - 5] or "user"
    if not User.objects.filter(username=base).exists():
        return base
    for suffix in range(1, _MAX_SUFFIX_ATTEMPTS):
        candidate = f"{base}_{suffix}"
        if not User.objects.filter(username=candidate).exists():
            return candidate
    raise IntegrityError(f"Could not allocate a username for '{base}'.")


def get_or_create_user(email: str, name: str = "") -> Tuple[User, bool]:
    """Return ``(user, created)`` for the email, creating a free account when unknown.

    Existing accounts are returned untouched; name and username are never overwritten.
    New accounts receive the configured default password.
    """

    email = normalize_email_address(email)
    if not email:
        raise ValueError("Email is required to provision a user.")

    user = find_user(email, lock=True)
    if user is not None:
        return user, False

    username = generate_username(email)
    try:
        with transaction.atomic():
            user = User(
                email=email,
                username=username,
                name=(name or "").strip() or username,
                access_level=User.AccessLevel.FREE,
                is_active=True,
            )
            user.set_password(getattr(settings, "BILLING_DEFAULT_PASSWORD", "auto@123"))
            user.save()
    except IntegrityError:
        # A concurrent delivery created the same email first.
        user = find_user(email, lock=True)
        if user is None:
            raise
        return user, False

    logger.info("Created user %s (%s) from provider webhook.", user.pk, mask_email(email))
    return user, True
