from django.contrib.auth.models import AbstractUser
from django.db import models


def normalize_email_address(email):
    """Case-fold and trim an email address for lookups and storage."""
    return (email or "").strip().lower()


class User(AbstractUser):
    """
    User model

    Subscription columns mirror the user's current subscription so access checks never
    need a join; they are written by the billing state machine only.
    """

    class AccessLevel(models.TextChoices):
        VISITOR = "visitor", "Visitor"
        FREE = "free", "Free"
        PREMIUM = "premium", "Premium"
        DESIGNER = "designer", "Designer"
        ADMIN = "admin", "Admin"
        SUPPORT = "support", "Support"

    class PlanType(models.TextChoices):
        NONE = "none", "None"
        FREE_TRIAL = "free_trial", "Free trial"
        MONTHLY = "monthly", "Monthly"
        SEMIANNUAL = "semiannual", "Semiannual"
        ANNUAL = "annual", "Annual"
        LIFETIME = "lifetime", "Lifetime"
        CUSTOM = "custom", "Custom"

    class SubscriptionSource(models.TextChoices):
        MANUAL = "manual", "Manual"
        HOTMART = "hotmart", "Hotmart"
        DOPPUS = "doppus", "Doppus"

    # Levels granted by staff; webhooks never change them.
    STAFF_ACCESS_LEVELS = frozenset({AccessLevel.DESIGNER, AccessLevel.ADMIN, AccessLevel.SUPPORT})

    email = models.EmailField(unique=True)
    name = models.CharField(max_length=255, blank=True)
    is_active = models.BooleanField(default=True)
    access_level = models.CharField(
        max_length=20,
        choices=AccessLevel.choices,
        default=AccessLevel.FREE,
    )
    plan_type = models.CharField(
        max_length=20,
        choices=PlanType.choices,
        default=PlanType.NONE,
    )
    subscription_source = models.CharField(
        max_length=20,
        choices=SubscriptionSource.choices,
        default=SubscriptionSource.MANUAL,
    )
    subscription_started_at = models.DateTimeField(null=True, blank=True)
    subscription_expires_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    USERNAME_FIELD = 'username'
    REQUIRED_FIELDS = ['email']

    class Meta:
        db_table = 'user'
        verbose_name = 'User'
        verbose_name_plural = 'Users'
        indexes = [
            models.Index(fields=["access_level"], name="user_access_level_idx"),
            models.Index(fields=["subscription_expires_at"], name="user_sub_expires_idx"),
        ]

    def save(self, *args, **kwargs):
        self.email = normalize_email_address(self.email)
        super().save(*args, **kwargs)

    @property
    def is_premium(self):
        return self.access_level == self.AccessLevel.PREMIUM

    @property
    def is_billing_operator(self):
        return self.is_staff or self.access_level in {self.AccessLevel.ADMIN, self.AccessLevel.SUPPORT}

    def __str__(self):
        return self.username
