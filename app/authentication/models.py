"""
Authentication models.

This module defines the marketplace user:
- User: Email-based user carrying a role, KYC status and the balances
  the settlement lifecycle credits (wallet, pending payout, earnings).

Related files:
    - managers.py: Custom user manager for email-based creation
    - services.py: BalanceService atomic balance mutations

Note:
    Balance fields are never assigned directly by application code.
    BalanceService issues single UPDATE statements with F() expressions so
    concurrent credits from webhooks and sweeps cannot lose increments.
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class UserRole(models.TextChoices):
    """Marketplace roles."""

    CLIENT = "client", "Client"
    EDITOR = "editor", "Editor"
    ADMIN = "admin", "Admin"


class KycStatus(models.TextChoices):
    """
    Identity verification status for editors.

    Only VERIFIED editors with a verified payout account are eligible for
    an immediate payout on release.
    """

    NOT_SUBMITTED = "not_submitted", "Not Submitted"
    PENDING = "pending", "Pending"
    VERIFIED = "verified", "Verified"
    REJECTED = "rejected", "Rejected"


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        role: client, editor or admin
        kyc_status: Identity verification status (editors)
        wallet_balance: In-platform credit from wallet refunds
        pending_payout_balance: Editor earnings awaiting payout
        total_earnings: Lifetime editor earnings from released orders
        total_withdrawn: Lifetime amount paid out to the editor

    Usage:
        editor = User.objects.create_user(
            email="editor@example.com",
            password="securepassword",
            role=UserRole.EDITOR,
        )
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    email_verified = models.BooleanField(
        default=False,
        help_text="Whether the user's email has been verified",
    )
    display_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="Name shown to the other party of an order",
    )
    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.CLIENT,
        db_index=True,
        help_text="Marketplace role",
    )
    kyc_status = models.CharField(
        max_length=20,
        choices=KycStatus.choices,
        default=KycStatus.NOT_SUBMITTED,
        help_text="Identity verification status",
    )

    # ==========================================================================
    # Balances (major currency units)
    # ==========================================================================

    wallet_balance = models.PositiveBigIntegerField(
        default=0,
        help_text="In-platform wallet credit",
    )
    pending_payout_balance = models.PositiveBigIntegerField(
        default=0,
        help_text="Earnings accrued for a later payout",
    )
    total_earnings = models.PositiveBigIntegerField(
        default=0,
        help_text="Lifetime earnings from released orders",
    )
    total_withdrawn = models.PositiveBigIntegerField(
        default=0,
        help_text="Lifetime amount paid out",
    )

    # ==========================================================================
    # Account status
    # ==========================================================================

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )
    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    def get_full_name(self):
        return self.display_name or self.email

    def get_short_name(self):
        return self.display_name or self.email.split("@")[0]

    @property
    def is_editor(self) -> bool:
        return self.role == UserRole.EDITOR

    @property
    def is_platform_admin(self) -> bool:
        """Admins by role or Django staff flag."""
        return self.role == UserRole.ADMIN or self.is_staff

    @property
    def is_kyc_verified(self) -> bool:
        return self.kyc_status == KycStatus.VERIFIED
