"""
PayoutAccount model for editors' linked fund accounts.

An editor is eligible for an immediate payout only when their KYC is
verified and this account is VERIFIED with payouts enabled.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PayoutAccountStatus


class PayoutAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    Editor's connected payout destination at the gateway.

    Fields:
        user: Editor owning the account
        stripe_account_id: Connected account id (acct_xxx)
        status: Verification status
        payouts_enabled: Whether the gateway accepts transfers to it
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payout_account",
        help_text="Editor owning this account",
    )
    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Connected account id (acct_xxx)",
    )
    status = models.CharField(
        max_length=20,
        choices=PayoutAccountStatus.choices,
        default=PayoutAccountStatus.PENDING,
        db_index=True,
    )
    payouts_enabled = models.BooleanField(default=False)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"PayoutAccount({self.user_id}, {self.stripe_account_id}, {self.status})"

    @property
    def is_payable(self) -> bool:
        return self.status == PayoutAccountStatus.VERIFIED and self.payouts_enabled
