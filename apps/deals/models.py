"""
Business and deal models for DealVault.

A Business is the tenant that publishes deals and owns the vouchers issued
against them. A Deal is a time-bounded discount offer; only active deals can
have vouchers issued or purchased.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import ClassVar

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class Business(models.Model):
    """Local business publishing deals on the marketplace."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)

    # The vendor identity allowed to redeem this business's vouchers
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="owned_businesses",
        help_text=_("Vendor account that owns this business"),
    )

    monthly_voucher_allowance = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text=_("Vouchers this business may issue per calendar month (null = unlimited)"),
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "deal_businesses"
        verbose_name = _("Business")
        verbose_name_plural = _("Businesses")
        ordering: ClassVar[tuple[str, ...]] = ("name",)

    def __str__(self) -> str:
        return self.name

    @property
    def has_unlimited_allowance(self) -> bool:
        return self.monthly_voucher_allowance is None


class Deal(models.Model):
    """
    Discount offer published by a business.

    Prices are stored as fixed-point decimals; redemptions snapshot them so
    later edits never change what a redeemed voucher was worth.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    business = models.ForeignKey(
        Business,
        on_delete=models.PROTECT,
        related_name="deals",
    )
    title = models.CharField(max_length=200)

    STATUS_INACTIVE = "inactive"
    STATUS_ACTIVE = "active"
    STATUS_EXPIRED = "expired"
    STATUS_CHOICES: ClassVar[tuple[tuple[str, str], ...]] = (
        (STATUS_INACTIVE, "Inactive"),
        (STATUS_ACTIVE, "Active"),
        (STATUS_EXPIRED, "Expired (Archived)"),
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_INACTIVE, db_index=True)

    # Pricing
    original_value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
        help_text=_("Regular price of what the deal offers"),
    )
    deal_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
        help_text=_("Discounted price the customer pays"),
    )

    # Redemption window
    redemption_window_start = models.DateTimeField(null=True, blank=True)
    redemption_window_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text=_("Vouchers issued for this deal expire at this instant"),
    )

    voucher_quantity_limit = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text=_("Maximum vouchers ever issued for this deal (null = no cap)"),
    )

    # Touched on every purchase and redemption
    last_active_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "deal_deals"
        verbose_name = _("Deal")
        verbose_name_plural = _("Deals")
        ordering: ClassVar[tuple[str, ...]] = ("-created_at",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["business", "status"], name="idx_deal_business_status"),
        )

    def __str__(self) -> str:
        return f"{self.title} ({self.business_id})"

    def clean(self) -> None:
        super().clean()
        if self.deal_price is not None and self.original_value is not None and self.deal_price > self.original_value:
            raise ValidationError(_("Deal price cannot exceed the original value"))
        if (
            self.redemption_window_start
            and self.redemption_window_end
            and self.redemption_window_end <= self.redemption_window_start
        ):
            raise ValidationError(_("Redemption window must end after it starts"))

    @property
    def is_active(self) -> bool:
        return self.status == self.STATUS_ACTIVE

    def mark_active_usage(self) -> None:
        """Record purchase or redemption activity without touching other columns."""
        now = timezone.now()
        Deal.objects.filter(pk=self.pk).update(last_active_at=now)
        self.last_active_at = now
