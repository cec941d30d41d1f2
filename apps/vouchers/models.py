"""
Voucher lifecycle models for DealVault.

A Voucher moves ISSUED -> ASSIGNED -> REDEEMED and never back. "Expired" is
never stored; it is derived from ``expires_at`` by :func:`effective_status`.
Purchases and redemptions are append-only records.
"""

from __future__ import annotations

import hashlib
import secrets
import time
import uuid
from datetime import datetime
from typing import Any, ClassVar

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from apps.audit.models import AppendOnlyQuerySet

# ===============================================================================
# TOKENS & DERIVED STATUS
# ===============================================================================

VOUCHER_TOKEN_PREFIX = "VCH"
MAX_TOKEN_GENERATION_ATTEMPTS = 10  # Collisions need the same millisecond and a 128-bit hash prefix

EXPIRED = "EXPIRED"
_BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def build_voucher_token() -> str:
    """Build a redemption token of the form ``VCH-<base36 millis>-<32 hex>``."""
    timestamp = _to_base36(int(time.time() * 1000))
    digest = hashlib.sha256(f"{timestamp}{secrets.token_hex(16)}".encode()).hexdigest()
    return f"{VOUCHER_TOKEN_PREFIX}-{timestamp}-{digest[:32].upper()}"


def effective_status(status: str, expires_at: datetime | None, now: datetime) -> str:
    """
    Status a voucher presents at ``now``.

    Unredeemed vouchers past ``expires_at`` report EXPIRED whatever their
    stored status. Redeemed vouchers stay REDEEMED forever.
    """
    if status != Voucher.STATUS_REDEEMED and expires_at is not None and now >= expires_at:
        return EXPIRED
    return status


# ===============================================================================
# VOUCHER
# ===============================================================================


class Voucher(models.Model):
    """Single redeemable unit issued against a deal."""

    STATUS_ISSUED = "ISSUED"
    STATUS_ASSIGNED = "ASSIGNED"
    STATUS_REDEEMED = "REDEEMED"
    STATUS_CHOICES: ClassVar[tuple[tuple[str, str], ...]] = (
        (STATUS_ISSUED, "Issued"),
        (STATUS_ASSIGNED, "Assigned"),
        (STATUS_REDEEMED, "Redeemed"),
    )
    REDEEMABLE_STATUSES: ClassVar[tuple[str, ...]] = (STATUS_ISSUED, STATUS_ASSIGNED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    deal = models.ForeignKey("deals.Deal", on_delete=models.PROTECT, related_name="vouchers")
    business = models.ForeignKey("deals.Business", on_delete=models.PROTECT, related_name="vouchers")

    token = models.CharField(max_length=64, unique=True, help_text=_("Redemption token printed on the voucher"))
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ISSUED)

    issued_at = models.DateTimeField(default=timezone.now)
    assigned_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    redeemed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "voucher_vouchers"
        verbose_name = _("Voucher")
        verbose_name_plural = _("Vouchers")
        ordering: ClassVar[tuple[str, ...]] = ("-issued_at",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["deal", "status", "issued_at"], name="idx_voucher_deal_status"),
            models.Index(fields=["business", "issued_at"], name="idx_voucher_business_issued"),
        )

    def __str__(self) -> str:
        return f"{self.token} ({self.status})"

    @classmethod
    def generate_token(cls, max_attempts: int = MAX_TOKEN_GENERATION_ATTEMPTS) -> str:
        """
        Generate a token not used by any existing voucher.

        Raises:
            ValueError: If a unique token cannot be generated within max_attempts.
        """
        for _attempt in range(max_attempts):
            token = build_voucher_token()
            if not cls.objects.filter(token=token).exists():
                return token
        raise ValueError(f"Unable to generate unique voucher token after {max_attempts} attempts")

    def effective_status(self, now: datetime | None = None) -> str:
        return effective_status(self.status, self.expires_at, now or timezone.now())

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.effective_status(now) == EXPIRED

    def is_redeemable(self, now: datetime | None = None) -> bool:
        return self.effective_status(now) in self.REDEEMABLE_STATUSES


class VoucherValidation(models.Model):
    """
    Idempotency record mapping a caller supplied reference to one voucher.

    The reference is unique for all time; the voucher link is set once, in the
    same transaction that creates the voucher.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    reference = models.CharField(max_length=500, unique=True)

    business = models.ForeignKey("deals.Business", on_delete=models.PROTECT, related_name="voucher_validations")
    deal = models.ForeignKey("deals.Deal", on_delete=models.PROTECT, related_name="voucher_validations")
    voucher = models.OneToOneField(
        Voucher,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="validation",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "voucher_validations"
        verbose_name = _("Voucher Validation")
        verbose_name_plural = _("Voucher Validations")

    def __str__(self) -> str:
        return f"{self.reference} -> {self.voucher_id or 'unbound'}"


# ===============================================================================
# PURCHASE & REDEMPTION (APPEND-ONLY)
# ===============================================================================


class Purchase(models.Model):
    """Binding of a paying customer to exactly one voucher."""

    STATUS_COMPLETED = "COMPLETED"
    STATUS_CHOICES: ClassVar[tuple[tuple[str, str], ...]] = ((STATUS_COMPLETED, "Completed"),)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="voucher_purchases",
    )
    deal = models.ForeignKey("deals.Deal", on_delete=models.PROTECT, related_name="purchases")
    voucher = models.OneToOneField(Voucher, on_delete=models.PROTECT, related_name="purchase")

    amount_paid = models.DecimalField(max_digits=10, decimal_places=2)
    payment_reference = models.CharField(
        max_length=255,
        unique=True,
        help_text=_("Opaque payment-provider reference, consumed by exactly one purchase"),
    )
    payment_provider = models.CharField(max_length=50, default="external")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_COMPLETED)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    objects = AppendOnlyQuerySet.as_manager()

    class Meta:
        db_table = "voucher_purchases"
        verbose_name = _("Purchase")
        verbose_name_plural = _("Purchases")
        ordering: ClassVar[tuple[str, ...]] = ("-created_at",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["customer", "created_at"], name="idx_purchase_customer"),
            models.Index(fields=["deal", "created_at"], name="idx_purchase_deal"),
        )

    def __str__(self) -> str:
        return f"Purchase {self.payment_reference} -> {self.voucher_id}"

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise ValidationError("Purchases are append-only and cannot be modified")
        super().save(*args, **kwargs)

    def delete(self, *args: Any, **kwargs: Any) -> tuple[int, dict[str, int]]:
        raise ValidationError("Purchases cannot be deleted")


class Redemption(models.Model):
    """
    Terminal record of a voucher being accepted at the point of sale.

    Deal prices are snapshotted so later deal edits never change what the
    redemption was worth. The one-to-one voucher link is the database backstop
    against double redemption.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    voucher = models.OneToOneField(Voucher, on_delete=models.PROTECT, related_name="redemption")
    deal = models.ForeignKey("deals.Deal", on_delete=models.PROTECT, related_name="redemptions")
    business = models.ForeignKey("deals.Business", on_delete=models.PROTECT, related_name="redemptions")
    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="voucher_redemptions",
    )

    redeemed_at = models.DateTimeField(default=timezone.now)
    original_value_snapshot = models.DecimalField(max_digits=10, decimal_places=2)
    deal_price_snapshot = models.DecimalField(max_digits=10, decimal_places=2)
    metadata = models.JSONField(default=dict, blank=True)

    objects = AppendOnlyQuerySet.as_manager()

    class Meta:
        db_table = "voucher_redemptions"
        verbose_name = _("Redemption")
        verbose_name_plural = _("Redemptions")
        ordering: ClassVar[tuple[str, ...]] = ("-redeemed_at",)

    def __str__(self) -> str:
        return f"Redemption of {self.voucher_id} by {self.vendor_id}"

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise ValidationError("Redemptions are immutable once recorded")
        super().save(*args, **kwargs)

    def delete(self, *args: Any, **kwargs: Any) -> tuple[int, dict[str, int]]:
        raise ValidationError("Redemptions cannot be deleted")


# ===============================================================================
# PURCHASE MONITORING
# ===============================================================================


class PurchaseReviewTask(models.Model):
    """Admin review item raised when purchase activity crosses a threshold."""

    EVENT_USER_VELOCITY = "USER_VELOCITY"
    EVENT_DEAL_VELOCITY = "DEAL_VELOCITY"
    EVENT_FAILED_PAYMENTS = "FAILED_PAYMENTS"
    EVENT_TYPE_CHOICES: ClassVar[tuple[tuple[str, str], ...]] = (
        (EVENT_USER_VELOCITY, "User Purchase Velocity"),
        (EVENT_DEAL_VELOCITY, "Deal Purchase Velocity"),
        (EVENT_FAILED_PAYMENTS, "Repeated Failed Payments"),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    event_type = models.CharField(max_length=30, choices=EVENT_TYPE_CHOICES)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="purchase_review_tasks",
    )
    deal = models.ForeignKey(
        "deals.Deal",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="review_tasks",
    )

    threshold = models.PositiveIntegerField()
    actual_value = models.PositiveIntegerField()

    resolved = models.BooleanField(default=False)
    resolved_at = models.DateTimeField(null=True, blank=True)
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="resolved_review_tasks",
    )
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "voucher_purchase_review_tasks"
        verbose_name = _("Purchase Review Task")
        verbose_name_plural = _("Purchase Review Tasks")
        ordering: ClassVar[tuple[str, ...]] = ("-created_at",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["resolved", "-created_at"], name="idx_review_task_pending"),
        )

    def __str__(self) -> str:
        return f"{self.event_type}: {self.actual_value} > {self.threshold}"
