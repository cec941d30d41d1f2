"""
Monthly voucher allowance for businesses.

The allowance window is the current calendar month in the project time zone.
Nothing is persisted: every check recounts vouchers by ``issued_at``, so the
window resets on the first of the month with no job to run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from django.utils import timezone

from apps.common.types import Ok, Result
from apps.deals.models import Business

from .errors import VoucherError, VoucherErrorCode
from .models import Voucher
from .validators import invalid_input, not_found, parse_pk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllowanceCheck:
    """
    Allowance decision for one business at one instant.

    Attributes:
        allowed: Whether ``requested_count`` more vouchers may be issued.
        current_month_issued: Vouchers issued in the current calendar month.
        monthly_allowance: Configured cap, None when unlimited.
        remaining: Vouchers left this month, None when unlimited.
        message: Human-readable summary.
    """

    allowed: bool
    current_month_issued: int
    monthly_allowance: int | None
    remaining: int | None
    message: str

    def as_details(self) -> dict[str, Any]:
        return {
            "current_month_issued": self.current_month_issued,
            "monthly_allowance": self.monthly_allowance,
            "remaining": self.remaining,
        }


def month_window(now: datetime) -> tuple[datetime, datetime]:
    """Return ``[start of month, start of next month)`` in the current time zone."""
    local_now = timezone.localtime(now)
    start = local_now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


class AllowanceService:
    """Counts monthly issuance against a business's allowance."""

    @classmethod
    def check(
        cls, business_id: Any, requested_count: int = 1, *, now: datetime | None = None
    ) -> Result[AllowanceCheck, VoucherError]:
        """Check whether ``business_id`` may issue ``requested_count`` more vouchers."""
        if isinstance(requested_count, bool) or not isinstance(requested_count, int) or requested_count < 1:
            return invalid_input("requested_count must be a positive integer", field="requested_count")

        business_pk = parse_pk(Business, business_id, "business_id")
        if business_pk.is_err():
            return business_pk

        business = Business.objects.filter(pk=business_pk.unwrap()).first()
        if business is None:
            return not_found(
                VoucherErrorCode.VALIDATION_NOT_FOUND,
                "Business not found",
                business_id=str(business_pk.unwrap()),
            )

        return Ok(cls.evaluate(business, requested_count, now=now))

    @staticmethod
    def current_month_issued(business: Business, *, now: datetime | None = None) -> int:
        start, end = month_window(now or timezone.now())
        return Voucher.objects.filter(business=business, issued_at__gte=start, issued_at__lt=end).count()

    @classmethod
    def evaluate(cls, business: Business, requested_count: int = 1, *, now: datetime | None = None) -> AllowanceCheck:
        """
        Decide against an already loaded business.

        Issuance calls this with the business row locked so concurrent issuers
        see each other's vouchers.
        """
        issued = cls.current_month_issued(business, now=now)
        allowance = business.monthly_voucher_allowance

        if allowance is None:
            return AllowanceCheck(
                allowed=True,
                current_month_issued=issued,
                monthly_allowance=None,
                remaining=None,
                message="Unlimited monthly allowance",
            )

        remaining = max(0, allowance - issued)
        allowed = issued + requested_count <= allowance
        if allowed:
            message = f"{remaining} of {allowance} vouchers remaining this month"
        else:
            message = f"Monthly voucher allowance exceeded: {issued} of {allowance} issued, {remaining} remaining"
            logger.debug(
                "Allowance denied for business %s",
                business.pk,
                extra={"business_id": str(business.pk), "issued": issued, "allowance": allowance},
            )

        return AllowanceCheck(
            allowed=allowed,
            current_month_issued=issued,
            monthly_allowance=allowance,
            remaining=remaining,
            message=message,
        )
