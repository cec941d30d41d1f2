"""
Voucher lifecycle services for DealVault.

Single entry point for callers (request handlers, jobs, the shell). Each
operation returns ``Ok(value)`` or ``Err(VoucherError)``; see ``errors`` for
the taxonomy.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from apps.common.types import Result

from .allowance_service import AllowanceCheck, AllowanceService
from .errors import VoucherError
from .issuance_service import IssuanceService
from .models import Redemption, Voucher
from .purchase_service import DEFAULT_PAYMENT_PROVIDER, PurchaseReceipt, PurchaseService
from .redemption_service import RedemptionService


class VoucherLifecycleService:
    """Issue -> confirm purchase -> redeem."""

    @staticmethod
    def issue(reference: Any, deal_id: Any, *, actor_id: Any = None) -> Result[Voucher, VoucherError]:
        return IssuanceService.issue(reference, deal_id, actor_id=actor_id)

    @staticmethod
    def confirm_purchase(
        customer_id: Any,
        deal_id: Any,
        payment_reference: Any,
        amount_paid: Any,
        *,
        payment_provider: str = DEFAULT_PAYMENT_PROVIDER,
    ) -> Result[PurchaseReceipt, VoucherError]:
        return PurchaseService.confirm_purchase(
            customer_id, deal_id, payment_reference, amount_paid, payment_provider=payment_provider
        )

    @staticmethod
    def redeem(
        voucher_ref: Any, vendor_identity_id: Any, *, metadata: dict[str, Any] | None = None
    ) -> Result[Redemption, VoucherError]:
        return RedemptionService.redeem(voucher_ref, vendor_identity_id, metadata=metadata)

    @staticmethod
    def check_allowance(
        business_id: Any, requested_count: int = 1, *, now: datetime | None = None
    ) -> Result[AllowanceCheck, VoucherError]:
        return AllowanceService.check(business_id, requested_count, now=now)
