"""
Redemption engine - the one irreversible step of the voucher lifecycle.

Double redemption is defended in layers: SERIALIZABLE isolation with a row
lock, a conditional status update verified by row count, and the unique
voucher column on Redemption. Whichever layer catches a second attempt, the
caller sees ALREADY_REDEEMED.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from apps.audit.services import AuditContext, AuditEventData, AuditService, serialize_metadata
from apps.common.types import Err, Ok, Result
from apps.deals.models import Business, Deal

from .errors import RetryableConflict, VoucherError, VoucherErrorCode
from .models import Redemption, Voucher
from .transactions import run_in_transaction
from .validators import invalid_input, normalize_voucher_ref, parse_pk

logger = logging.getLogger(__name__)

# Shown for both unknown and foreign vouchers
VOUCHER_NOT_FOUND_MESSAGE = "Voucher not found"


def _error(code: VoucherErrorCode, message: str, voucher: Voucher | None = None) -> Err[VoucherError]:
    details: dict[str, Any] = {}
    if voucher is not None and code != VoucherErrorCode.OWNERSHIP_MISMATCH:
        details["voucher_id"] = str(voucher.pk)
    return Err(VoucherError(code=code, message=message, details=details))


class RedemptionService:
    """Redeems vouchers at the point of sale."""

    @classmethod
    def redeem(
        cls, voucher_ref: Any, vendor_identity_id: Any, *, metadata: dict[str, Any] | None = None
    ) -> Result[Redemption, VoucherError]:
        """
        Redeem a voucher on behalf of the vendor owning its business.

        Args:
            voucher_ref: Voucher token or voucher id.
            vendor_identity_id: User id of the redeeming vendor.
            metadata: Optional point-of-sale context stored on the redemption.
        """
        ref = normalize_voucher_ref(voucher_ref)
        if ref.is_err():
            return ref
        vendor_pk = parse_pk(get_user_model(), vendor_identity_id, "vendor_identity_id")
        if vendor_pk.is_err():
            return vendor_pk
        if metadata is not None and not isinstance(metadata, dict):
            return invalid_input("metadata must be a mapping", field="metadata")

        # Fast rejection before taking any lock
        voucher = cls._find_voucher(ref.unwrap())
        precheck = cls._check_preconditions(voucher, vendor_pk.unwrap(), timezone.now())
        if precheck.is_err():
            cls._record_failure(voucher, vendor_pk.unwrap(), ref.unwrap(), precheck.unwrap_err())
            return precheck

        result = run_in_transaction(
            lambda: cls._redeem(ref.unwrap(), vendor_pk.unwrap(), metadata or {}),
            name="voucher.redeem",
        )
        if result.is_err():
            cls._record_failure(voucher, vendor_pk.unwrap(), ref.unwrap(), result.unwrap_err())
        return result

    @staticmethod
    def get_redemption(voucher_ref: Any) -> Redemption | None:
        """Return the redemption record of a voucher, or None if unredeemed or unknown."""
        ref = normalize_voucher_ref(voucher_ref)
        if ref.is_err():
            return None
        voucher = RedemptionService._find_voucher(ref.unwrap())
        if voucher is None:
            return None
        return Redemption.objects.filter(voucher=voucher).first()

    @staticmethod
    def _find_voucher(voucher_ref: str, *, lock: bool = False) -> Voucher | None:
        queryset = Voucher.objects.select_for_update() if lock else Voucher.objects.all()
        voucher = queryset.filter(token=voucher_ref.upper()).first()
        if voucher is not None:
            return voucher
        try:
            voucher_id = uuid.UUID(voucher_ref)
        except ValueError:
            return None
        return queryset.filter(pk=voucher_id).first()

    @staticmethod
    def _check_preconditions(voucher: Voucher | None, vendor_pk: Any, now: datetime) -> Result[None, VoucherError]:
        if voucher is None:
            return _error(VoucherErrorCode.VOUCHER_NOT_FOUND, VOUCHER_NOT_FOUND_MESSAGE)

        owner_id = Business.objects.filter(pk=voucher.business_id).values_list("owner_id", flat=True).first()
        if owner_id is None or owner_id != vendor_pk:
            return _error(VoucherErrorCode.OWNERSHIP_MISMATCH, VOUCHER_NOT_FOUND_MESSAGE, voucher)

        if voucher.status == Voucher.STATUS_REDEEMED:
            return _error(VoucherErrorCode.ALREADY_REDEEMED, "Voucher has already been redeemed", voucher)

        if voucher.status not in Voucher.REDEEMABLE_STATUSES:
            return _error(VoucherErrorCode.NOT_REDEEMABLE, "Voucher cannot be redeemed in its current state", voucher)

        if voucher.expires_at is not None and now >= voucher.expires_at:
            return _error(VoucherErrorCode.EXPIRED, "Voucher has expired", voucher)

        return Ok(None)

    @classmethod
    def _redeem(cls, voucher_ref: str, vendor_pk: Any, metadata: dict[str, Any]) -> Result[Redemption, VoucherError]:
        now = timezone.now()
        voucher = cls._find_voucher(voucher_ref, lock=True)
        recheck = cls._check_preconditions(voucher, vendor_pk, now)
        if recheck.is_err():
            return recheck

        previous_status = voucher.status
        updated = (
            Voucher.objects.filter(pk=voucher.pk, status__in=Voucher.REDEEMABLE_STATUSES)
            .filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
            .update(status=Voucher.STATUS_REDEEMED, redeemed_at=now)
        )
        if updated != 1:
            # State moved under us; report what it moved to
            voucher.refresh_from_db()
            current = cls._check_preconditions(voucher, vendor_pk, now)
            if current.is_err():
                return current
            raise RetryableConflict(f"Voucher {voucher.pk} changed during redemption")

        deal = Deal.objects.get(pk=voucher.deal_id)
        try:
            with transaction.atomic():
                redemption = Redemption.objects.create(
                    voucher_id=voucher.pk,
                    deal=deal,
                    business_id=voucher.business_id,
                    vendor_id=vendor_pk,
                    redeemed_at=now,
                    original_value_snapshot=deal.original_value,
                    deal_price_snapshot=deal.deal_price,
                    metadata=serialize_metadata(metadata),
                )
        except IntegrityError:
            logger.warning(
                "Redemption row already exists for voucher %s",
                voucher.pk,
                extra={"voucher_id": str(voucher.pk)},
            )
            return _error(VoucherErrorCode.ALREADY_REDEEMED, "Voucher has already been redeemed", voucher)

        deal.mark_active_usage()

        voucher.status = Voucher.STATUS_REDEEMED
        voucher.redeemed_at = now
        AuditService.log_event_safely(
            AuditEventData(
                event_type="voucher_redeemed",
                content_object=voucher,
                old_values={"status": previous_status},
                new_values={
                    "status": Voucher.STATUS_REDEEMED,
                    "redemption_id": redemption.pk,
                    "original_value_snapshot": redemption.original_value_snapshot,
                    "deal_price_snapshot": redemption.deal_price_snapshot,
                },
                description=f"Voucher {voucher.token} redeemed",
            ),
            AuditContext(
                user=redemption.vendor,
                actor_type="vendor",
                metadata={"deal_id": str(deal.pk), "business_id": str(voucher.business_id)},
            ),
        )

        logger.info(
            "Voucher redeemed: %s",
            voucher.token,
            extra={"voucher_id": str(voucher.pk), "redemption_id": str(redemption.pk), "deal_id": str(deal.pk)},
        )
        return Ok(redemption)

    @staticmethod
    def _record_failure(voucher: Voucher | None, vendor_pk: Any, voucher_ref: str, error: VoucherError) -> None:
        logger.warning(
            "Redemption rejected for %s: %s",
            voucher_ref,
            error.code,
            extra={"voucher_ref": voucher_ref, "vendor_id": str(vendor_pk), "error_code": error.code},
        )
        if voucher is None:
            # Nothing to attach the event to
            return
        vendor = get_user_model().objects.filter(pk=vendor_pk).first()
        AuditService.log_event_safely(
            AuditEventData(
                event_type="redemption_failed",
                content_object=voucher,
                description=error.message,
            ),
            AuditContext(
                user=vendor,
                actor_type="vendor",
                metadata={"error_code": str(error.code), "voucher_ref": voucher_ref},
            ),
        )
