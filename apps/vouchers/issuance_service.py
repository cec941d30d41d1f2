"""
Voucher issuance engine.

Creates ISSUED vouchers for active deals. Issuance is idempotent per caller
reference and bounded by the deal's quantity cap and the business's monthly
allowance.
"""

from __future__ import annotations

import logging
from typing import Any

from django.contrib.auth import get_user_model
from django.utils import timezone

from apps.audit.services import AuditContext, AuditEventData, AuditService
from apps.common.types import Err, Ok, Result
from apps.deals.models import Business, Deal

from .allowance_service import AllowanceService
from .errors import RetryableConflict, VoucherError, VoucherErrorCode
from .idempotency_service import IdempotencyRegistry
from .models import Voucher, VoucherValidation
from .transactions import run_in_transaction
from .validators import normalize_reference, not_found, parse_pk

logger = logging.getLogger(__name__)


class IssuanceService:
    """Issues vouchers against active deals."""

    @classmethod
    def issue(cls, reference: Any, deal_id: Any, *, actor_id: Any = None) -> Result[Voucher, VoucherError]:
        """
        Issue one voucher for ``deal_id`` under the idempotency ``reference``.

        Calling again with the same reference returns the voucher created by
        the first successful call, without side effects.

        Args:
            reference: Caller supplied idempotency reference.
            deal_id: Deal to issue against.
            actor_id: Optional user recorded as the actor in the audit trail.
        """
        normalized = normalize_reference(reference)
        if normalized.is_err():
            return normalized
        deal_pk = parse_pk(Deal, deal_id, "deal_id")
        if deal_pk.is_err():
            return deal_pk
        if actor_id is not None:
            actor_pk = parse_pk(get_user_model(), actor_id, "actor_id")
            if actor_pk.is_err():
                return actor_pk
            actor_id = actor_pk.unwrap()

        result = run_in_transaction(
            lambda: cls._issue(normalized.unwrap(), deal_pk.unwrap(), actor_id),
            name="voucher.issue",
        )

        if result.is_err():
            error = result.unwrap_err()
            logger.warning(
                "Voucher issuance rejected for %s: %s",
                normalized.unwrap(),
                error.code,
                extra={"reference": normalized.unwrap(), "deal_id": str(deal_pk.unwrap()), "error_code": error.code},
            )
        return result

    @classmethod
    def _issue(cls, reference: str, deal_pk: Any, actor_id: Any) -> Result[Voucher, VoucherError]:
        deal = Deal.objects.filter(pk=deal_pk).first()
        if deal is None:
            return not_found(VoucherErrorCode.VALIDATION_NOT_FOUND, "Deal not found", deal_id=str(deal_pk))

        registration = IdempotencyRegistry.register_locked(reference, deal.business_id, deal.pk)
        if registration.is_err():
            return registration
        record = registration.unwrap().record

        if record.voucher_id is not None:
            logger.info(
                "Idempotent issuance replay for %s",
                reference,
                extra={"reference": reference, "voucher_id": str(record.voucher_id)},
            )
            return Ok(Voucher.objects.get(pk=record.voucher_id))

        # Concurrent issuers for one business serialize here, so the allowance
        # count below already includes every committed voucher.
        business = Business.objects.select_for_update().get(pk=deal.business_id)
        deal = Deal.objects.get(pk=deal.pk)

        if not deal.is_active:
            return Err(
                VoucherError(
                    code=VoucherErrorCode.DEAL_NOT_ACTIVE,
                    message="Deal is not active",
                    details={"deal_id": str(deal.pk), "status": deal.status},
                )
            )

        if deal.voucher_quantity_limit is not None:
            issued_for_deal = Voucher.objects.filter(deal=deal).count()
            if issued_for_deal >= deal.voucher_quantity_limit:
                return Err(
                    VoucherError(
                        code=VoucherErrorCode.DEAL_CAPACITY_EXHAUSTED,
                        message="Deal has reached its voucher quantity limit",
                        details={
                            "deal_id": str(deal.pk),
                            "voucher_quantity_limit": deal.voucher_quantity_limit,
                            "issued": issued_for_deal,
                        },
                    )
                )

        now = timezone.now()
        allowance = AllowanceService.evaluate(business, 1, now=now)
        if not allowance.allowed:
            return Err(
                VoucherError(
                    code=VoucherErrorCode.ALLOWANCE_EXCEEDED,
                    message=allowance.message,
                    details=allowance.as_details(),
                )
            )

        voucher = Voucher.objects.create(
            deal=deal,
            business=business,
            token=Voucher.generate_token(),
            status=Voucher.STATUS_ISSUED,
            issued_at=now,
            expires_at=deal.redemption_window_end,
        )

        bound = VoucherValidation.objects.filter(pk=record.pk, voucher__isnull=True).update(voucher=voucher)
        if bound != 1:
            raise RetryableConflict(f"Idempotency reference {reference!r} was bound concurrently")

        actor = get_user_model().objects.filter(pk=actor_id).first() if actor_id is not None else None
        AuditService.log_event_safely(
            AuditEventData(
                event_type="voucher_issued",
                content_object=voucher,
                new_values={
                    "status": voucher.status,
                    "token": voucher.token,
                    "expires_at": voucher.expires_at,
                },
                description=f"Voucher issued for deal {deal.title}",
            ),
            AuditContext(
                user=actor,
                actor_type="admin" if actor is not None else "system",
                metadata={
                    "reference": reference,
                    "deal_id": str(deal.pk),
                    "business_id": str(business.pk),
                    "current_month_issued": allowance.current_month_issued + 1,
                },
            ),
        )

        logger.info(
            "Voucher issued: %s for deal %s",
            voucher.token,
            deal.pk,
            extra={"voucher_id": str(voucher.pk), "deal_id": str(deal.pk), "reference": reference},
        )
        return Ok(voucher)
