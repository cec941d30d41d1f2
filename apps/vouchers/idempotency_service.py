"""
Idempotency registry for voucher issuance.

Maps a caller supplied reference to at most one voucher, for all time, so
retried issuance requests return the original voucher instead of minting a
new one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from django.db import IntegrityError, transaction

from apps.common.types import Err, Ok, Result
from apps.deals.models import Business, Deal

from .errors import RetryableConflict, VoucherError, VoucherErrorCode
from .models import Voucher, VoucherValidation
from .transactions import run_in_transaction
from .validators import normalize_reference, not_found, parse_pk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationResult:
    """
    Outcome of registering an idempotency reference.

    Attributes:
        created: True when this call created the record.
        voucher_ref: Token of the bound voucher, None while unbound.
        record: The idempotency record, locked for the rest of the transaction.
    """

    created: bool
    voucher_ref: str | None
    record: VoucherValidation


class IdempotencyRegistry:
    """Reference -> voucher mapping backed by a unique database column."""

    @classmethod
    def register(cls, reference: Any, business_id: Any, deal_id: Any) -> Result[RegistrationResult, VoucherError]:
        """
        Look up or create the record for ``reference``.

        Inside an enclosing transaction this runs as a savepoint so the
        record commits or rolls back with the caller's work.
        """
        normalized = normalize_reference(reference)
        if normalized.is_err():
            return normalized
        business_pk = parse_pk(Business, business_id, "business_id")
        if business_pk.is_err():
            return business_pk
        deal_pk = parse_pk(Deal, deal_id, "deal_id")
        if deal_pk.is_err():
            return deal_pk

        return run_in_transaction(
            lambda: cls.register_locked(normalized.unwrap(), business_pk.unwrap(), deal_pk.unwrap()),
            name="idempotency.register",
        )

    @classmethod
    def register_locked(cls, reference: str, business_pk: Any, deal_pk: Any) -> Result[RegistrationResult, VoucherError]:
        """Register ``reference``; caller must hold an open transaction."""
        existing = VoucherValidation.objects.select_for_update().filter(reference=reference).first()
        if existing is not None:
            return cls._existing(existing, business_pk, deal_pk)

        if not Deal.objects.filter(pk=deal_pk, business_id=business_pk).exists():
            return not_found(
                VoucherErrorCode.VALIDATION_NOT_FOUND,
                "Deal not found for this business",
                deal_id=str(deal_pk),
                business_id=str(business_pk),
            )

        try:
            with transaction.atomic():
                record = VoucherValidation.objects.create(
                    reference=reference,
                    business_id=business_pk,
                    deal_id=deal_pk,
                )
        except IntegrityError as e:
            # A concurrent caller created the same reference first
            winner = VoucherValidation.objects.select_for_update().filter(reference=reference).first()
            if winner is None:
                raise RetryableConflict(f"Idempotency reference {reference!r} is being registered concurrently") from e
            return cls._existing(winner, business_pk, deal_pk)

        logger.info(
            "Idempotency reference registered: %s",
            reference,
            extra={"reference": reference, "deal_id": str(deal_pk)},
        )
        return Ok(RegistrationResult(created=True, voucher_ref=None, record=record))

    @staticmethod
    def _existing(record: VoucherValidation, business_pk: Any, deal_pk: Any) -> Result[RegistrationResult, VoucherError]:
        if record.deal_id != deal_pk or record.business_id != business_pk:
            logger.warning(
                "Idempotency reference %s reused for a different deal",
                record.reference,
                extra={"reference": record.reference, "deal_id": str(deal_pk)},
            )
            return Err(
                VoucherError(
                    code=VoucherErrorCode.VALIDATION_NOT_FOUND,
                    message="Reference does not match this deal",
                    details={"reference": record.reference},
                )
            )

        voucher_ref = None
        if record.voucher_id is not None:
            voucher_ref = Voucher.objects.filter(pk=record.voucher_id).values_list("token", flat=True).first()
        return Ok(RegistrationResult(created=False, voucher_ref=voucher_ref, record=record))
