"""
Purchase assignment engine.

Binds a paying customer to exactly one ISSUED voucher of a deal. The
payment-provider reference is consumed by at most one purchase, and two
concurrent buyers are never handed the same voucher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from django.contrib.auth import get_user_model
from django.db import IntegrityError, connections, transaction
from django.db.models import Q, QuerySet
from django.utils import timezone

from apps.audit.services import AuditContext, AuditEventData, AuditService
from apps.common.types import Err, Ok, Result
from apps.deals.models import Deal

from . import config
from .errors import RetryableConflict, VoucherError, VoucherErrorCode
from .models import Purchase, Voucher
from .monitoring import PurchaseMonitor
from .tasks import queue_purchase_monitoring
from .transactions import run_in_transaction
from .validators import normalize_payment_provider, normalize_payment_reference, not_found, parse_amount, parse_pk

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_PROVIDER = "external"


@dataclass(frozen=True)
class PurchaseReceipt:
    """The recorded purchase and the voucher it now owns."""

    purchase: Purchase
    voucher: Voucher


class PurchaseService:
    """Assigns issued vouchers to paying customers."""

    @classmethod
    def confirm_purchase(  # noqa: PLR0913
        cls,
        customer_id: Any,
        deal_id: Any,
        payment_reference: Any,
        amount_paid: Any,
        *,
        payment_provider: str = DEFAULT_PAYMENT_PROVIDER,
    ) -> Result[PurchaseReceipt, VoucherError]:
        """
        Record a successful payment and assign one voucher to the customer.

        Retrying with the same ``payment_reference`` is safe: the retry fails
        with PAYMENT_ALREADY_USED instead of buying a second voucher.

        Args:
            customer_id: Paying user.
            deal_id: Deal the payment was for.
            payment_reference: Opaque provider reference, unique system-wide.
            amount_paid: Amount charged; compared to the deal price in cents.
            payment_provider: Free-text provider name stored on the purchase.
        """
        reference = normalize_payment_reference(payment_reference)
        if reference.is_err():
            return reference
        amount = parse_amount(amount_paid)
        if amount.is_err():
            return amount
        provider = normalize_payment_provider(payment_provider, DEFAULT_PAYMENT_PROVIDER)
        if provider.is_err():
            return provider
        customer_pk = parse_pk(get_user_model(), customer_id, "customer_id")
        if customer_pk.is_err():
            return customer_pk
        deal_pk = parse_pk(Deal, deal_id, "deal_id")
        if deal_pk.is_err():
            return deal_pk

        customer = get_user_model().objects.filter(pk=customer_pk.unwrap()).first()
        if customer is None:
            return not_found(VoucherErrorCode.VALIDATION_NOT_FOUND, "Customer not found", customer_id=str(customer_id))
        deal = Deal.objects.filter(pk=deal_pk.unwrap()).first()
        if deal is None:
            return not_found(VoucherErrorCode.VALIDATION_NOT_FOUND, "Deal not found", deal_id=str(deal_id))

        result = run_in_transaction(
            lambda: cls._assign(customer, deal.pk, reference.unwrap(), amount.unwrap(), provider.unwrap()),
            name="voucher.confirm_purchase",
        )

        if result.is_ok():
            purchase_id = result.unwrap().purchase.pk
            transaction.on_commit(lambda: queue_purchase_monitoring(purchase_id))
        else:
            cls._record_failure(customer, deal, reference.unwrap(), amount.unwrap(), result.unwrap_err())
        return result

    @classmethod
    def _assign(
        cls, customer: Any, deal_pk: Any, payment_reference: str, amount: Decimal, provider: str
    ) -> Result[PurchaseReceipt, VoucherError]:
        deal = Deal.objects.filter(pk=deal_pk).first()
        if deal is None:
            return not_found(VoucherErrorCode.VALIDATION_NOT_FOUND, "Deal not found", deal_id=str(deal_pk))

        if not deal.is_active:
            return Err(
                VoucherError(
                    code=VoucherErrorCode.DEAL_NOT_ACTIVE,
                    message="Deal is not active",
                    details={"deal_id": str(deal.pk), "status": deal.status},
                )
            )

        expected = deal.deal_price.quantize(config.get_money_quantum(), rounding=ROUND_HALF_UP)
        if amount != expected:
            return Err(
                VoucherError(
                    code=VoucherErrorCode.AMOUNT_MISMATCH,
                    message="Amount paid does not match the deal price",
                    details={"expected": str(expected), "received": str(amount)},
                )
            )

        now = timezone.now()
        available = cls._available_vouchers(deal, now)
        if not available.exists():
            return Err(
                VoucherError(
                    code=VoucherErrorCode.NO_VOUCHER_AVAILABLE,
                    message="No vouchers are available for this deal",
                    details={"deal_id": str(deal.pk)},
                )
            )

        if cls._payment_reference_used(payment_reference):
            return cls._payment_already_used(payment_reference)

        voucher = cls._claim_voucher(available, now)
        if voucher is None:
            if not cls._available_vouchers(deal, now).exists():
                return Err(
                    VoucherError(
                        code=VoucherErrorCode.NO_VOUCHER_AVAILABLE,
                        message="No vouchers are available for this deal",
                        details={"deal_id": str(deal.pk)},
                    )
                )
            raise RetryableConflict(f"Lost every voucher selection race for deal {deal.pk}")

        try:
            with transaction.atomic():
                purchase = Purchase.objects.create(
                    customer=customer,
                    deal=deal,
                    voucher=voucher,
                    amount_paid=amount,
                    payment_reference=payment_reference,
                    payment_provider=provider,
                    status=Purchase.STATUS_COMPLETED,
                )
        except IntegrityError as e:
            if cls._payment_reference_used(payment_reference):
                return cls._payment_already_used(payment_reference)
            # Voucher link collided, or the conflicting payment is not yet visible
            raise RetryableConflict(f"Purchase insert conflicted for voucher {voucher.pk}") from e

        deal.mark_active_usage()

        AuditService.log_event_safely(
            AuditEventData(
                event_type="voucher_assigned",
                content_object=voucher,
                old_values={"status": Voucher.STATUS_ISSUED},
                new_values={"status": voucher.status, "purchase_id": purchase.pk},
                description=f"Voucher assigned to purchase {payment_reference}",
            ),
            AuditContext(
                user=customer,
                actor_type="customer",
                metadata={
                    "payment_reference": payment_reference,
                    "payment_provider": provider,
                    "amount_paid": amount,
                    "deal_id": str(deal.pk),
                },
            ),
        )

        logger.info(
            "Voucher %s assigned to purchase %s",
            voucher.token,
            payment_reference,
            extra={
                "voucher_id": str(voucher.pk),
                "purchase_id": str(purchase.pk),
                "deal_id": str(deal.pk),
                "payment_reference": payment_reference,
            },
        )
        return Ok(PurchaseReceipt(purchase=purchase, voucher=voucher))

    @staticmethod
    def _available_vouchers(deal: Deal, now: Any) -> QuerySet[Voucher]:
        return (
            Voucher.objects.filter(deal=deal, status=Voucher.STATUS_ISSUED)
            .filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
            .order_by("issued_at", "id")
        )

    @staticmethod
    def _claim_voucher(available: QuerySet[Voucher], now: Any) -> Voucher | None:
        """
        Move the oldest available voucher to ASSIGNED.

        Locked rows are skipped where the database supports it, and the
        status change is a conditional update, so a voucher is never claimed
        twice even when the lock is unavailable.
        """
        tried: list[Any] = []
        for _attempt in range(config.get_purchase_max_selection_attempts()):
            candidates = available.exclude(pk__in=tried).select_for_update()
            # The locking query runs on the write alias of the queryset
            if connections[candidates.db].features.has_select_for_update_skip_locked:
                candidates = candidates.select_for_update(skip_locked=True)
            candidate = candidates.first()
            if candidate is None:
                return None

            claimed = Voucher.objects.filter(pk=candidate.pk, status=Voucher.STATUS_ISSUED).update(
                status=Voucher.STATUS_ASSIGNED,
                assigned_at=now,
            )
            if claimed == 1:
                candidate.status = Voucher.STATUS_ASSIGNED
                candidate.assigned_at = now
                return candidate

            logger.debug("Voucher %s claimed concurrently, trying next", candidate.pk)
            tried.append(candidate.pk)
        return None

    @staticmethod
    def _payment_reference_used(payment_reference: str) -> bool:
        return Purchase.objects.filter(payment_reference=payment_reference).exists()

    @staticmethod
    def _payment_already_used(payment_reference: str) -> Err[VoucherError]:
        return Err(
            VoucherError(
                code=VoucherErrorCode.PAYMENT_ALREADY_USED,
                message="Payment reference has already been used",
                details={"payment_reference": payment_reference},
            )
        )

    @staticmethod
    def _record_failure(customer: Any, deal: Deal, payment_reference: str, amount: Decimal, error: VoucherError) -> None:
        logger.warning(
            "Purchase rejected for deal %s: %s",
            deal.pk,
            error.code,
            extra={"deal_id": str(deal.pk), "payment_reference": payment_reference, "error_code": error.code},
        )
        AuditService.log_event_safely(
            AuditEventData(
                event_type="purchase_failed",
                content_object=deal,
                description=error.message,
            ),
            AuditContext(
                user=customer,
                actor_type="customer",
                metadata={
                    "error_code": str(error.code),
                    "payment_reference": payment_reference,
                    "amount_paid": amount,
                },
            ),
        )
        PurchaseMonitor.run_for_failed_payment_safely(customer)
