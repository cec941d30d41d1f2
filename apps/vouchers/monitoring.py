"""
Purchase monitoring for DealVault.

Observes purchase activity after the fact and raises review tasks for an
administrator when velocity thresholds are crossed. Monitoring never blocks,
approves or reverses a purchase.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from django.db import transaction
from django.utils import timezone

from apps.audit.models import AuditEvent
from apps.audit.services import AuditContext, AuditEventData, AuditService
from apps.common.types import Ok, Result

from . import config
from .errors import VoucherError, VoucherErrorCode
from .models import Purchase, PurchaseReviewTask
from .validators import not_found, parse_pk

logger = logging.getLogger(__name__)

USER_VELOCITY_WINDOW = timedelta(hours=1)
DEAL_VELOCITY_WINDOW = timedelta(minutes=1)
FAILED_PAYMENTS_WINDOW = timedelta(hours=1)


class PurchaseMonitor:
    """Threshold checks over recent purchases and failed purchase attempts."""

    @classmethod
    def run_for_purchase(cls, purchase_id: Any) -> list[PurchaseReviewTask]:
        """Run every check for the customer and deal of a completed purchase."""
        purchase = Purchase.objects.filter(pk=purchase_id).select_related("customer", "deal").first()
        if purchase is None:
            logger.warning("Monitoring skipped, purchase %s not found", purchase_id)
            return []

        thresholds = config.get_monitoring_thresholds()
        now = timezone.now()
        tasks: list[PurchaseReviewTask] = []

        user_count = Purchase.objects.filter(
            customer_id=purchase.customer_id, created_at__gte=now - USER_VELOCITY_WINDOW
        ).count()
        task = cls._flag_if_exceeded(
            PurchaseReviewTask.EVENT_USER_VELOCITY,
            purchase.customer,
            None,
            thresholds["max_purchases_per_user_per_hour"],
            user_count,
            USER_VELOCITY_WINDOW,
        )
        if task:
            tasks.append(task)

        deal_count = Purchase.objects.filter(
            deal_id=purchase.deal_id, created_at__gte=now - DEAL_VELOCITY_WINDOW
        ).count()
        task = cls._flag_if_exceeded(
            PurchaseReviewTask.EVENT_DEAL_VELOCITY,
            purchase.customer,
            purchase.deal,
            thresholds["max_purchases_per_deal_per_minute"],
            deal_count,
            DEAL_VELOCITY_WINDOW,
        )
        if task:
            tasks.append(task)

        tasks.extend(cls._check_failed_payments(purchase.customer, thresholds, now))
        return tasks

    @classmethod
    def run_for_failed_payment(cls, customer: Any) -> list[PurchaseReviewTask]:
        """Check the failed-payment threshold after a rejected purchase."""
        return cls._check_failed_payments(customer, config.get_monitoring_thresholds(), timezone.now())

    @classmethod
    def run_for_failed_payment_safely(cls, customer: Any) -> None:
        try:
            with transaction.atomic():
                cls.run_for_failed_payment(customer)
        except Exception:
            logger.exception("Failed-payment monitoring failed for user %s", getattr(customer, "pk", customer))

    @classmethod
    def _check_failed_payments(cls, customer: Any, thresholds: dict[str, int], now: Any) -> list[PurchaseReviewTask]:
        failed_count = AuditEvent.objects.filter(
            action="purchase_failed",
            user=customer,
            timestamp__gte=now - FAILED_PAYMENTS_WINDOW,
        ).count()
        task = cls._flag_if_exceeded(
            PurchaseReviewTask.EVENT_FAILED_PAYMENTS,
            customer,
            None,
            thresholds["max_failed_payments_per_user_per_hour"],
            failed_count,
            FAILED_PAYMENTS_WINDOW,
        )
        return [task] if task else []

    @staticmethod
    def _flag_if_exceeded(  # noqa: PLR0913
        event_type: str,
        user: Any,
        deal: Any,
        threshold: int,
        actual_value: int,
        window: timedelta,
    ) -> PurchaseReviewTask | None:
        if actual_value <= threshold:
            return None

        # One open task per pattern and window is enough for a reviewer
        already_open = PurchaseReviewTask.objects.filter(
            event_type=event_type,
            user=user,
            deal=deal,
            resolved=False,
            created_at__gte=timezone.now() - window,
        ).exists()
        if already_open:
            return None

        task = PurchaseReviewTask.objects.create(
            event_type=event_type,
            user=user,
            deal=deal,
            threshold=threshold,
            actual_value=actual_value,
        )
        logger.warning(
            "Purchase pattern flagged for review: %s (%d > %d)",
            event_type,
            actual_value,
            threshold,
            extra={
                "event_type": event_type,
                "user_id": str(user.pk),
                "deal_id": str(deal.pk) if deal else None,
                "task_id": str(task.pk),
            },
        )
        AuditService.log_event_safely(
            AuditEventData(
                event_type="purchase_review_flagged",
                content_object=task,
                new_values={"event_type": event_type, "threshold": threshold, "actual_value": actual_value},
                description=f"{event_type} threshold crossed",
            ),
            AuditContext(user=user, actor_type="system"),
        )
        return task

    # ===============================================================================
    # REVIEW TASKS
    # ===============================================================================

    @staticmethod
    @transaction.atomic
    def resolve_review_task(task_id: Any, resolved_by: Any, notes: str = "") -> Result[PurchaseReviewTask, VoucherError]:
        """
        Mark a review task resolved.

        Resolving an already resolved task returns it unchanged.
        """
        task_pk = parse_pk(PurchaseReviewTask, task_id, "task_id")
        if task_pk.is_err():
            return task_pk

        task = PurchaseReviewTask.objects.select_for_update().filter(pk=task_pk.unwrap()).first()
        if task is None:
            return not_found(VoucherErrorCode.VALIDATION_NOT_FOUND, "Review task not found", task_id=str(task_id))

        if task.resolved:
            logger.info("Review task %s already resolved", task.pk)
            return Ok(task)

        task.resolved = True
        task.resolved_at = timezone.now()
        task.resolved_by = resolved_by
        task.notes = notes
        task.save(update_fields=["resolved", "resolved_at", "resolved_by", "notes"])
        logger.info(
            "Review task %s resolved",
            task.pk,
            extra={"task_id": str(task.pk), "resolved_by": str(getattr(resolved_by, "pk", resolved_by))},
        )
        return Ok(task)

    @staticmethod
    def pending_review_tasks() -> list[PurchaseReviewTask]:
        return list(
            PurchaseReviewTask.objects.filter(resolved=False).select_related("user", "deal").order_by("-created_at")
        )
