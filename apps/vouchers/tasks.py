"""
Voucher Background Tasks for DealVault
Django-Q2 tasks for work that runs after a purchase commits.

Usage:
    from apps.vouchers.tasks import queue_purchase_monitoring
    transaction.on_commit(lambda: queue_purchase_monitoring(purchase_id))
"""

from __future__ import annotations

import logging
from typing import Any

from django.db import transaction
from django_q.tasks import async_task

from .monitoring import PurchaseMonitor

logger = logging.getLogger(__name__)

# Task timeout in seconds
TASK_TIMEOUT = 60


def run_purchase_monitoring(purchase_id: str) -> dict[str, Any]:
    """
    Run the monitoring checks for one completed purchase.

    Failures are logged and reported in the task result, never raised.
    """
    try:
        with transaction.atomic():
            tasks = PurchaseMonitor.run_for_purchase(purchase_id)
    except Exception as e:
        logger.exception("Purchase monitoring failed for purchase %s", purchase_id)
        return {"success": False, "purchase_id": purchase_id, "error": str(e)}

    return {
        "success": True,
        "purchase_id": purchase_id,
        "flagged": [task.event_type for task in tasks],
    }


def queue_purchase_monitoring(purchase_id: Any) -> str | None:
    """
    Queue monitoring for a purchase.

    Returns:
        Task ID if queued, None if the queue was unavailable
    """
    try:
        task_id = async_task(
            "apps.vouchers.tasks.run_purchase_monitoring",
            str(purchase_id),
            task_name=f"purchase-monitoring-{purchase_id}",
            timeout=TASK_TIMEOUT,
        )
    except Exception:
        logger.exception("Failed to queue purchase monitoring for purchase %s", purchase_id)
        return None

    logger.debug("Queued purchase monitoring for purchase %s: task %s", purchase_id, task_id)
    return str(task_id)
