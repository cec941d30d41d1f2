"""
Centralized voucher engine configuration for DealVault.

Values are read from Django settings on every call, so ``override_settings``
takes effect immediately.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from django.conf import settings

logger = logging.getLogger(__name__)

# ===============================================================================
# HELPER: SAFE VALUE PARSING
# ===============================================================================


def _get_positive_int(setting_name: str, default: int) -> int:
    """Get a positive integer from settings with validation."""
    value = getattr(settings, setting_name, default)
    try:
        result = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s=%r, falling back to %s", setting_name, value, default)
        result = default
    return max(1, result)


def _get_non_negative_int(setting_name: str, default: int) -> int:
    value = getattr(settings, setting_name, default)
    try:
        result = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s=%r, falling back to %s", setting_name, value, default)
        result = default
    return max(0, result)


def _get_decimal(setting_name: str, default: str) -> Decimal:
    """Get a positive decimal from settings with validation."""
    value = getattr(settings, setting_name, default)
    try:
        # Always convert to string first to avoid float precision issues
        result = Decimal(str(value))
    except (TypeError, ValueError, InvalidOperation):
        result = Decimal(default)
    if not result.is_finite() or result <= 0:
        return Decimal(default)
    return result


# ===============================================================================
# TRANSACTIONS
# ===============================================================================


def get_transaction_max_retries() -> int:
    """Retries of a whole unit after a serialization failure or deadlock."""
    return _get_non_negative_int("VOUCHER_TRANSACTION_MAX_RETRIES", 3)


def get_transaction_retry_backoff_ms() -> int:
    """Linear backoff step between transaction retries."""
    return _get_non_negative_int("VOUCHER_TRANSACTION_RETRY_BACKOFF_MS", 50)


# ===============================================================================
# ISSUANCE & PURCHASE
# ===============================================================================


# Length of VoucherValidation.reference
REFERENCE_COLUMN_LENGTH = 500


def get_reference_max_length() -> int:
    """Configured reference bound, never above the column length."""
    return min(_get_positive_int("VOUCHER_REFERENCE_MAX_LENGTH", REFERENCE_COLUMN_LENGTH), REFERENCE_COLUMN_LENGTH)


def get_purchase_max_selection_attempts() -> int:
    """Candidate vouchers tried per purchase before reporting a lost race."""
    return _get_positive_int("VOUCHER_PURCHASE_MAX_SELECTION_ATTEMPTS", 5)


def get_money_quantum() -> Decimal:
    return _get_decimal("VOUCHER_MONEY_QUANTUM", "0.01")


# ===============================================================================
# MONITORING
# ===============================================================================

DEFAULT_MONITORING_THRESHOLDS: dict[str, int] = {
    "max_purchases_per_user_per_hour": 10,
    "max_failed_payments_per_user_per_hour": 5,
    "max_purchases_per_deal_per_minute": 50,
}


def get_monitoring_thresholds() -> dict[str, int]:
    """Monitoring thresholds with defaults filled in for missing or bad keys."""
    configured: Any = getattr(settings, "VOUCHER_MONITORING_THRESHOLDS", None) or {}
    thresholds = dict(DEFAULT_MONITORING_THRESHOLDS)
    if not isinstance(configured, dict):
        logger.warning("VOUCHER_MONITORING_THRESHOLDS must be a dict, using defaults")
        return thresholds
    for key, default in DEFAULT_MONITORING_THRESHOLDS.items():
        try:
            thresholds[key] = max(1, int(configured.get(key, default)))
        except (TypeError, ValueError):
            thresholds[key] = default
    return thresholds
