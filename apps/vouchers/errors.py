"""
Error taxonomy for the voucher lifecycle engine.

Every engine operation returns ``Err(VoucherError)`` for expected failures.
The category decides how a caller should surface the failure (not found,
state conflict, quota, bad input, transient).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class VoucherErrorCode(StrEnum):
    """Machine-readable failure codes returned by the engine."""

    VALIDATION_NOT_FOUND = "VALIDATION_NOT_FOUND"
    VOUCHER_NOT_FOUND = "VOUCHER_NOT_FOUND"
    OWNERSHIP_MISMATCH = "OWNERSHIP_MISMATCH"
    ALREADY_REDEEMED = "ALREADY_REDEEMED"
    DEAL_NOT_ACTIVE = "DEAL_NOT_ACTIVE"
    NOT_REDEEMABLE = "NOT_REDEEMABLE"
    EXPIRED = "EXPIRED"
    PAYMENT_ALREADY_USED = "PAYMENT_ALREADY_USED"
    NO_VOUCHER_AVAILABLE = "NO_VOUCHER_AVAILABLE"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    DEAL_CAPACITY_EXHAUSTED = "DEAL_CAPACITY_EXHAUSTED"
    ALLOWANCE_EXCEEDED = "ALLOWANCE_EXCEEDED"
    INVALID_INPUT = "INVALID_INPUT"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"


class ErrorCategory(StrEnum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    QUOTA = "quota"
    VALIDATION = "validation"
    TRANSIENT = "transient"


_CATEGORY_BY_CODE: dict[VoucherErrorCode, ErrorCategory] = {
    VoucherErrorCode.VALIDATION_NOT_FOUND: ErrorCategory.NOT_FOUND,
    VoucherErrorCode.VOUCHER_NOT_FOUND: ErrorCategory.NOT_FOUND,
    # Ownership failures look like missing vouchers so existence is not leaked
    VoucherErrorCode.OWNERSHIP_MISMATCH: ErrorCategory.NOT_FOUND,
    VoucherErrorCode.ALREADY_REDEEMED: ErrorCategory.CONFLICT,
    VoucherErrorCode.DEAL_NOT_ACTIVE: ErrorCategory.CONFLICT,
    VoucherErrorCode.NOT_REDEEMABLE: ErrorCategory.CONFLICT,
    VoucherErrorCode.EXPIRED: ErrorCategory.CONFLICT,
    VoucherErrorCode.PAYMENT_ALREADY_USED: ErrorCategory.CONFLICT,
    VoucherErrorCode.NO_VOUCHER_AVAILABLE: ErrorCategory.CONFLICT,
    VoucherErrorCode.AMOUNT_MISMATCH: ErrorCategory.CONFLICT,
    VoucherErrorCode.DEAL_CAPACITY_EXHAUSTED: ErrorCategory.CONFLICT,
    VoucherErrorCode.ALLOWANCE_EXCEEDED: ErrorCategory.QUOTA,
    VoucherErrorCode.INVALID_INPUT: ErrorCategory.VALIDATION,
    VoucherErrorCode.TRANSACTION_FAILED: ErrorCategory.TRANSIENT,
}

_HTTP_STATUS_BY_CATEGORY: dict[ErrorCategory, int] = {
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.QUOTA: 429,
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.TRANSIENT: 503,
}


@dataclass(frozen=True)
class VoucherError:
    """
    Failure value carried by ``Err`` results.

    Attributes:
        code: Machine-readable failure code.
        message: Human-readable explanation, safe to show to the caller.
        details: Structured context (allowance counts, ids) for the caller.
    """

    code: VoucherErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORY_BY_CODE[self.code]

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS_BY_CATEGORY[self.category]

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": str(self.code),
            "message": self.message,
            "category": str(self.category),
            "details": dict(self.details),
        }

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class RetryableConflict(Exception):
    """
    Raised inside a transactional unit when a constraint race was lost.

    The transaction runner rolls back and re-runs the whole unit.
    """
