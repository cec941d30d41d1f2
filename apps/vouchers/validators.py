"""
Input validation for voucher engine entry points.

Everything here runs before a transaction is opened; failures are
``INVALID_INPUT`` errors.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from django.core.exceptions import ValidationError
from django.db import models

from apps.common.types import Err, Ok, Result, to_money

from . import config
from .errors import VoucherError, VoucherErrorCode

MAX_PAYMENT_REFERENCE_LENGTH = 255
MAX_VOUCHER_REF_LENGTH = 64
MAX_PAYMENT_PROVIDER_LENGTH = 50
# Largest value the DecimalField(max_digits=10, decimal_places=2) money columns hold
MAX_AMOUNT = Decimal("99999999.99")


def invalid_input(message: str, **details: Any) -> Err[VoucherError]:
    return Err(VoucherError(code=VoucherErrorCode.INVALID_INPUT, message=message, details=details))


def not_found(code: VoucherErrorCode, message: str, **details: Any) -> Err[VoucherError]:
    return Err(VoucherError(code=code, message=message, details=details))


def parse_pk(model: type[models.Model], value: Any, field: str) -> Result[Any, VoucherError]:
    """Coerce an identifier to the model's primary key type."""
    if value is None or isinstance(value, bool) or value == "":
        return invalid_input(f"{field} is required", field=field)
    try:
        return Ok(model._meta.pk.to_python(value))
    except ValidationError:
        return invalid_input(f"{field} is not a valid identifier", field=field)


def normalize_reference(reference: Any) -> Result[str, VoucherError]:
    """Strip and bound-check an issuance idempotency reference."""
    if not isinstance(reference, str) or not reference.strip():
        return invalid_input("reference is required", field="reference")
    if "\x00" in reference:
        return invalid_input("reference contains a NUL character", field="reference")
    normalized = reference.strip()
    max_length = config.get_reference_max_length()
    if len(normalized) > max_length:
        return invalid_input(
            f"reference must be at most {max_length} characters",
            field="reference",
            max_length=max_length,
        )
    return Ok(normalized)


def normalize_payment_reference(payment_reference: Any) -> Result[str, VoucherError]:
    if not isinstance(payment_reference, str) or not payment_reference.strip():
        return invalid_input("payment_reference is required", field="payment_reference")
    if "\x00" in payment_reference:
        return invalid_input("payment_reference contains a NUL character", field="payment_reference")
    normalized = payment_reference.strip()
    if len(normalized) > MAX_PAYMENT_REFERENCE_LENGTH:
        return invalid_input(
            f"payment_reference must be at most {MAX_PAYMENT_REFERENCE_LENGTH} characters",
            field="payment_reference",
        )
    return Ok(normalized)


def normalize_payment_provider(payment_provider: Any, default: str) -> Result[str, VoucherError]:
    """Blank providers fall back to ``default``."""
    if payment_provider is None:
        return Ok(default)
    if not isinstance(payment_provider, str) or "\x00" in payment_provider:
        return invalid_input("payment_provider must be a string", field="payment_provider")
    normalized = payment_provider.strip()
    if len(normalized) > MAX_PAYMENT_PROVIDER_LENGTH:
        return invalid_input(
            f"payment_provider must be at most {MAX_PAYMENT_PROVIDER_LENGTH} characters",
            field="payment_provider",
        )
    return Ok(normalized or default)


def normalize_voucher_ref(voucher_ref: Any) -> Result[str, VoucherError]:
    if not isinstance(voucher_ref, str) or not voucher_ref.strip():
        return invalid_input("voucher_ref is required", field="voucher_ref")
    if "\x00" in voucher_ref:
        return invalid_input("voucher_ref is not a valid voucher reference", field="voucher_ref")
    normalized = voucher_ref.strip()
    if len(normalized) > MAX_VOUCHER_REF_LENGTH:
        return invalid_input("voucher_ref is not a valid voucher reference", field="voucher_ref")
    return Ok(normalized)


def parse_amount(amount: Any) -> Result[Decimal, VoucherError]:
    """
    Parse an amount paid into a fixed-point Decimal.

    Strings, ints and Decimals are accepted; floats go through ``str`` so
    9.99 compares equal to Decimal("9.99").
    """
    parsed = to_money(amount, config.get_money_quantum())
    if parsed is None:
        return invalid_input("amount_paid must be a number", field="amount_paid")
    if parsed < 0:
        return invalid_input("amount_paid cannot be negative", field="amount_paid")
    if parsed > MAX_AMOUNT:
        return invalid_input(f"amount_paid must not exceed {MAX_AMOUNT}", field="amount_paid")
    return Ok(parsed)
