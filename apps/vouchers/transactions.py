"""
Transaction runner for voucher lifecycle operations.

Each write-path operation is a callable returning a ``Result``. The runner
owns the transaction boundary: an ``Err`` rolls the unit back, serialization
failures and deadlocks re-run it, and nothing partial is ever committed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from django.db import DEFAULT_DB_ALIAS, DataError, IntegrityError, OperationalError, transaction

from apps.common.types import Err, Result

from . import config
from .errors import RetryableConflict, VoucherError, VoucherErrorCode

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _set_serializable(using: str) -> None:
    """Raise the isolation level; must be the first statement of the transaction."""
    connection = transaction.get_connection(using)
    if connection.vendor == "postgresql":
        with connection.cursor() as cursor:
            cursor.execute("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE")


def _transaction_failed(name: str, attempts: int, exc: Exception) -> VoucherError:
    return VoucherError(
        code=VoucherErrorCode.TRANSACTION_FAILED,
        message="The operation could not be completed, please retry",
        details={"operation": name, "attempts": attempts, "reason": str(exc)},
    )


def run_in_transaction(
    operation: Callable[[], Result[T, VoucherError]],
    *,
    name: str,
    using: str = DEFAULT_DB_ALIAS,
) -> Result[T, VoucherError]:
    """
    Run ``operation`` as one atomic unit and return its result.

    When called outside any atomic block the unit runs SERIALIZABLE on
    PostgreSQL. Inside an enclosing atomic block it runs as a savepoint and
    inherits the outer isolation level.

    Args:
        operation: Zero-argument callable doing all reads and writes of the unit.
        name: Operation name used in logs and in the transient error.
        using: Database alias the unit runs against.
    """
    max_retries = config.get_transaction_max_retries()
    backoff_ms = config.get_transaction_retry_backoff_ms()

    attempt = 0
    while True:
        attempt += 1
        outermost = not transaction.get_connection(using).in_atomic_block
        try:
            with transaction.atomic(using=using):
                if outermost:
                    _set_serializable(using)
                result = operation()
                if result.is_err():
                    transaction.set_rollback(True, using=using)
                return result
        except DataError as e:
            # Value the column cannot store; retrying cannot help
            logger.warning("Transaction %s rejected by the database: %s", name, e, extra={"operation": name})
            return Err(
                VoucherError(
                    code=VoucherErrorCode.INVALID_INPUT,
                    message="Input was rejected by the database",
                    details={"operation": name},
                )
            )
        except IntegrityError as e:
            # Constraint violations the operation did not map itself
            logger.exception("Transaction %s hit an unmapped constraint violation", name, extra={"operation": name})
            return Err(_transaction_failed(name, attempt, e))
        except (OperationalError, RetryableConflict) as e:
            if attempt > max_retries:
                logger.exception(
                    "Transaction %s failed after %d attempts",
                    name,
                    attempt,
                    extra={"operation": name, "attempts": attempt},
                )
                return Err(_transaction_failed(name, attempt, e))
            logger.warning(
                "Transaction %s conflicted on attempt %d, retrying: %s",
                name,
                attempt,
                e,
                extra={"operation": name, "attempt": attempt},
            )
            if backoff_ms:
                time.sleep(backoff_ms * attempt / 1000)
