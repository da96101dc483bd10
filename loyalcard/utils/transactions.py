"""
Explicit transaction boundaries for ledger mutations.

Every mutating operation runs its unit of work through ``run_in_transaction``:
the work function performs reads and writes on ``db.session`` without
committing, and this helper commits, or rolls back and retries when the
database reports a transient conflict.

Retried:
- OperationalError: serialization failures, deadlocks, lock timeouts
- IntegrityError: a concurrent writer won the race between our existence
  check and our insert; the retry re-reads and finds the winner's row

Not retried:
- LoyaltyError subclasses (validation, not found, ...): rolled back and re-raised
"""
import logging
import time
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db
from .exceptions import LoyaltyError, TransactionError

logger = logging.getLogger(__name__)

T = TypeVar('T')

RETRYABLE_ERRORS = (OperationalError, IntegrityError)


def run_in_transaction(
    work: Callable[[], T],
    operation: str,
    max_retries: int = None,
    backoff_seconds: float = None
) -> T:
    """
    Run ``work`` inside one database transaction and commit it.

    Args:
        work: Callable performing the unit of work (must not commit)
        operation: Name used in logs and in TransactionError
        max_retries: Retries after the first attempt (default TRANSACTION_MAX_RETRIES)
        backoff_seconds: Initial backoff, doubled per retry

    Returns:
        Whatever ``work`` returned

    Raises:
        LoyaltyError: Propagated unchanged from ``work``
        TransactionError: Transient failures persisted past the retry budget
    """
    if max_retries is None:
        max_retries = current_app.config.get('TRANSACTION_MAX_RETRIES', 3)
    if backoff_seconds is None:
        backoff_seconds = current_app.config.get('TRANSACTION_RETRY_BACKOFF_SECONDS', 0.05)

    attempts = max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.session.commit()
            return result
        except LoyaltyError:
            db.session.rollback()
            raise
        except RETRYABLE_ERRORS as e:
            db.session.rollback()
            if attempt >= attempts:
                logger.error(
                    f"{operation}: giving up after {attempt} attempts: {e.__class__.__name__}: {e.orig}"
                )
                raise TransactionError(operation, attempt) from e

            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                f"{operation}: transient {e.__class__.__name__} on attempt {attempt}/{attempts}, "
                f"retrying in {delay:.3f}s"
            )
            if delay:
                time.sleep(delay)
        except Exception:
            db.session.rollback()
            raise

    # Unreachable: the loop either returns or raises
    raise TransactionError(operation, attempts)
