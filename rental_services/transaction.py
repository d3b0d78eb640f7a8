"""
rental_services.transaction -- unit of work with bounded retry.

Responsibility:
    Runs one engine operation in its own session and transaction, commits
    on success, and retries when the operation lost a concurrency race.

Invariants:
    - Only ConcurrencyConflictError and lock contention reported by the
      database (SQLite "database is locked", PostgreSQL serialization or
      deadlock failures) are retried, at most ``max_attempts`` times with a
      jittered, linearly growing backoff.
    - Business errors (every other RentalEngineError) roll back and
      propagate unchanged.
    - Any other SQLAlchemyError is logged with its traceback and surfaced as
      StorageError without internal detail.
"""

from __future__ import annotations

import random
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from rental_kernel.exceptions import ConcurrencyConflictError, RentalEngineError, StorageError
from rental_kernel.logging_config import get_logger

logger = get_logger("services.transaction")

T = TypeVar("T")

# PostgreSQL serialization_failure, deadlock_detected, lock_not_available
_RETRYABLE_PGCODES = frozenset({"40001", "40P01", "55P03"})


def is_lock_contention(exc: SQLAlchemyError) -> bool:
    """True when the database rejected the statement because of a competing lock."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    if getattr(orig, "pgcode", None) in _RETRYABLE_PGCODES:
        return True
    message = str(orig).lower()
    return isinstance(exc, OperationalError) and (
        "database is locked" in message or "database table is locked" in message
    )


def run_in_transaction(
    session_factory: Callable[[], Session],
    work: Callable[[Session], T],
    *,
    operation: str,
    max_attempts: int = 10,
    backoff_seconds: float = 0.02,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``work(session)`` and commit, retrying on concurrency conflicts.

    Raises:
        ConcurrencyConflictError: every attempt lost its race.
        RentalEngineError: whatever business error ``work`` raised.
        StorageError: an unexpected database failure.
    """
    last_conflict: ConcurrencyConflictError | None = None

    for attempt in range(1, max_attempts + 1):
        session = session_factory()
        try:
            result = work(session)
            session.commit()
            if attempt > 1:
                logger.info(
                    "transaction_succeeded_after_retry",
                    extra={"operation": operation, "attempt": attempt},
                )
            return result
        except ConcurrencyConflictError as exc:
            session.rollback()
            last_conflict = exc
        except RentalEngineError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            if not is_lock_contention(exc):
                logger.error(
                    "storage_failure",
                    exc_info=True,
                    extra={"operation": operation, "attempt": attempt},
                )
                raise StorageError(operation) from exc
            last_conflict = ConcurrencyConflictError("database", operation)
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info(
            "transaction_conflict_retry",
            extra={
                "operation": operation,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "entity_type": last_conflict.entity_type,
                "entity_id": last_conflict.entity_id,
            },
        )
        if attempt < max_attempts:
            sleep(backoff_seconds * attempt * random.uniform(0.5, 1.5))

    logger.warning(
        "transaction_retries_exhausted",
        extra={"operation": operation, "max_attempts": max_attempts},
    )
    raise last_conflict
