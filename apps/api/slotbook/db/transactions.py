"""All-or-nothing unit of work over a Session."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


class TransactionAbortedError(Exception):
    """Write contention persisted across every attempt."""
    pass


def run_transaction(
    db: Session,
    work: Callable[[Session], T],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> T:
    """
    Run ``work(db)`` and commit it as one unit.

    ``work`` must issue all of its reads before its first write. When the
    commit loses a write race the session is rolled back and ``work`` runs
    again from the top, so its reads see the rows the winner committed.
    Lost races are duplicate keys, lock contention and versioned rows
    (``version_id_col``) that changed after they were read. Any other
    exception rolls back and propagates unchanged; nothing from a failed
    attempt is persisted.
    """
    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            result = work(db)
            db.commit()
            return result
        except (IntegrityError, OperationalError, StaleDataError) as exc:
            db.rollback()
            last_error = exc
            logger.warning(
                "Transaction conflict, retrying (attempt %s/%s): %s",
                attempt,
                max_attempts,
                type(exc).__name__,
            )
        except Exception:
            db.rollback()
            raise
    raise TransactionAbortedError(
        f"transaction aborted after {max_attempts} attempts"
    ) from last_error
