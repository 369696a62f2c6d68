# Overview: Retry and conditional-write helpers shared by the order core services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentModification
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute one unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, busy database) and StaleDataError
    (version_id conflicts on orders/products/coupons). Any other exception
    rolls the session back before propagating, so a unit of work is either
    fully committed by `func` or leaves no trace.

    Raises:
        ConcurrentModification: every attempt lost to a concurrent writer
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrentModification(
                    f"Gave up after {attempts} attempts: {exc.__class__.__name__}",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise ValueError("attempts must be >= 1")


def conditional_update(stmt) -> bool:
    """
    Execute an UPDATE guarded by previously observed values.

    Returns True when exactly one row matched, False when a concurrent
    writer changed the row between our read and this write.
    """
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1


def expire_cached(model, pk, *attrs: str) -> None:
    """Expire an ORM copy of a row after it was changed by a Core UPDATE."""
    cached = db.session.identity_map.get(db.session.identity_key(model, pk))
    if cached is not None:
        db.session.expire(cached, list(attrs) or None)
