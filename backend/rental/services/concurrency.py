# Overview: Transaction and locking helpers shared by the services.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def lock_rows(model, ids) -> list:
    """
    Lock a set of rows in ascending id order.

    Two transactions locking overlapping sets always acquire in the same
    order, so they serialize instead of deadlocking.
    """
    ordered = sorted(set(ids))
    if not ordered:
        return []
    query = db.session.query(model).filter(model.id.in_(ordered)).order_by(model.id)
    return lock_for_update(query).all()


@contextmanager
def unit_of_work():
    """
    Commit on success, roll back on any exception (which is re-raised).

    Everything written inside the block lands in one database transaction;
    there is no partial-commit state.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a whole unit of work with retry on store-level concurrency failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors are never retried: they are
    business outcomes. Intended for callers (routes, CLI), not services.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
