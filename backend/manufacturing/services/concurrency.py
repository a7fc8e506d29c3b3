# Overview: Transaction, locking and retry helpers shared by the manufacturing services.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Rows carrying a version_id column are still protected there by the
    optimistic check at flush time (StaleDataError).
    """
    return query.with_for_update()


@contextmanager
def atomic():
    """
    One unit of work: commit when the block finishes, roll back on any error.

    Helpers called inside the block must only flush.
    """
    try:
        yield db.session
        db.session.commit()
    except BaseException:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic locking conflicts). Defaults come from the app config.
    """
    if attempts is None:
        attempts = current_app.config.get("MANUFACTURING_LOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("MANUFACTURING_LOCK_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrency conflict, retrying (attempt %s of %s)", attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))
