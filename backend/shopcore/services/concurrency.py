# Overview: Service-layer helpers for locking, retry and all-or-nothing units of work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class ConcurrentUpdateError(Exception):
    """A competing writer won a race; the whole unit of work should be re-run."""


RETRYABLE_ERRORS = (OperationalError, StaleDataError, ConcurrentUpdateError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id columns
    on Order / PurchaseOrder rows turn a lost race into StaleDataError,
    which run_with_retry absorbs.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one unit of work, retrying on concurrency-related failures.

    - Any exception rolls the session back, so a failed unit never leaves
      partial writes behind for a later commit to pick up.
    - OperationalError (deadlocks, locked database), StaleDataError
      (optimistic locking conflicts) and ConcurrentUpdateError are retried
      with exponential backoff; everything else propagates immediately.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF_SECONDS", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.debug(
                "Retrying unit of work after %s (attempt %d/%d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


def finish_unit(commit: bool) -> None:
    """Commit a standalone operation, or just flush when enlisted in a caller's unit."""
    if commit:
        db.session.commit()
    else:
        db.session.flush()
