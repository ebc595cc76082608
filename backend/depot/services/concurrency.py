# Overview: Transaction boundaries, row locking and retry policy shared by every service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the version_id columns catch the same races at flush time.
    """
    return query.with_for_update()


def lock_many(model, ids) -> list:
    """
    Lock several rows of one table in primary-key order.

    Acquiring locks in a fixed order keeps two batch operations touching the
    same rows from deadlocking each other. Returns rows sorted by id; missing
    ids are simply absent from the result.
    """
    unique_ids = sorted(set(ids))
    if not unique_ids:
        return []
    query = db.session.query(model).filter(model.id.in_(unique_ids)).order_by(model.id.asc())
    return lock_for_update(query).all()


def _retry_policy() -> tuple[int, float]:
    try:
        cfg = current_app.config
    except RuntimeError:
        return 3, 0.1
    return int(cfg.get("RETRY_ATTEMPTS", 3)), float(cfg.get("RETRY_BACKOFF_BASE", 0.1))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    default_attempts, default_backoff = _retry_policy()
    attempts = attempts or default_attempts
    backoff_base = default_backoff if backoff_base is None else backoff_base

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


def run_atomic(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Run func as one unit of work: commit on success, roll back on any error.

    Concurrency failures are retried from scratch (func is re-invoked, so it
    must re-read everything it mutates). Any other exception is propagated
    after the rollback, so a failed operation leaves no partial writes.
    """
    def _op():
        try:
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError):
            raise
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)


def commit_with_retry(*, attempts: int | None = None, backoff_base: float | None = None):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
