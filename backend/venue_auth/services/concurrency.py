# Overview: Row locking, retry and transaction scope helpers for service-layer mutations.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, UpstreamUnavailableError, VenueAuthError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    populate_existing() forces a fresh read even if the row is already in the
    identity map, so lockout checks never run against a stale copy.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
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


@contextmanager
def atomic():
    """
    Single transaction scope for a multi-step mutation (row change + audit).

    Commits only when the block completes. Any exception rolls back every
    write made inside the block, so no partial state is persisted.

    Storage errors are translated into the service error taxonomy:
    IntegrityError -> ConflictError, OperationalError -> UpstreamUnavailableError.
    """
    try:
        yield db.session
        db.session.commit()
    except VenueAuthError:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.warning("Integrity conflict, transaction rolled back: %s", exc.orig)
        raise ConflictError("Conflicting change, please retry") from exc
    except OperationalError as exc:
        db.session.rollback()
        current_app.logger.error("Database unavailable, transaction rolled back: %s", exc.orig)
        raise UpstreamUnavailableError() from exc
    except Exception:
        db.session.rollback()
        raise
