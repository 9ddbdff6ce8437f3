# Overview: Row locking and retry helpers around gate-check-then-write sequences.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Sku
from ..time_utils import utcnow
from ..validation import NotFoundError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def lock_sku(sku_id: int) -> Sku:
    """
    Lock the SKU row that serializes every ledger write for that SKU.

    Also bumps the SKU's version so a concurrent writer that read the same
    balance fails its flush with StaleDataError (covers SQLite, which has no
    row locks).
    """
    sku = lock_for_update(db.session.query(Sku).filter(Sku.id == sku_id)).first()
    if not sku:
        raise NotFoundError(f"SKU {sku_id} not found")
    sku.last_ledger_write_at = utcnow()
    db.session.flush()
    return sku


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors propagate immediately.
    Any failure rolls the session back before it escapes.
    """
    if attempts is None:
        attempts = current_app.config.get("WRITE_RETRY_ATTEMPTS", 3)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Write conflict (attempt %s/%s), retrying: %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
