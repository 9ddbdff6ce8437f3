# Overview: Service-layer operations for the activity log; best-effort audit trail.

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import ActivityLog
"""
StitchLine Activity Log Invariants (authoritative)

- Append-only: rows are never updated; they are deleted only when their SKU
  is hard-deleted (the deletion itself is then logged with sku_id NULL).
- Best-effort: the log row is committed after the mutation it describes.
  A failure here is logged and swallowed; the mutation stays committed.
- No domain logic here.
"""


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _insert_activity(
    *,
    sku_id: int | None,
    module: str,
    action: str,
    description: str,
    user_id: int | None,
    old_values: Optional[dict],
    new_values: Optional[dict],
) -> ActivityLog:
    entry = ActivityLog(
        sku_id=sku_id,
        module=module,
        action=action,
        description=description,
        user_id=user_id,
        old_values=_jsonable(old_values) if old_values is not None else None,
        new_values=_jsonable(new_values) if new_values is not None else None,
    )
    db.session.add(entry)
    db.session.commit()
    return entry


def log_activity(
    *,
    module: str,
    action: str,
    description: str,
    sku_id: int | None = None,
    user_id: int | None = None,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
) -> ActivityLog | None:
    """
    Append one activity row in its own commit.

    Call only after the primary mutation has been committed. Returns None
    when the write failed.
    """
    try:
        return _insert_activity(
            sku_id=sku_id,
            module=module,
            action=action,
            description=description,
            user_id=user_id,
            old_values=old_values,
            new_values=new_values,
        )
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to write activity log (module=%s action=%s sku_id=%s)", module, action, sku_id
        )
        return None


def list_activity(*, sku_id: int | None = None, limit: int | None = None) -> list[ActivityLog]:
    """
    Newest first. Filtered by SKU: every row for that SKU unless a limit is
    given. Unfiltered: the newest ACTIVITY_LOG_DEFAULT_LIMIT rows.
    """
    query = db.session.query(ActivityLog)
    if sku_id is not None:
        query = query.filter(ActivityLog.sku_id == sku_id)
    elif limit is None:
        limit = current_app.config.get("ACTIVITY_LOG_DEFAULT_LIMIT", 100)

    query = query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()
