"""
Return Processing Service

A return re-enters the pipeline depending on its condition:
- saleable: a warehouse row tagged with the return id, in the same
  transaction, so warehouse stock grows by exactly the returned quantity
- refinishing_required: one ReturnProcessing row in state pending
- rejected: recorded only

LIFECYCLE (ReturnProcessing):
1. pending - created with the return
2. refinished - spawns one finishing row (source=return) for the quantity
3. rejected - no ledger effect
refinished and rejected are terminal. Only admin and qc_team may move a row.

Order ids are unique across all returns (checked under the SKU lock and
backed by a unique constraint).
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    FINISHING_SOURCE_RETURN,
    ReturnProcessing,
    ReturnRecord,
    SalesRecord,
    WarehouseRecord,
)
from ..time_utils import today, utcnow
from ..validation import ConflictError, ModelValidationPolicy, NotFoundError, ValidationError, validate_payload
from .activity_service import log_activity
from .concurrency import lock_for_update, lock_sku, run_with_retry
from .ledger_service import append_record, remove_record
from .permission_service import Actor, require_permission
from .stages import WAREHOUSE


class ReturnError(ValueError):
    """Raised for invalid return state transitions."""


# =============================================================================
# CONSTANTS
# =============================================================================

RETURN_CONDITION_SALEABLE = "saleable"
RETURN_CONDITION_REFINISHING = "refinishing_required"
RETURN_CONDITION_REJECTED = "rejected"
RETURN_CONDITIONS = (RETURN_CONDITION_SALEABLE, RETURN_CONDITION_REFINISHING, RETURN_CONDITION_REJECTED)

RETURN_TYPE_OFFLINE = "offline"
RETURN_TYPE_ECOMMERCE = "e-commerce"
ECOMMERCE_SUBTYPES = ("courier_return", "customer_return")

PROCESSING_STATUS_PENDING = "pending"
PROCESSING_STATUS_REFINISHED = "refinished"
PROCESSING_STATUS_REJECTED = "rejected"

RETURN_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "sku_id", "order_id", "quantity", "return_type", "ecommerce_subtype",
        "return_condition", "return_source_panel", "return_reason", "record_date",
    }),
    required_on_create=frozenset({
        "sku_id", "order_id", "quantity", "return_type", "return_condition", "return_source_panel",
    }),
    positive_fields=frozenset({"quantity"}),
    choices={
        "return_type": (RETURN_TYPE_OFFLINE, RETURN_TYPE_ECOMMERCE),
        "ecommerce_subtype": ECOMMERCE_SUBTYPES,
        "return_condition": RETURN_CONDITIONS,
    },
)

RETURN_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "return_type", "ecommerce_subtype", "return_source_panel", "return_reason", "record_date",
    }),
    choices={
        "return_type": (RETURN_TYPE_OFFLINE, RETURN_TYPE_ECOMMERCE),
        "ecommerce_subtype": ECOMMERCE_SUBTYPES,
    },
)


def _check_subtype(values: dict) -> None:
    if values.get("return_type") == RETURN_TYPE_ECOMMERCE:
        if not values.get("ecommerce_subtype"):
            raise ValidationError(
                "ecommerce_subtype is required for e-commerce returns", field="ecommerce_subtype"
            )
    elif values.get("ecommerce_subtype"):
        raise ValidationError(
            "ecommerce_subtype only applies to e-commerce returns", field="ecommerce_subtype"
        )


def order_id_exists(order_id: str) -> bool:
    order_id = (order_id or "").strip()
    if not order_id:
        return False
    return db.session.query(ReturnRecord.id).filter(ReturnRecord.order_id == order_id).first() is not None


def _ensure_order_id_free(order_id: str) -> None:
    if order_id_exists(order_id):
        raise ConflictError(f"A return with order ID '{order_id}' already exists", field="order_id")


# =============================================================================
# RETURN CREATION
# =============================================================================

def create_return(*, actor: Actor, payload: dict) -> ReturnRecord:
    """
    Record a return and apply its condition's effect atomically.

    Raises:
        ValidationError: bad or missing fields
        ConflictError: order_id already used by another return
        NotFoundError: unknown SKU
    """
    require_permission(actor, "RECORD_EVENTS")
    patch = validate_payload(model=ReturnRecord, payload=payload, policy=RETURN_CREATE_POLICY, partial=False)
    _check_subtype(patch)
    if patch.get("record_date") is None:
        patch["record_date"] = today()

    sku_id = patch.pop("sku_id")
    order_id = patch["order_id"]
    _ensure_order_id_free(order_id)

    def _op():
        lock_sku(sku_id)
        _ensure_order_id_free(order_id)

        ret = ReturnRecord(sku_id=sku_id, created_by_user_id=actor.user_id, **patch)
        db.session.add(ret)
        db.session.flush()

        warehouse_row = None
        if ret.return_condition == RETURN_CONDITION_SALEABLE:
            warehouse_row = append_record(
                "warehouse",
                sku_id=sku_id,
                values={
                    "quantity_received": ret.quantity,
                    "storage_location": f"Return via {ret.return_source_panel}",
                    "return_id": ret.id,
                    "record_date": ret.record_date,
                },
                actor_user_id=actor.user_id,
            )
        elif ret.return_condition == RETURN_CONDITION_REFINISHING:
            db.session.add(ReturnProcessing(return_id=ret.id, status=PROCESSING_STATUS_PENDING))

        db.session.commit()
        return ret, warehouse_row

    try:
        ret, warehouse_row = run_with_retry(_op)
    except IntegrityError:
        _ensure_order_id_free(order_id)
        raise

    sku_code = ret.sku.sku if ret.sku else f"#{ret.sku_id}"
    log_activity(
        sku_id=ret.sku_id,
        module="returns",
        action="created",
        description=(
            f"Recorded {ret.return_condition} return of {ret.quantity} for SKU {sku_code} "
            f"(order {ret.order_id}, {ret.return_source_panel})"
        ),
        user_id=actor.user_id,
        new_values=ret.to_dict(),
    )
    if warehouse_row is not None:
        log_activity(
            sku_id=ret.sku_id,
            module="warehouse",
            action="add_stock_from_return",
            description=f"Added {ret.quantity} to warehouse stock for SKU {sku_code} from return {ret.order_id}",
            user_id=actor.user_id,
            new_values={"warehouse_record_id": warehouse_row.id, "return_id": ret.id},
        )
    return ret


# =============================================================================
# STATE TRANSITIONS
# =============================================================================

def _locked_pending_processing(return_id: int, action: str) -> tuple[ReturnRecord, ReturnProcessing]:
    ret = db.session.get(ReturnRecord, return_id)
    if not ret:
        raise NotFoundError(f"Return {return_id} not found")
    lock_sku(ret.sku_id)

    processing = lock_for_update(
        db.session.query(ReturnProcessing).filter(ReturnProcessing.return_id == return_id)
    ).first()
    if not processing:
        raise ReturnError(
            f"Return {return_id} has condition '{ret.return_condition}' and is not awaiting refinishing"
        )
    if processing.status != PROCESSING_STATUS_PENDING:
        raise ReturnError(
            f"Can only {action} pending returns. Return {return_id} has status: {processing.status}"
        )
    return ret, processing


def mark_refinished(return_id: int, *, actor: Actor, notes: str | None = None) -> ReturnProcessing:
    """
    pending -> refinished. Appends one finishing row (finished = return
    quantity, rejected = 0, source = return). A second call raises ReturnError.
    """
    require_permission(actor, "PROCESS_RETURNS")

    def _op():
        ret, processing = _locked_pending_processing(return_id, "refinish")
        finishing = append_record(
            "finishing",
            sku_id=ret.sku_id,
            values={
                "finished_pieces": ret.quantity,
                "rejected_pieces": 0,
                "source": FINISHING_SOURCE_RETURN,
            },
            actor_user_id=actor.user_id,
        )
        processing.status = PROCESSING_STATUS_REFINISHED
        processing.processed_by_user_id = actor.user_id
        processing.processed_at = utcnow()
        processing.notes = notes
        processing.finishing_record_id = finishing.id
        db.session.commit()
        return ret, processing

    ret, processing = run_with_retry(_op)

    log_activity(
        sku_id=ret.sku_id,
        module="returns",
        action="marked_refinished",
        description=(
            f"Return {ret.order_id} refinished: {ret.quantity} pieces sent to finishing "
            f"(finishing record #{processing.finishing_record_id})"
        ),
        user_id=actor.user_id,
        old_values={"status": PROCESSING_STATUS_PENDING},
        new_values=processing.to_dict(),
    )
    return processing


def reject_return(return_id: int, *, actor: Actor, notes: str | None = None) -> ReturnProcessing:
    """pending -> rejected. No ledger effect."""
    require_permission(actor, "PROCESS_RETURNS")

    def _op():
        ret, processing = _locked_pending_processing(return_id, "reject")
        processing.status = PROCESSING_STATUS_REJECTED
        processing.processed_by_user_id = actor.user_id
        processing.processed_at = utcnow()
        processing.notes = notes
        db.session.commit()
        return ret, processing

    ret, processing = run_with_retry(_op)

    log_activity(
        sku_id=ret.sku_id,
        module="returns",
        action="rejected",
        description=f"Return {ret.order_id} rejected after inspection",
        user_id=actor.user_id,
        old_values={"status": PROCESSING_STATUS_PENDING},
        new_values=processing.to_dict(),
    )
    return processing


# =============================================================================
# ADMIN EDITS
# =============================================================================

def update_return(return_id: int, *, actor: Actor, payload: dict) -> ReturnRecord:
    """Descriptive fields only; quantity, condition, SKU and order id are fixed."""
    require_permission(actor, "EDIT_LEDGER")
    patch = validate_payload(model=ReturnRecord, payload=payload, policy=RETURN_UPDATE_POLICY, partial=True)
    if not patch:
        raise ValidationError("No fields to update")

    ret = get_return(return_id)
    merged = {"return_type": ret.return_type, "ecommerce_subtype": ret.ecommerce_subtype}
    merged.update({k: v for k, v in patch.items() if k in merged})
    if merged["return_type"] == RETURN_TYPE_OFFLINE and "ecommerce_subtype" not in patch:
        merged["ecommerce_subtype"] = None
        patch["ecommerce_subtype"] = None
    _check_subtype(merged)

    old_values = {k: getattr(ret, k) for k in patch}
    for k, v in patch.items():
        setattr(ret, k, v)
    db.session.commit()

    log_activity(
        sku_id=ret.sku_id,
        module="returns",
        action="updated",
        description=f"Updated return {ret.order_id}",
        user_id=actor.user_id,
        old_values=old_values,
        new_values={k: getattr(ret, k) for k in patch},
    )
    return ret


def delete_return(return_id: int, *, actor: Actor) -> None:
    """
    Remove a return, its processing row and any warehouse intake it created.

    The warehouse intake goes through the normal ledger delete, so it is
    refused if those units have already been sold. Finishing rows spawned by
    a refinish stay in the ledger.
    """
    require_permission(actor, "EDIT_LEDGER")
    snapshot: dict = {}

    def _op():
        ret = db.session.get(ReturnRecord, return_id)
        if not ret:
            raise NotFoundError(f"Return {return_id} not found")
        lock_sku(ret.sku_id)
        snapshot.clear()
        snapshot.update(ret.to_dict())
        snapshot.pop("sku", None)

        warehouse_rows = (
            db.session.query(WarehouseRecord).filter(WarehouseRecord.return_id == ret.id).all()
        )
        for row in warehouse_rows:
            remove_record(WAREHOUSE, row)

        db.session.delete(ret)
        db.session.commit()

    run_with_retry(_op)

    log_activity(
        sku_id=snapshot["sku_id"],
        module="returns",
        action="deleted",
        description=f"Deleted return {snapshot['order_id']}",
        user_id=actor.user_id,
        old_values=snapshot,
    )


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> ReturnRecord:
    ret = db.session.get(ReturnRecord, return_id)
    if not ret:
        raise NotFoundError(f"Return {return_id} not found")
    return ret


def list_returns(*, sku_id: int | None = None, condition: str | None = None) -> list[ReturnRecord]:
    query = db.session.query(ReturnRecord)
    if sku_id is not None:
        query = query.filter(ReturnRecord.sku_id == sku_id)
    if condition is not None:
        query = query.filter(ReturnRecord.return_condition == condition)
    return query.order_by(ReturnRecord.created_at.desc(), ReturnRecord.id.desc()).all()


def list_processing(*, status: str | None = None) -> list[ReturnProcessing]:
    query = db.session.query(ReturnProcessing)
    if status is not None:
        query = query.filter(ReturnProcessing.status == status)
    return query.order_by(ReturnProcessing.created_at.desc(), ReturnProcessing.id.desc()).all()


def get_processing_for_return(return_id: int) -> ReturnProcessing | None:
    return db.session.query(ReturnProcessing).filter(ReturnProcessing.return_id == return_id).first()


def get_pending_refinishing() -> list[dict]:
    """Returns needing refinishing whose processing has not reached a terminal state."""
    rows = (
        db.session.query(ReturnRecord, ReturnProcessing)
        .outerjoin(ReturnProcessing, ReturnProcessing.return_id == ReturnRecord.id)
        .filter(ReturnRecord.return_condition == RETURN_CONDITION_REFINISHING)
        .filter(
            (ReturnProcessing.id.is_(None))
            | (ReturnProcessing.status.notin_([PROCESSING_STATUS_REFINISHED, PROCESSING_STATUS_REJECTED]))
        )
        .order_by(ReturnRecord.created_at.asc(), ReturnRecord.id.asc())
        .all()
    )
    result = []
    for ret, processing in rows:
        item = ret.to_dict()
        item["processing"] = processing.to_dict() if processing else None
        result.append(item)
    return result


def get_return_analytics(*, actor: Actor) -> dict:
    """Return volume per source panel (against units sold there) and per condition."""
    require_permission(actor, "VIEW_RETURN_ANALYTICS")

    total_count, total_quantity = db.session.query(
        func.count(ReturnRecord.id), func.coalesce(func.sum(ReturnRecord.quantity), 0)
    ).one()

    sold_by_platform = {
        (platform or "").strip().lower(): int(qty or 0)
        for platform, qty in db.session.query(
            SalesRecord.platform_name, func.sum(SalesRecord.quantity_sold)
        ).group_by(SalesRecord.platform_name).all()
    }

    by_panel = []
    panel_rows = (
        db.session.query(
            ReturnRecord.return_source_panel,
            func.count(ReturnRecord.id),
            func.coalesce(func.sum(ReturnRecord.quantity), 0),
        )
        .group_by(ReturnRecord.return_source_panel)
        .order_by(ReturnRecord.return_source_panel.asc())
        .all()
    )
    for panel, count, quantity in panel_rows:
        sold = sold_by_platform.get((panel or "").strip().lower(), 0)
        by_panel.append({
            "panel": panel,
            "return_count": int(count),
            "returned_quantity": int(quantity),
            "sold_quantity": sold,
            "return_rate_pct": round(int(quantity) * 100.0 / sold, 2) if sold else None,
        })

    by_condition = [
        {"condition": condition, "return_count": int(count), "returned_quantity": int(quantity)}
        for condition, count, quantity in db.session.query(
            ReturnRecord.return_condition,
            func.count(ReturnRecord.id),
            func.coalesce(func.sum(ReturnRecord.quantity), 0),
        )
        .group_by(ReturnRecord.return_condition)
        .order_by(ReturnRecord.return_condition.asc())
        .all()
    ]

    return {
        "total_returns": int(total_count),
        "total_returned_quantity": int(total_quantity),
        "by_panel": by_panel,
        "by_condition": by_condition,
    }


def saleable_returns_by_sku() -> dict[int, int]:
    rows = (
        db.session.query(ReturnRecord.sku_id, func.sum(ReturnRecord.quantity))
        .filter(ReturnRecord.return_condition == RETURN_CONDITION_SALEABLE)
        .group_by(ReturnRecord.sku_id)
        .all()
    )
    return {sku_id: int(qty or 0) for sku_id, qty in rows}
