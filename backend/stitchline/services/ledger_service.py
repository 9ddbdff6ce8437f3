# Overview: Service-layer operations for the stage ledgers and their eligibility gate.

from __future__ import annotations

from ..extensions import db
from ..models import FINISHING_SOURCE_PRODUCTION, ReturnProcessing
from ..time_utils import today
from ..validation import CapacityError, NotFoundError, ValidationError, enforce_price_rules, validate_payload
from .activity_service import log_activity
from .concurrency import lock_sku, run_with_retry
from .permission_service import Actor, require_permission
from .stages import (
    Stage,
    available_for,
    downstream_of,
    format_quantity,
    get_stage,
    stage_consumption,
    stage_output,
    stage_row_count,
    upstream_of,
)
from .stock_service import recompute_warehouse_stock
"""
Stage Ledger Invariants (authoritative)

- Every stage row belongs to exactly one SKU; the SKU of a row never changes.
- A write is accepted only if, afterwards, every stage's consumption for the
  SKU is covered by its upstream's output (running balance >= 0 everywhere).
- Gate decisions read the full ledger at call time, under the SKU lock.
- Warehouse and sales writes rebuild the SKU's WarehouseStock row in the
  same transaction.
- Activity is logged after commit (best-effort).
"""


def _snapshot(record) -> dict:
    data = record.to_dict()
    data.pop("sku", None)
    return data


def _describe(stage: Stage, record) -> str:
    sku_code = record.sku.sku if record.sku else f"#{record.sku_id}"
    if stage.consumption_columns:
        qty = stage.consumption_of(record)
        unit = stage.unit
    else:
        qty = stage.output_of(record)
        unit = downstream_of(stage).unit if downstream_of(stage) else stage.unit
    return f"{stage.key} record #{record.id} for SKU {sku_code}: {format_quantity(qty, unit)}"


# -- Eligibility gate --

def check_eligibility(stage: Stage, sku_id: int, *, requested: int, exclude_id: int | None = None) -> int:
    """
    Raise CapacityError unless `requested` fits in the unconsumed upstream balance.

    exclude_id leaves one existing row out of the consumption sum (used when
    re-checking an edited row). Returns the available balance.
    """
    upstream = upstream_of(stage)
    if upstream is None:
        return 0

    if stage_row_count(upstream, sku_id) == 0:
        raise CapacityError(
            stage.missing_upstream_message,
            available=0,
            requested=requested,
        )

    available = available_for(stage, sku_id, exclude_id=exclude_id)
    fmt = {
        "available": format_quantity(max(available, 0), stage.unit),
        "requested": format_quantity(requested, stage.unit),
    }
    if available <= 0:
        raise CapacityError(
            stage.empty_upstream_message.format(**fmt),
            available=max(available, 0),
            requested=requested,
        )
    if requested > available:
        raise CapacityError(
            stage.shortage_message.format(**fmt),
            available=available,
            requested=requested,
        )
    return available


def check_downstream_covered(stage: Stage, sku_id: int, *, exclude_id: int, replacement_output: int) -> None:
    """
    Raise CapacityError if replacing one row's output (0 for a delete) would
    leave the downstream stage having consumed more than this stage produced.
    """
    downstream = downstream_of(stage)
    if downstream is None:
        return
    remaining = stage_output(stage, sku_id, exclude_id=exclude_id) + replacement_output
    consumed = stage_consumption(downstream, sku_id)
    if consumed > remaining:
        raise CapacityError(
            f"Cannot change {stage.key} record: {format_quantity(consumed, downstream.unit)} "
            f"already used by {downstream.key}, only {format_quantity(remaining, downstream.unit)} would remain.",
            available=remaining,
            requested=consumed,
        )


def get_available(stage_key: str, sku_id: int) -> int:
    """Unconsumed upstream balance the given stage may still draw on."""
    return max(0, available_for(get_stage(stage_key), sku_id))


# -- Stage-specific normalization --

def _prepare_values(stage: Stage, values: dict, *, creating: bool) -> None:
    if creating and values.get("record_date") is None:
        values["record_date"] = today()

    if stage.key in ("production", "finishing") and creating:
        values.setdefault("rejected_pieces", 0)
        if values["rejected_pieces"] is None:
            values["rejected_pieces"] = 0

    if stage.key == "finishing" and creating:
        values.setdefault("source", FINISHING_SOURCE_PRODUCTION)

    if stage.key == "sales":
        enforce_price_rules(values, field_name="unit_price_cents")
        enforce_price_rules(values, field_name="total_amount_cents")


def _validate_record(stage: Stage, record) -> None:
    if stage.key == "finishing":
        if (record.finished_pieces or 0) + (record.rejected_pieces or 0) <= 0:
            raise ValidationError(
                "finished_pieces + rejected_pieces must be > 0", field="finished_pieces"
            )


def _ensure_pipeline_row(stage: Stage, record, *, action: str) -> None:
    """
    Rows spawned by a return carry the return's quantity and are edited only
    through the return. Warehouse intake from a return is removed with the
    return; a refinished finishing row may still be deleted.
    """
    if stage.row_consumes(record):
        return
    if action == "delete" and stage.key == "finishing":
        return
    raise ValidationError(
        f"Cannot {action} {stage.key} record #{record.id}: it was created by a return. "
        "Change or delete the return instead.",
        field="return_id" if stage.key == "warehouse" else "source",
    )


# -- Writes --

def append_record(stage_key: str, *, sku_id: int, values: dict, actor_user_id: int | None):
    """
    Gate-check and insert one stage row inside the caller's transaction.

    The caller holds the SKU lock and commits. Internal callers (returns)
    may pass fields outside the public policy, e.g. source or return_id.
    """
    stage = get_stage(stage_key)
    values = dict(values)
    _prepare_values(stage, values, creating=True)

    if stage.key == "sales" and values.get("total_amount_cents") is None:
        values["total_amount_cents"] = values["quantity_sold"] * values["unit_price_cents"]

    record = stage.model(sku_id=sku_id, created_by_user_id=actor_user_id, **values)
    _validate_record(stage, record)

    if stage.row_consumes(record):
        check_eligibility(stage, sku_id, requested=stage.consumption_of(record))

    db.session.add(record)
    db.session.flush()

    if stage.touches_warehouse_stock:
        recompute_warehouse_stock(sku_id)
    return record


def create_record(stage_key: str, *, actor: Actor, payload: dict):
    stage = get_stage(stage_key)
    require_permission(actor, "RECORD_EVENTS")
    patch = validate_payload(model=stage.model, payload=payload, policy=stage.create_policy, partial=False)
    sku_id = patch.pop("sku_id")

    def _op():
        lock_sku(sku_id)
        record = append_record(stage_key, sku_id=sku_id, values=patch, actor_user_id=actor.user_id)
        db.session.commit()
        return record

    record = run_with_retry(_op)

    log_activity(
        sku_id=record.sku_id,
        module=stage.key,
        action="created",
        description=f"Created {_describe(stage, record)}",
        user_id=actor.user_id,
        new_values=_snapshot(record),
    )
    return record


def update_record(stage_key: str, record_id: int, *, actor: Actor, payload: dict):
    """Admin-only partial update; re-runs the gate on both sides of the row."""
    stage = get_stage(stage_key)
    require_permission(actor, "EDIT_LEDGER")
    patch = validate_payload(model=stage.model, payload=payload, policy=stage.update_policy, partial=True)
    if not patch:
        raise ValidationError("No fields to update")

    old_values: dict = {}

    def _op():
        record = db.session.get(stage.model, record_id)
        if not record:
            raise NotFoundError(f"{stage.key} record {record_id} not found")
        _ensure_pipeline_row(stage, record, action="update")
        lock_sku(record.sku_id)

        old_values.clear()
        old_values.update({k: getattr(record, k) for k in patch})

        merged = {c.key: getattr(record, c.key) for c in stage.model.__mapper__.columns}
        merged.update(patch)
        _prepare_values(stage, merged, creating=False)

        if stage.key == "sales" and "total_amount_cents" not in patch and (
            "quantity_sold" in patch or "unit_price_cents" in patch
        ):
            patch["total_amount_cents"] = merged["quantity_sold"] * merged["unit_price_cents"]

        if stage.row_consumes(record):
            new_consumption = stage.consumption_of(merged)
            if new_consumption > stage.consumption_of(record):
                check_eligibility(stage, record.sku_id, requested=new_consumption, exclude_id=record.id)

        new_output = stage.output_of(merged)
        if new_output < stage.output_of(record):
            check_downstream_covered(
                stage, record.sku_id, exclude_id=record.id, replacement_output=new_output
            )

        for key, value in patch.items():
            setattr(record, key, value)
        _validate_record(stage, record)
        db.session.flush()

        if stage.touches_warehouse_stock:
            recompute_warehouse_stock(record.sku_id)
        db.session.commit()
        return record

    record = run_with_retry(_op)

    log_activity(
        sku_id=record.sku_id,
        module=stage.key,
        action="updated",
        description=f"Updated {_describe(stage, record)}",
        user_id=actor.user_id,
        old_values=old_values,
        new_values={k: getattr(record, k) for k in patch},
    )
    return record


def remove_record(stage: Stage, record) -> None:
    """
    Delete one row inside the caller's transaction (caller holds the SKU lock).

    Rejects deletes that would strand downstream consumption. Deleting a
    finishing row detaches any return processing that spawned it.
    """
    check_downstream_covered(stage, record.sku_id, exclude_id=record.id, replacement_output=0)

    if stage.key == "finishing":
        db.session.query(ReturnProcessing).filter(
            ReturnProcessing.finishing_record_id == record.id
        ).update({ReturnProcessing.finishing_record_id: None}, synchronize_session="fetch")

    sku_id = record.sku_id
    db.session.delete(record)
    db.session.flush()

    if stage.touches_warehouse_stock:
        recompute_warehouse_stock(sku_id)


def delete_record(stage_key: str, record_id: int, *, actor: Actor) -> None:
    stage = get_stage(stage_key)
    require_permission(actor, "EDIT_LEDGER")

    snapshot: dict = {}

    def _op():
        record = db.session.get(stage.model, record_id)
        if not record:
            raise NotFoundError(f"{stage.key} record {record_id} not found")
        _ensure_pipeline_row(stage, record, action="delete")
        lock_sku(record.sku_id)
        snapshot.clear()
        snapshot.update(_snapshot(record))
        snapshot["_description"] = _describe(stage, record)
        remove_record(stage, record)
        db.session.commit()

    run_with_retry(_op)

    description = snapshot.pop("_description")
    log_activity(
        sku_id=snapshot["sku_id"],
        module=stage.key,
        action="deleted",
        description=f"Deleted {description}",
        user_id=actor.user_id,
        old_values=snapshot,
    )


# -- Reads --

def get_record(stage_key: str, record_id: int):
    stage = get_stage(stage_key)
    record = db.session.get(stage.model, record_id)
    if not record:
        raise NotFoundError(f"{stage.key} record {record_id} not found")
    return record


def list_records(stage_key: str, *, sku_id: int | None = None) -> list:
    stage = get_stage(stage_key)
    model = stage.model
    query = db.session.query(model)
    if sku_id is not None:
        query = query.filter(model.sku_id == sku_id)
    return query.order_by(model.created_at.desc(), model.id.desc()).all()
