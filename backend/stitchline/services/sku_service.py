# backend/stitchline/services/sku_service.py
"""
SKU Registry Service

- Codes and barcodes are uppercased before every uniqueness check and write.
- Conflicts name the offending field ("sku" or "barcode").
- Deletion is a hard cascade: every dependent row goes first, then the SKU,
  then one activity row (sku_id NULL) records what was removed.
- Bulk create commits row by row; failures are collected, never raised.
"""
from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    ActivityLog,
    CuttingRecord,
    FabricRecord,
    FinishingRecord,
    ProductionRecord,
    ReturnProcessing,
    ReturnRecord,
    SalesRecord,
    Sku,
    WarehouseRecord,
    WarehouseStock,
)
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_price_rules,
    validate_payload,
)
from .activity_service import log_activity
from .concurrency import lock_sku, run_with_retry
from .permission_service import Actor, require_permission

SKU_MUTABLE_FIELDS = frozenset({
    "sku", "product_name", "fabric_type", "category", "size", "color",
    "price_cents", "barcode", "image_url", "avg_consumption_cm",
})

SKU_POLICY = ModelValidationPolicy(
    writable_fields=SKU_MUTABLE_FIELDS,
    required_on_create=frozenset({"sku", "product_name"}),
    non_negative_fields=frozenset({"avg_consumption_cm"}),
)


def normalize_code(value: str | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip().upper()
    return text or None


def apply_sku_patch(sku: Sku, patch: dict) -> None:
    for k, v in patch.items():
        if k not in SKU_MUTABLE_FIELDS:
            continue
        setattr(sku, k, v)


def _normalize_patch(patch: dict) -> dict:
    if "sku" in patch:
        patch["sku"] = normalize_code(patch["sku"])
        if not patch["sku"]:
            raise ValidationError("SKU code is required", field="sku")
    if "barcode" in patch:
        patch["barcode"] = normalize_code(patch["barcode"])
    enforce_price_rules(patch)
    return patch


def _ensure_unique(*, code: str | None, barcode: str | None, exclude_id: int | None = None) -> None:
    if code:
        query = db.session.query(Sku.id).filter(Sku.sku == code)
        if exclude_id is not None:
            query = query.filter(Sku.id != exclude_id)
        if query.first():
            raise ConflictError(f"SKU code '{code}' already exists", field="sku")
    if barcode:
        query = db.session.query(Sku.id).filter(Sku.barcode == barcode)
        if exclude_id is not None:
            query = query.filter(Sku.id != exclude_id)
        if query.first():
            raise ConflictError(f"Barcode '{barcode}' already exists", field="barcode")


def _commit_or_conflict(*, code: str | None, barcode: str | None, exclude_id: int | None = None) -> None:
    """Commit; a unique-constraint race becomes the matching ConflictError."""
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        _ensure_unique(code=code, barcode=barcode, exclude_id=exclude_id)
        raise


# -- Reads --

def get_sku(sku_id: int) -> Sku:
    sku = db.session.get(Sku, sku_id)
    if not sku:
        raise NotFoundError(f"SKU {sku_id} not found")
    return sku


def get_sku_by_code(code: str) -> Sku | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    return db.session.query(Sku).filter(Sku.sku == normalized).first()


def get_sku_by_barcode(barcode: str) -> Sku | None:
    normalized = normalize_code(barcode)
    if not normalized:
        return None
    return db.session.query(Sku).filter(Sku.barcode == normalized).first()


def list_skus() -> list[Sku]:
    return db.session.query(Sku).order_by(Sku.sku.asc(), Sku.id.asc()).all()


def check_sku_codes(codes: list[str]) -> list[str]:
    """Return the normalized codes from `codes` that already exist."""
    normalized = sorted({c for c in (normalize_code(code) for code in codes) if c})
    if not normalized:
        return []
    rows = db.session.query(Sku.sku).filter(Sku.sku.in_(normalized)).all()
    return sorted(r[0] for r in rows)


# -- Writes --

def _create_sku_inner(patch: dict) -> Sku:
    _ensure_unique(code=patch.get("sku"), barcode=patch.get("barcode"))
    sku = Sku()
    apply_sku_patch(sku, patch)
    db.session.add(sku)
    _commit_or_conflict(code=sku.sku, barcode=sku.barcode)
    return sku


def create_sku(*, actor: Actor, payload: dict) -> Sku:
    """
    Create one SKU.

    Raises:
        ValidationError: missing code or name, bad field values
        ConflictError: code or barcode already registered (field says which)
    """
    require_permission(actor, "MANAGE_SKUS")
    patch = _normalize_patch(
        validate_payload(model=Sku, payload=payload, policy=SKU_POLICY, partial=False)
    )
    sku = _create_sku_inner(patch)

    log_activity(
        sku_id=sku.id,
        module="sku",
        action="created",
        description=f"Created SKU {sku.sku} ({sku.product_name})",
        user_id=actor.user_id,
        new_values=sku.to_dict(),
    )
    return sku


def update_sku(sku_id: int, *, actor: Actor, payload: dict) -> Sku:
    require_permission(actor, "MANAGE_SKUS")
    patch = _normalize_patch(
        validate_payload(model=Sku, payload=payload, policy=SKU_POLICY, partial=True)
    )
    if not patch:
        raise ValidationError("No fields to update")

    sku = get_sku(sku_id)
    _ensure_unique(code=patch.get("sku"), barcode=patch.get("barcode"), exclude_id=sku.id)

    old_values = {k: getattr(sku, k) for k in patch}
    apply_sku_patch(sku, patch)
    _commit_or_conflict(code=patch.get("sku"), barcode=patch.get("barcode"), exclude_id=sku.id)

    log_activity(
        sku_id=sku.id,
        module="sku",
        action="updated",
        description=f"Updated SKU {sku.sku}",
        user_id=actor.user_id,
        old_values=old_values,
        new_values={k: getattr(sku, k) for k in patch},
    )
    return sku


def delete_sku(sku_id: int, *, actor: Actor) -> dict:
    """
    Hard-delete a SKU and everything that references it.

    Order matters for foreign keys: return processing before finishing,
    warehouse rows before the returns they point at.
    Returns the number of rows removed per table.
    """
    require_permission(actor, "MANAGE_SKUS")

    snapshot: dict = {}
    removed: dict = {}

    def _op():
        sku = lock_sku(sku_id)
        snapshot.clear()
        snapshot.update(sku.to_dict())
        removed.clear()

        return_ids = select(ReturnRecord.id).where(ReturnRecord.sku_id == sku_id)

        removed["activity_log"] = db.session.query(ActivityLog).filter(
            ActivityLog.sku_id == sku_id
        ).delete(synchronize_session=False)
        removed["return_processing"] = db.session.query(ReturnProcessing).filter(
            ReturnProcessing.return_id.in_(return_ids)
        ).delete(synchronize_session=False)
        for name, model in (
            ("sales_records", SalesRecord),
            ("warehouse_records", WarehouseRecord),
            ("return_records", ReturnRecord),
            ("finishing_records", FinishingRecord),
            ("production_records", ProductionRecord),
            ("cutting_records", CuttingRecord),
            ("fabric_records", FabricRecord),
            ("warehouse_stock", WarehouseStock),
        ):
            removed[name] = db.session.query(model).filter(
                model.sku_id == sku_id
            ).delete(synchronize_session=False)

        db.session.delete(sku)
        db.session.commit()

    run_with_retry(_op)
    db.session.expire_all()

    log_activity(
        sku_id=None,
        module="sku",
        action="deleted",
        description=f"SKU {snapshot['sku']} ({snapshot['product_name']}) deleted permanently",
        user_id=actor.user_id,
        old_values={"sku": snapshot, "removed_rows": dict(removed)},
    )
    return dict(removed)


def bulk_create_skus(*, actor: Actor, rows: list[dict]) -> dict:
    """
    Create SKUs one row at a time.

    rows use model field names (sku, product_name, ...). Row numbers in the
    result are 1-based positions in `rows`. A failing row never affects the
    rows around it.
    """
    require_permission(actor, "MANAGE_SKUS")

    created: list[Sku] = []
    errors: list[dict] = []
    duplicate_skus: list[str] = []

    for index, raw in enumerate(rows, start=1):
        try:
            patch = _normalize_patch(
                validate_payload(model=Sku, payload=raw, policy=SKU_POLICY, partial=False)
            )
            created.append(_create_sku_inner(patch))
        except ConflictError as exc:
            db.session.rollback()
            if exc.field == "sku":
                duplicate_skus.append(normalize_code(raw.get("sku")))
            errors.append({"row": index, "errors": [str(exc)], "data": raw})
        except ValidationError as exc:
            db.session.rollback()
            errors.append({"row": index, "errors": [str(exc)], "data": raw})

    if created:
        log_activity(
            module="sku",
            action="bulk_created",
            description=f"Bulk upload created {len(created)} of {len(rows)} SKUs",
            user_id=actor.user_id,
            new_values={"skus": [s.sku for s in created], "failed_rows": [e["row"] for e in errors]},
        )

    return {
        "total_rows": len(rows),
        "success_count": len(created),
        "error_count": len(errors),
        "errors": errors,
        "duplicate_skus": duplicate_skus,
        "created": [s.to_dict() for s in created],
    }


def count_skus() -> int:
    return int(db.session.query(func.count(Sku.id)).scalar() or 0)
