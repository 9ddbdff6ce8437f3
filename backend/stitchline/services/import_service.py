# Overview: Service-layer operations for tabular imports; per-row validation and posting.

from __future__ import annotations

import csv
from typing import Any, IO, Iterable

from ..extensions import db
from ..models import ImportLog
from ..validation import CapacityError, ConflictError, NotFoundError, ValidationError
from .activity_service import log_activity
from .import_schemas import SCHEMAS, BaseImportSchema, SchemaContext, SkuSchema
from .permission_service import Actor, require_permission
from .reporting_service import get_inventory_summary
from .return_service import ReturnError
"""
Tabular Import Invariants (authoritative)

- Rows are processed in file order, one at a time, each in its own commit.
- A bad row is reported and skipped; it never aborts the batch.
- Row numbers are 1-based positions among the data rows (header excluded).
- Preview never writes. Confirm writes one ImportLog row per run.
"""

# Errors a single row may raise while posting; anything else is a bug and propagates.
ROW_ERRORS = (ValidationError, ConflictError, CapacityError, NotFoundError, ReturnError)


class TabularImportError(ValueError):
    """Raised when an import cannot start at all (unknown type, no rows)."""


def _schema_for(import_type: str) -> BaseImportSchema:
    schema = SCHEMAS.get(import_type)
    if not schema:
        raise TabularImportError(
            f"Unknown import type '{import_type}'. Expected one of: {', '.join(SCHEMAS)}"
        )
    return schema


def _public(normalized: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in normalized.items() if not k.startswith("_")}


def read_csv_rows(stream: IO[str]) -> list[dict[str, Any]]:
    """Read a CSV text stream into row dicts keyed by header; blank lines are skipped."""
    reader = csv.DictReader(stream)
    rows = []
    for row in reader:
        if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
            continue
        rows.append(dict(row))
    return rows


def preview_import(import_type: str, rows: Iterable[dict[str, Any]]) -> dict[str, Any]:
    """
    Validate every row without writing.

    Sales rows are also checked against warehouse stock, counting earlier
    rows of the same file against the same SKU.
    """
    schema = _schema_for(import_type)
    state: dict[str, Any] = {}
    valid_rows = []
    errors = []
    total = 0

    for row_number, raw in enumerate(rows, start=1):
        total += 1
        normalized = schema.normalize_row(raw)
        row_errors = schema.validate_row(normalized)
        if not row_errors:
            row_errors = schema.check_references(normalized, state)
        if row_errors:
            errors.append({"row": row_number, "errors": row_errors, "data": raw})
        else:
            valid_rows.append({"row": row_number, "data": _public(normalized)})

    return {
        "import_type": import_type,
        "total_rows": total,
        "valid_count": len(valid_rows),
        "error_count": len(errors),
        "rows": valid_rows,
        "errors": errors,
    }


def confirm_import(
    import_type: str,
    rows: Iterable[dict[str, Any]],
    *,
    actor: Actor,
    file_name: str | None = None,
) -> dict[str, Any]:
    schema = _schema_for(import_type)
    require_permission(actor, schema.required_permission)

    rows = list(rows)
    if not rows:
        raise TabularImportError("No rows to import")

    posted: list[dict[str, Any]] = []
    errors: list[dict[str, Any]] = []

    for row_number, raw in enumerate(rows, start=1):
        normalized = schema.normalize_row(raw)
        row_errors = schema.validate_row(normalized)
        if row_errors:
            errors.append({"row": row_number, "errors": row_errors, "data": raw})
            continue
        try:
            result = schema.post_row(
                normalized,
                SchemaContext(actor=actor, row_number=row_number, file_name=file_name),
            )
        except ROW_ERRORS as exc:
            db.session.rollback()
            errors.append({"row": row_number, "errors": [str(exc)], "data": raw})
            continue
        posted.append({"row": row_number, **result})

    log = ImportLog(
        import_type=import_type,
        file_name=file_name,
        total_rows=len(rows),
        success_rows=len(posted),
        error_rows=len(errors),
        errors=[{"row": e["row"], "errors": e["errors"]} for e in errors] or None,
        imported_by_user_id=actor.user_id,
    )
    db.session.add(log)
    db.session.commit()

    log_activity(
        module="imports",
        action="imported",
        description=(
            f"{import_type} from {file_name or 'upload'}: "
            f"{len(posted)} of {len(rows)} rows imported"
        ),
        user_id=actor.user_id,
        new_values={"import_log_id": log.id, "failed_rows": [e["row"] for e in errors]},
    )

    return {
        "import_log_id": log.id,
        "total_rows": len(rows),
        "success_count": len(posted),
        "error_count": len(errors),
        "posted": posted,
        "errors": errors,
    }


def list_import_logs(*, limit: int = 50) -> list[ImportLog]:
    return (
        db.session.query(ImportLog)
        .order_by(ImportLog.created_at.desc(), ImportLog.id.desc())
        .limit(limit)
        .all()
    )


def sku_template_rows() -> list[dict[str, Any]]:
    """Header row plus one example row for the SKU bulk-upload sheet."""
    example = ("ABC-001", "Cotton Kurta", "Kurta", "Cotton", "M", "Blue", "799", "1.25")
    return [dict(zip(SkuSchema.TEMPLATE_HEADERS, example))]


def export_inventory_rows() -> list[dict[str, Any]]:
    """Inventory summary flattened to human-readable columns."""
    rows = []
    for item in get_inventory_summary():
        rows.append({
            "SKU Code": item["sku"],
            "SKU Name": item["product_name"],
            "Category": item["category"] or "",
            "Fabric Received (m)": f"{item['fabric_received_cm'] / 100:.2f}",
            "Pieces Cut": item["pieces_cut"],
            "Pieces Stitched": item["pieces_stitched"],
            "Pieces Finished": item["pieces_finished"],
            "Warehouse Received": item["warehouse_received"],
            "Pieces Sold": item["pieces_sold"],
            "Saleable Returns": item["saleable_returns"],
            "Available Stock": item["available_stock"],
            "Status": item["status"],
        })
    return rows
