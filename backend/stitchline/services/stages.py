# Overview: Stage ledger definitions and the running-balance sums they share.

"""
Pipeline stages (authoritative)

fabric -> cutting -> production -> finishing -> warehouse -> sales

Each stage declares:
- output_columns: what it hands downstream (summed over all rows)
- consumption_columns: what it draws from its upstream (summed over rows
  matching consumption_filter)

Running balance for a stage S with upstream U:
    available(S) = sum(U.output) - sum(S.consumption)

Rows that re-enter the chain from a return (finishing.source == "return",
warehouse.return_id IS NOT NULL) produce output but consume nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import reduce
import operator
from typing import Any, Callable, Optional

from sqlalchemy import func

from ..extensions import db
from ..models import (
    FINISHING_SOURCE_PRODUCTION,
    CuttingRecord,
    FabricRecord,
    FinishingRecord,
    ProductionRecord,
    SalesRecord,
    WarehouseRecord,
)
from ..validation import ModelValidationPolicy, NotFoundError


UNIT_PIECES = "pieces"
UNIT_CM = "cm"


def format_quantity(value: int, unit: str) -> str:
    if unit == UNIT_CM:
        return f"{value / 100:.2f}m"
    return str(value)


@dataclass(frozen=True)
class Stage:
    key: str
    model: Any
    create_policy: ModelValidationPolicy
    update_policy: ModelValidationPolicy
    output_columns: tuple[str, ...]
    consumption_columns: tuple[str, ...] = ()
    upstream: Optional[str] = None
    downstream: Optional[str] = None
    # Unit of consumption_columns (the upstream output unit)
    unit: str = UNIT_PIECES
    consumption_filter: Optional[Callable[[], Any]] = None
    row_consumes: Callable[[Any], bool] = lambda record: True
    # Messages: formatted with available / requested (already unit-formatted)
    missing_upstream_message: str = ""
    empty_upstream_message: str = ""
    shortage_message: str = ""
    touches_warehouse_stock: bool = False

    def output_of(self, values) -> int:
        return sum(int(_value(values, c) or 0) for c in self.output_columns)

    def consumption_of(self, values) -> int:
        return sum(int(_value(values, c) or 0) for c in self.consumption_columns)


def _value(values, column: str):
    if isinstance(values, dict):
        return values.get(column)
    return getattr(values, column)


def _sum_expr(model, columns: tuple[str, ...]):
    expr = reduce(operator.add, [func.coalesce(getattr(model, c), 0) for c in columns])
    return func.coalesce(func.sum(expr), 0)


def stage_output(stage: Stage, sku_id: int, *, exclude_id: int | None = None) -> int:
    model = stage.model
    query = db.session.query(_sum_expr(model, stage.output_columns)).filter(model.sku_id == sku_id)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    return int(query.scalar() or 0)


def stage_consumption(stage: Stage, sku_id: int, *, exclude_id: int | None = None) -> int:
    if not stage.consumption_columns:
        return 0
    model = stage.model
    query = db.session.query(_sum_expr(model, stage.consumption_columns)).filter(model.sku_id == sku_id)
    if stage.consumption_filter is not None:
        query = query.filter(stage.consumption_filter())
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    return int(query.scalar() or 0)


def stage_row_count(stage: Stage, sku_id: int) -> int:
    model = stage.model
    return int(
        db.session.query(func.count(model.id)).filter(model.sku_id == sku_id).scalar() or 0
    )


def output_by_sku(stage: Stage) -> dict[int, int]:
    model = stage.model
    rows = (
        db.session.query(model.sku_id, _sum_expr(model, stage.output_columns))
        .group_by(model.sku_id)
        .all()
    )
    return {sku_id: int(total or 0) for sku_id, total in rows}


def consumption_by_sku(stage: Stage) -> dict[int, int]:
    if not stage.consumption_columns:
        return {}
    model = stage.model
    query = db.session.query(model.sku_id, _sum_expr(model, stage.consumption_columns))
    if stage.consumption_filter is not None:
        query = query.filter(stage.consumption_filter())
    rows = query.group_by(model.sku_id).all()
    return {sku_id: int(total or 0) for sku_id, total in rows}


def last_created_by_sku(stage: Stage) -> dict[int, Any]:
    model = stage.model
    rows = db.session.query(model.sku_id, func.max(model.created_at)).group_by(model.sku_id).all()
    return {sku_id: ts for sku_id, ts in rows}


# -- Stage definitions --

_EVENT_FIELDS = frozenset({"sku_id", "record_date"})


def _policy(fields, *, required=(), non_negative=(), positive=(), choices=None, create=True):
    writable = frozenset(fields) | (_EVENT_FIELDS if create else frozenset({"record_date"}))
    return ModelValidationPolicy(
        writable_fields=writable,
        required_on_create=frozenset(required) | (frozenset({"sku_id"}) if create else frozenset()),
        non_negative_fields=frozenset(non_negative),
        positive_fields=frozenset(positive),
        choices=choices or {},
    )


_FABRIC_FIELDS = (
    "fabric_type", "fabric_name", "fabric_width_cm", "total_meters_cm",
    "meters_received_cm", "remarks",
)
_CUTTING_FIELDS = (
    "total_fabric_used_cm", "avg_fabric_per_piece_cm", "wastage_bps",
    "actual_fabric_per_piece_cm", "total_pieces_cut", "rejected_fabric_cm",
)
_PRODUCTION_FIELDS = ("total_stitched", "rejected_pieces")
_FINISHING_FIELDS = ("finished_pieces", "rejected_pieces")
_WAREHOUSE_FIELDS = ("quantity_received", "storage_location")
_SALES_FIELDS = (
    "quantity_sold", "platform_name", "order_id", "unit_price_cents", "total_amount_cents",
)


def _build_stage(key, model, fields, *, required, non_negative=(), positive=(), **kwargs) -> Stage:
    return Stage(
        key=key,
        model=model,
        create_policy=_policy(fields, required=required, non_negative=non_negative, positive=positive),
        update_policy=_policy(fields, non_negative=non_negative, positive=positive, create=False),
        **kwargs,
    )


FABRIC = _build_stage(
    "fabric",
    FabricRecord,
    _FABRIC_FIELDS,
    required=("fabric_type", "meters_received_cm"),
    non_negative=("fabric_width_cm", "total_meters_cm"),
    positive=("meters_received_cm",),
    output_columns=("meters_received_cm",),
    downstream="cutting",
    unit=UNIT_CM,
)

CUTTING = _build_stage(
    "cutting",
    CuttingRecord,
    _CUTTING_FIELDS,
    required=("total_fabric_used_cm", "total_pieces_cut"),
    non_negative=(
        "avg_fabric_per_piece_cm", "wastage_bps", "actual_fabric_per_piece_cm", "rejected_fabric_cm",
    ),
    positive=("total_fabric_used_cm", "total_pieces_cut"),
    output_columns=("total_pieces_cut",),
    consumption_columns=("total_fabric_used_cm",),
    upstream="fabric",
    downstream="production",
    unit=UNIT_CM,
    missing_upstream_message=(
        "Cannot proceed with cutting: No fabric available for this SKU. Please add fabric first."
    ),
    empty_upstream_message=(
        "Cannot proceed with cutting: No fabric available for this SKU. "
        "Available: {available}, Required: {requested}"
    ),
    shortage_message="Insufficient fabric. Available: {available}, Required: {requested}",
)

PRODUCTION = _build_stage(
    "production",
    ProductionRecord,
    _PRODUCTION_FIELDS,
    required=("total_stitched",),
    non_negative=("rejected_pieces",),
    positive=("total_stitched",),
    output_columns=("total_stitched",),
    consumption_columns=("total_stitched",),
    upstream="cutting",
    downstream="finishing",
    missing_upstream_message="Please complete cutting for this SKU before recording production.",
    empty_upstream_message="No cut pieces left to stitch. Available: {available}, Required: {requested}",
    shortage_message="Cannot stitch {requested} pieces. Only {available} pieces available from cutting.",
)

FINISHING = _build_stage(
    "finishing",
    FinishingRecord,
    _FINISHING_FIELDS,
    required=("finished_pieces",),
    non_negative=("finished_pieces", "rejected_pieces"),
    output_columns=("finished_pieces",),
    consumption_columns=("finished_pieces", "rejected_pieces"),
    upstream="production",
    downstream="warehouse",
    consumption_filter=lambda: FinishingRecord.source == FINISHING_SOURCE_PRODUCTION,
    row_consumes=lambda record: _value(record, "source") in (None, FINISHING_SOURCE_PRODUCTION),
    missing_upstream_message="Please complete production for this SKU before recording finishing.",
    empty_upstream_message="No stitched pieces left to finish. Available: {available}, Required: {requested}",
    shortage_message=(
        "Cannot finish {requested} pieces. Only {available} pieces available from production."
    ),
)

WAREHOUSE = _build_stage(
    "warehouse",
    WarehouseRecord,
    _WAREHOUSE_FIELDS,
    required=("quantity_received",),
    positive=("quantity_received",),
    output_columns=("quantity_received",),
    consumption_columns=("quantity_received",),
    upstream="finishing",
    downstream="sales",
    consumption_filter=lambda: WarehouseRecord.return_id.is_(None),
    row_consumes=lambda record: _value(record, "return_id") is None,
    missing_upstream_message="Please complete finishing for this SKU before warehouse intake.",
    empty_upstream_message="No finished pieces left to receive. Available: {available}, Required: {requested}",
    shortage_message=(
        "Cannot receive {requested} pieces. Only {available} finished pieces available."
    ),
    touches_warehouse_stock=True,
)

SALES = _build_stage(
    "sales",
    SalesRecord,
    _SALES_FIELDS,
    required=("quantity_sold", "platform_name", "unit_price_cents"),
    non_negative=("unit_price_cents", "total_amount_cents"),
    positive=("quantity_sold",),
    output_columns=("quantity_sold",),
    consumption_columns=("quantity_sold",),
    upstream="warehouse",
    missing_upstream_message="No warehouse stock recorded for this SKU. Receive goods into the warehouse first.",
    empty_upstream_message="Insufficient stock. Available: {available}, Required: {requested}",
    shortage_message="Insufficient stock. Available: {available}, Required: {requested}",
    touches_warehouse_stock=True,
)


STAGES: dict[str, Stage] = {
    s.key: s for s in (FABRIC, CUTTING, PRODUCTION, FINISHING, WAREHOUSE, SALES)
}

PIPELINE_ORDER = ("fabric", "cutting", "production", "finishing", "warehouse", "sales")


def get_stage(stage_key: str) -> Stage:
    stage = STAGES.get(stage_key)
    if stage is None:
        raise NotFoundError(f"Unknown stage: {stage_key}")
    return stage


def upstream_of(stage: Stage) -> Optional[Stage]:
    return STAGES[stage.upstream] if stage.upstream else None


def downstream_of(stage: Stage) -> Optional[Stage]:
    return STAGES[stage.downstream] if stage.downstream else None


def available_for(stage: Stage, sku_id: int, *, exclude_id: int | None = None) -> int:
    """Unconsumed upstream output that `stage` may still draw on for this SKU."""
    upstream = upstream_of(stage)
    if upstream is None:
        return 0
    return stage_output(upstream, sku_id) - stage_consumption(stage, sku_id, exclude_id=exclude_id)
