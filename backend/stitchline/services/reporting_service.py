# Overview: Read-only WIP, inventory and overview aggregations across the stage ledgers.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import SalesRecord, Sku
from ..time_utils import to_utc_z, today
from .return_service import saleable_returns_by_sku
from .sku_service import count_skus
from .stages import (
    CUTTING,
    FABRIC,
    FINISHING,
    PRODUCTION,
    SALES,
    STAGES,
    WAREHOUSE,
    consumption_by_sku,
    last_created_by_sku,
    output_by_sku,
)
from .stock_service import warehouse_stock_by_sku


STAGE_COMPLETED = "completed"

STATUS_IN_STOCK = "in_stock"
STATUS_LOW_STOCK = "low_stock"
STATUS_OUT_OF_STOCK = "out_of_stock"


def _ledger_totals() -> dict[str, dict[int, int]]:
    """Per-SKU sums, one grouped query per ledger."""
    return {
        "fabric_in": output_by_sku(FABRIC),
        "fabric_used": consumption_by_sku(CUTTING),
        "pieces_cut": output_by_sku(CUTTING),
        "pieces_stitched": output_by_sku(PRODUCTION),
        "finishing_consumed": consumption_by_sku(FINISHING),
        "pieces_finished": output_by_sku(FINISHING),
        "warehoused_from_finishing": consumption_by_sku(WAREHOUSE),
        "warehouse_received": output_by_sku(WAREHOUSE),
        "pieces_sold": output_by_sku(SALES),
    }


def _balances(totals: dict[str, dict[int, int]], stock: dict[int, int], sku_id: int) -> dict:
    def get(key):
        return totals[key].get(sku_id, 0)

    return {
        "fabric_in_cm": get("fabric_in"),
        "fabric_used_cm": get("fabric_used"),
        "pieces_cut": get("pieces_cut"),
        "pieces_stitched": get("pieces_stitched"),
        "pieces_finished": get("pieces_finished"),
        "warehouse_received": get("warehouse_received"),
        "warehouse_stock": stock.get(sku_id, 0),
        "pieces_sold": get("pieces_sold"),
        "in_process": {
            "fabric_available_cm": get("fabric_in") - get("fabric_used"),
            "cutting": get("pieces_cut") - get("pieces_stitched"),
            "production": get("pieces_stitched") - get("finishing_consumed"),
            "finishing": get("pieces_finished") - get("warehoused_from_finishing"),
            "warehouse": get("warehouse_received") - get("pieces_sold"),
        },
    }


def current_stage(balances: dict) -> str:
    """
    First match wins: sold out, warehouse stock, then the backlog of each
    stage from the end of the line backwards; fabric otherwise.
    """
    backlog = balances["in_process"]
    if balances["pieces_sold"] > 0 and balances["warehouse_stock"] == 0:
        return STAGE_COMPLETED
    if balances["warehouse_stock"] > 0:
        return "warehouse"
    if backlog["finishing"] > 0:
        return "finishing"
    if backlog["production"] > 0:
        return "production"
    if backlog["cutting"] > 0:
        return "cutting"
    return "fabric"


def _last_activity() -> dict[int, object]:
    latest: dict[int, object] = {}
    for stage in STAGES.values():
        for sku_id, ts in last_created_by_sku(stage).items():
            if ts is not None and (sku_id not in latest or ts > latest[sku_id]):
                latest[sku_id] = ts
    return latest


def get_wip_tracker() -> list[dict]:
    """One row per SKU that has at least one ledger event, newest activity first."""
    totals = _ledger_totals()
    stock = warehouse_stock_by_sku()
    last_activity = _last_activity()

    active_ids = set(last_activity)
    if not active_ids:
        return []

    skus = db.session.query(Sku).filter(Sku.id.in_(sorted(active_ids))).all()
    rows = []
    for sku in skus:
        balances = _balances(totals, stock, sku.id)
        rows.append({
            "sku_id": sku.id,
            "sku": sku.sku,
            "product_name": sku.product_name,
            **balances,
            "current_stage": current_stage(balances),
            "last_activity": to_utc_z(last_activity.get(sku.id)),
        })
    rows.sort(key=lambda r: (r["last_activity"] or "", r["sku_id"]), reverse=True)
    return rows


def get_skus_with_status() -> list[dict]:
    """Every SKU with its balances and which stages can accept a new event."""
    totals = _ledger_totals()
    stock = warehouse_stock_by_sku()

    rows = []
    for sku in db.session.query(Sku).order_by(Sku.sku.asc()).all():
        balances = _balances(totals, stock, sku.id)
        backlog = balances["in_process"]
        rows.append({
            **sku.to_dict(),
            **balances,
            "current_stage": current_stage(balances),
            "can_cut": backlog["fabric_available_cm"] > 0,
            "can_stitch": backlog["cutting"] > 0,
            "can_finish": backlog["production"] > 0,
            "can_warehouse": backlog["finishing"] > 0,
            "can_sell": backlog["warehouse"] > 0,
        })
    return rows


def stock_status(available: int, threshold: int | None = None) -> str:
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    if available <= 0:
        return STATUS_OUT_OF_STOCK
    if available < threshold:
        return STATUS_LOW_STOCK
    return STATUS_IN_STOCK


def get_inventory_summary() -> list[dict]:
    totals = _ledger_totals()
    stock = warehouse_stock_by_sku()
    saleable = saleable_returns_by_sku()

    rows = []
    for sku in db.session.query(Sku).order_by(Sku.sku.asc()).all():
        available = stock.get(sku.id, 0)
        rows.append({
            "sku_id": sku.id,
            "sku": sku.sku,
            "product_name": sku.product_name,
            "category": sku.category,
            "fabric_received_cm": totals["fabric_in"].get(sku.id, 0),
            "pieces_cut": totals["pieces_cut"].get(sku.id, 0),
            "pieces_stitched": totals["pieces_stitched"].get(sku.id, 0),
            "pieces_finished": totals["pieces_finished"].get(sku.id, 0),
            "warehouse_received": totals["warehouse_received"].get(sku.id, 0),
            "pieces_sold": totals["pieces_sold"].get(sku.id, 0),
            "saleable_returns": saleable.get(sku.id, 0),
            "available_stock": available,
            "status": stock_status(available),
        })
    return rows


def get_overview_stats(*, on_date: date | None = None) -> dict:
    on_date = on_date or today()
    totals = _ledger_totals()
    stock = warehouse_stock_by_sku()

    stitched = sum(totals["pieces_stitched"].values())
    finishing_consumed = sum(totals["finishing_consumed"].values())

    todays_sales = (
        db.session.query(func.coalesce(func.sum(SalesRecord.quantity_sold), 0))
        .filter(SalesRecord.record_date == on_date)
        .scalar()
    )

    return {
        "total_skus": count_skus(),
        "in_production": stitched - finishing_consumed,
        "ready_stock": sum(stock.values()),
        "todays_sales": int(todays_sales or 0),
    }
