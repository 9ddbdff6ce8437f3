# Overview: Derived stock views; warehouse stock cache and fabric stock computed on read.

from __future__ import annotations

from ..extensions import db
from ..models import FabricRecord, Sku, WarehouseRecord, WarehouseStock
from ..time_utils import utcnow
from ..validation import NotFoundError
from .stages import CUTTING, FABRIC, SALES, WAREHOUSE, consumption_by_sku, output_by_sku, stage_consumption, stage_output
"""
Derived Stock Invariants (authoritative)

- Ledgers are the source of truth. WarehouseStock is a cache.
- WarehouseStock.available_quantity == max(0, sum(received) - sum(sold)),
  rebuilt from the ledgers (never incremented) on every warehouse/sales write.
- Fabric stock is not materialized: sum(received) - sum(used by cutting).
"""


def _distinct_locations(sku_id: int) -> str | None:
    rows = (
        db.session.query(WarehouseRecord.storage_location)
        .filter(
            WarehouseRecord.sku_id == sku_id,
            WarehouseRecord.storage_location.isnot(None),
            WarehouseRecord.storage_location != "",
        )
        .distinct()
        .all()
    )
    locations = sorted({r[0].strip() for r in rows if r[0] and r[0].strip()})
    return ", ".join(locations) if locations else None


def recompute_warehouse_stock(sku_id: int) -> WarehouseStock:
    """
    Rebuild the cached row for one SKU from the ledgers.

    Runs inside the caller's transaction (flushes, does not commit).
    """
    db.session.flush()
    received = stage_output(WAREHOUSE, sku_id)
    sold = stage_consumption(SALES, sku_id)

    stock = db.session.query(WarehouseStock).filter_by(sku_id=sku_id).first()
    if stock is None:
        stock = WarehouseStock(sku_id=sku_id)
        db.session.add(stock)

    stock.available_quantity = max(0, received - sold)
    stock.storage_location = _distinct_locations(sku_id)
    stock.last_updated = utcnow()
    db.session.flush()
    return stock


def recompute_all_warehouse_stock() -> int:
    """Rebuild the cache for every SKU. Returns the number of SKUs touched."""
    sku_ids = [row[0] for row in db.session.query(Sku.id).order_by(Sku.id).all()]
    for sku_id in sku_ids:
        recompute_warehouse_stock(sku_id)
    db.session.commit()
    return len(sku_ids)


def get_warehouse_stock(sku_id: int) -> int:
    if not db.session.get(Sku, sku_id):
        raise NotFoundError(f"SKU {sku_id} not found")
    stock = db.session.query(WarehouseStock).filter_by(sku_id=sku_id).first()
    return stock.available_quantity if stock else 0


def list_warehouse_stock() -> list[WarehouseStock]:
    return (
        db.session.query(WarehouseStock)
        .join(Sku, Sku.id == WarehouseStock.sku_id)
        .order_by(Sku.sku.asc())
        .all()
    )


def warehouse_stock_by_sku() -> dict[int, int]:
    rows = db.session.query(WarehouseStock.sku_id, WarehouseStock.available_quantity).all()
    return {sku_id: int(qty or 0) for sku_id, qty in rows}


def get_fabric_available(sku_id: int) -> int:
    """Fabric left for cutting, in centimeters."""
    return stage_output(FABRIC, sku_id) - stage_consumption(CUTTING, sku_id)


def get_fabric_stock() -> list[dict]:
    """
    Fabric stock per SKU, computed on read.

    One row per SKU that has received fabric; fabric types are listed but
    not split, since cutting draws on the SKU's fabric as a whole.
    """
    received = output_by_sku(FABRIC)
    used = consumption_by_sku(CUTTING)

    type_rows = (
        db.session.query(FabricRecord.sku_id, FabricRecord.fabric_type)
        .distinct()
        .all()
    )
    types: dict[int, set[str]] = {}
    for sku_id, fabric_type in type_rows:
        types.setdefault(sku_id, set()).add(fabric_type)

    skus = {s.id: s for s in db.session.query(Sku).filter(Sku.id.in_(list(received))).all()} if received else {}

    result = []
    for sku_id in sorted(received, key=lambda i: skus[i].sku if i in skus else ""):
        total_in = received[sku_id]
        total_used = used.get(sku_id, 0)
        sku = skus.get(sku_id)
        result.append({
            "sku_id": sku_id,
            "sku": sku.sku if sku else None,
            "product_name": sku.product_name if sku else None,
            "fabric_types": sorted(types.get(sku_id, ())),
            "received_cm": total_in,
            "used_cm": total_used,
            "available_cm": total_in - total_used,
        })
    return result
