from __future__ import annotations

from ..extensions import db
from stitchline.time_utils import to_iso_date, to_utc_z


FINISHING_SOURCE_PRODUCTION = "production"
FINISHING_SOURCE_RETURN = "return"


def _event_dict(record) -> dict:
    return {
        "id": record.id,
        "sku_id": record.sku_id,
        "sku": record.sku.summary() if record.sku else None,
        "record_date": to_iso_date(record.record_date),
        "created_by_user_id": record.created_by_user_id,
        "created_at": to_utc_z(record.created_at),
    }


class FabricRecord(db.Model):
    """Fabric received against a SKU. Lengths in centimeters."""
    __tablename__ = "fabric_records"
    __table_args__ = (
        db.Index("ix_fabric_records_sku_date", "sku_id", "record_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    fabric_type = db.Column(db.String(128), nullable=False)
    fabric_name = db.Column(db.String(255), nullable=True)
    fabric_width_cm = db.Column(db.Integer, nullable=True)
    total_meters_cm = db.Column(db.Integer, nullable=True)
    meters_received_cm = db.Column(db.Integer, nullable=False)
    remarks = db.Column(db.Text, nullable=True)

    record_date = db.Column(db.Date, nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sku = db.relationship("Sku")

    def to_dict(self) -> dict:
        data = _event_dict(self)
        data.update({
            "fabric_type": self.fabric_type,
            "fabric_name": self.fabric_name,
            "fabric_width_cm": self.fabric_width_cm,
            "total_meters_cm": self.total_meters_cm,
            "meters_received_cm": self.meters_received_cm,
            "remarks": self.remarks,
        })
        return data


class CuttingRecord(db.Model):
    """
    Pieces cut from received fabric.

    The per-piece and wastage figures are supplied by the caller as-is;
    only total_fabric_used_cm takes part in the fabric balance.
    """
    __tablename__ = "cutting_records"
    __table_args__ = (
        db.Index("ix_cutting_records_sku_date", "sku_id", "record_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    total_fabric_used_cm = db.Column(db.Integer, nullable=False)
    avg_fabric_per_piece_cm = db.Column(db.Integer, nullable=True)
    wastage_bps = db.Column(db.Integer, nullable=True)
    actual_fabric_per_piece_cm = db.Column(db.Integer, nullable=True)
    total_pieces_cut = db.Column(db.Integer, nullable=False)
    rejected_fabric_cm = db.Column(db.Integer, nullable=True)

    record_date = db.Column(db.Date, nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sku = db.relationship("Sku")

    def to_dict(self) -> dict:
        data = _event_dict(self)
        data.update({
            "total_fabric_used_cm": self.total_fabric_used_cm,
            "avg_fabric_per_piece_cm": self.avg_fabric_per_piece_cm,
            "wastage_bps": self.wastage_bps,
            "actual_fabric_per_piece_cm": self.actual_fabric_per_piece_cm,
            "total_pieces_cut": self.total_pieces_cut,
            "rejected_fabric_cm": self.rejected_fabric_cm,
        })
        return data


class ProductionRecord(db.Model):
    """Stitching output. Only total_stitched draws on cut pieces."""
    __tablename__ = "production_records"
    __table_args__ = (
        db.Index("ix_production_records_sku_date", "sku_id", "record_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    total_stitched = db.Column(db.Integer, nullable=False)
    rejected_pieces = db.Column(db.Integer, nullable=False, default=0)

    record_date = db.Column(db.Date, nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sku = db.relationship("Sku")

    def to_dict(self) -> dict:
        data = _event_dict(self)
        data.update({
            "total_stitched": self.total_stitched,
            "rejected_pieces": self.rejected_pieces,
        })
        return data


class FinishingRecord(db.Model):
    """
    Finished (and rejected-at-finishing) pieces.

    source = "production": consumes stitched pieces (finished + rejected).
    source = "return": spawned by a refinished return; consumes nothing upstream.
    """
    __tablename__ = "finishing_records"
    __table_args__ = (
        db.CheckConstraint(
            "source IN ('production', 'return')",
            name="ck_finishing_records_source",
        ),
        db.Index("ix_finishing_records_sku_date", "sku_id", "record_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    finished_pieces = db.Column(db.Integer, nullable=False)
    rejected_pieces = db.Column(db.Integer, nullable=False, default=0)
    source = db.Column(db.String(16), nullable=False, default=FINISHING_SOURCE_PRODUCTION)

    record_date = db.Column(db.Date, nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sku = db.relationship("Sku")

    def to_dict(self) -> dict:
        data = _event_dict(self)
        data.update({
            "finished_pieces": self.finished_pieces,
            "rejected_pieces": self.rejected_pieces,
            "source": self.source,
        })
        return data


class WarehouseRecord(db.Model):
    """
    Goods received into the warehouse.

    return_id is set when the intake came from a saleable return; such rows
    add to warehouse stock without drawing on finished pieces.
    """
    __tablename__ = "warehouse_records"
    __table_args__ = (
        db.Index("ix_warehouse_records_sku_date", "sku_id", "record_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    quantity_received = db.Column(db.Integer, nullable=False)
    storage_location = db.Column(db.String(255), nullable=True)
    return_id = db.Column(db.Integer, db.ForeignKey("return_records.id"), nullable=True, index=True)

    record_date = db.Column(db.Date, nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sku = db.relationship("Sku")

    def to_dict(self) -> dict:
        data = _event_dict(self)
        data.update({
            "quantity_received": self.quantity_received,
            "storage_location": self.storage_location,
            "return_id": self.return_id,
        })
        return data


class SalesRecord(db.Model):
    """Units sold out of warehouse stock. Money in cents."""
    __tablename__ = "sales_records"
    __table_args__ = (
        db.Index("ix_sales_records_sku_date", "sku_id", "record_date"),
        db.Index("ix_sales_records_platform", "platform_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    quantity_sold = db.Column(db.Integer, nullable=False)
    platform_name = db.Column(db.String(128), nullable=False)
    order_id = db.Column(db.String(128), nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    record_date = db.Column(db.Date, nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sku = db.relationship("Sku")

    def to_dict(self) -> dict:
        data = _event_dict(self)
        data.update({
            "quantity_sold": self.quantity_sold,
            "platform_name": self.platform_name,
            "order_id": self.order_id,
            "unit_price_cents": self.unit_price_cents,
            "total_amount_cents": self.total_amount_cents,
        })
        return data
