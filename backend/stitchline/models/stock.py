from __future__ import annotations

from ..extensions import db
from stitchline.time_utils import to_utc_z


class WarehouseStock(db.Model):
    """
    Cached warehouse balance, one row per SKU.

    available_quantity = max(0, sum(warehouse received) - sum(sold)),
    rebuilt by stock_service.recompute_warehouse_stock() after every
    warehouse or sales write. Never edited directly.
    """
    __tablename__ = "warehouse_stock"
    __table_args__ = (
        db.UniqueConstraint("sku_id", name="uq_warehouse_stock_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False)

    available_quantity = db.Column(db.Integer, nullable=False, default=0)

    # Distinct storage locations seen in the warehouse ledger, ", "-joined
    storage_location = db.Column(db.Text, nullable=True)

    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sku = db.relationship("Sku")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku_id": self.sku_id,
            "sku": self.sku.summary() if self.sku else None,
            "available_quantity": self.available_quantity,
            "storage_location": self.storage_location,
            "last_updated": to_utc_z(self.last_updated),
        }
