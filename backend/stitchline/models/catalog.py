from __future__ import annotations

from ..extensions import db
from stitchline.time_utils import to_utc_z


class Sku(db.Model):
    """
    Product variant tracked through the manufacturing pipeline.

    CODE / BARCODE:
    Both are stored uppercase so uniqueness is case-insensitive.
    Barcode is optional; NULLs do not collide under the unique constraint.

    LEDGER VERSION:
    Every stage-ledger write for this SKU bumps version_id while holding the
    row lock. Two writers that read the same balance cannot both commit: the
    loser gets StaleDataError and is retried against the fresh ledger.
    """
    __tablename__ = "skus"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_skus_sku"),
        db.UniqueConstraint("barcode", name="uq_skus_barcode"),
        db.Index("ix_skus_product_name", "product_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    fabric_type = db.Column(db.String(128), nullable=True)
    category = db.Column(db.String(128), nullable=True)
    size = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=True)

    barcode = db.Column(db.String(128), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    # Planned fabric per piece, in centimeters
    avg_consumption_cm = db.Column(db.Integer, nullable=True)

    last_ledger_write_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sku id={self.id} sku={self.sku!r} product_name={self.product_name!r}>"

    def summary(self) -> dict:
        return {"id": self.id, "sku": self.sku, "product_name": self.product_name}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "product_name": self.product_name,
            "fabric_type": self.fabric_type,
            "category": self.category,
            "size": self.size,
            "color": self.color,
            "price_cents": self.price_cents,
            "barcode": self.barcode,
            "image_url": self.image_url,
            "avg_consumption_cm": self.avg_consumption_cm,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
