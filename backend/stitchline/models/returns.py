from __future__ import annotations

from ..extensions import db
from stitchline.time_utils import to_iso_date, to_utc_z


class ReturnRecord(db.Model):
    """
    Customer or courier return against a SKU.

    order_id is unique across every return ever recorded.
    return_condition decides what happens next:
    - saleable: warehouse intake tagged with this return's id
    - refinishing_required: one ReturnProcessing row, state pending
    - rejected: informational only
    """
    __tablename__ = "return_records"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_return_records_order_id"),
        db.CheckConstraint("quantity > 0", name="ck_return_records_quantity_positive"),
        db.Index("ix_return_records_condition", "return_condition"),
        db.Index("ix_return_records_panel", "return_source_panel"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    order_id = db.Column(db.String(128), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    return_type = db.Column(db.String(16), nullable=False)
    ecommerce_subtype = db.Column(db.String(32), nullable=True)
    return_condition = db.Column(db.String(32), nullable=False)
    return_source_panel = db.Column(db.String(128), nullable=False)
    return_reason = db.Column(db.Text, nullable=True)

    record_date = db.Column(db.Date, nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sku = db.relationship("Sku")
    processing = db.relationship(
        "ReturnProcessing", back_populates="return_record", lazy=True, cascade="all, delete-orphan"
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku_id": self.sku_id,
            "sku": self.sku.summary() if self.sku else None,
            "order_id": self.order_id,
            "quantity": self.quantity,
            "return_type": self.return_type,
            "ecommerce_subtype": self.ecommerce_subtype,
            "return_condition": self.return_condition,
            "return_source_panel": self.return_source_panel,
            "return_reason": self.return_reason,
            "record_date": to_iso_date(self.record_date),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class ReturnProcessing(db.Model):
    """
    Refinishing workflow for one return: pending -> refinished | rejected.

    finishing_record_id points at the Finishing row spawned on refinish;
    it is nulled if that Finishing row is later deleted.
    """
    __tablename__ = "return_processing"
    __table_args__ = (
        db.UniqueConstraint("return_id", name="uq_return_processing_return"),
        db.CheckConstraint(
            "status IN ('pending', 'refinished', 'rejected')",
            name="ck_return_processing_status",
        ),
        db.Index("ix_return_processing_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("return_records.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending")
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    finishing_record_id = db.Column(
        db.Integer, db.ForeignKey("finishing_records.id"), nullable=True, index=True
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    return_record = db.relationship("ReturnRecord", back_populates="processing")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "status": self.status,
            "processed_by_user_id": self.processed_by_user_id,
            "processed_at": to_utc_z(self.processed_at),
            "notes": self.notes,
            "finishing_record_id": self.finishing_record_id,
            "created_at": to_utc_z(self.created_at),
        }
