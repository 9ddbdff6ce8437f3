from __future__ import annotations

from ..extensions import db
from stitchline.time_utils import to_utc_z


class ActivityLog(db.Model):
    """
    Append-only audit trail across every module.

    sku_id is nullable: rows describing a hard SKU deletion outlive the SKU.
    old_values / new_values are JSON snapshots of the changed fields.
    """
    __tablename__ = "activity_log"
    __table_args__ = (
        db.Index("ix_activity_log_sku_time", "sku_id", "created_at"),
        db.Index("ix_activity_log_module_action", "module", "action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=True)

    module = db.Column(db.String(32), nullable=False)
    action = db.Column(db.String(64), nullable=False)
    description = db.Column(db.Text, nullable=False)
    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku_id": self.sku_id,
            "module": self.module,
            "action": self.action,
            "description": self.description,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class ImportLog(db.Model):
    """One row per confirmed tabular import, with its outcome totals."""
    __tablename__ = "import_logs"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    import_type = db.Column(db.String(32), nullable=False, index=True)
    file_name = db.Column(db.String(255), nullable=True)
    total_rows = db.Column(db.Integer, nullable=False, default=0)
    success_rows = db.Column(db.Integer, nullable=False, default=0)
    error_rows = db.Column(db.Integer, nullable=False, default=0)
    errors = db.Column(db.JSON, nullable=True)

    imported_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "import_type": self.import_type,
            "file_name": self.file_name,
            "total_rows": self.total_rows,
            "success_rows": self.success_rows,
            "error_rows": self.error_rows,
            "errors": self.errors,
            "imported_by_user_id": self.imported_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
