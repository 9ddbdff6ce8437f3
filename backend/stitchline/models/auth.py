from __future__ import annotations

from ..extensions import db
from stitchline.time_utils import to_utc_z


class User(db.Model):
    """
    Staff identity used for authorization gating and audit attribution.

    Credentials live with the external identity provider; this table only
    records who the caller is and which single role they hold.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        db.Index("ix_users_role", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    display_name = db.Column(db.String(128), nullable=True)

    # One of permissions.ROLES
    role = db.Column(db.String(32), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
