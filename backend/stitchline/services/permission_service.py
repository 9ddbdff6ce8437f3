# Overview: Service-layer operations for permission checks against an explicit actor.

"""
Role-based authorization.

The caller is identified by the external identity provider; services receive
that identity as an Actor argument instead of reading request globals.

DESIGN PRINCIPLES:
- Fail closed: unknown roles hold no permissions
- Authorization errors are distinct from "not found"
- Denials are logged; grants are not
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import User
from ..permissions import DEFAULT_ROLE_PERMISSIONS
from ..validation import NotFoundError


class PermissionDeniedError(Exception):
    """Raised when the actor's role does not permit the action."""


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str

    @property
    def permissions(self) -> frozenset[str]:
        return frozenset(DEFAULT_ROLE_PERMISSIONS.get(self.role, ()))

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def make_actor(*, user_id: int) -> Actor:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    if not user.is_active:
        raise PermissionDeniedError(f"User {user.username} is deactivated")
    return Actor(user_id=user.id, role=user.role)


def has_permission(actor: Actor, permission_code: str) -> bool:
    return permission_code in actor.permissions


def require_permission(actor: Actor, permission_code: str) -> None:
    """Raise PermissionDeniedError unless the actor's role grants permission_code."""
    if actor is None:
        raise PermissionDeniedError("Authentication required")
    if not has_permission(actor, permission_code):
        current_app.logger.warning(
            "Permission denied: user_id=%s role=%s permission=%s",
            actor.user_id,
            actor.role,
            permission_code,
        )
        raise PermissionDeniedError(
            f"Role '{actor.role}' is not allowed to perform this action ({permission_code})"
        )
