# Overview: Service-layer operations for staff users and their roles.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from ..permissions import ROLES, validate_role
from ..validation import ConflictError, NotFoundError, ValidationError
from .activity_service import log_activity
from .permission_service import Actor, require_permission


def _clean_role(role: str | None) -> str:
    role = (role or "").strip().lower()
    if not validate_role(role):
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}", field="role")
    return role


def bootstrap_user(*, username: str, role: str, email: str | None = None, display_name: str | None = None) -> User:
    """
    Create a user without an acting admin. Used by the CLI to seed the
    first admin and by tests; services should go through create_user().
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required", field="username")
    role = _clean_role(role)

    if db.session.query(User.id).filter(User.username == username).first():
        raise ConflictError(f"Username '{username}' already exists", field="username")

    user = User(username=username, role=role, email=email, display_name=display_name, is_active=True)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Username '{username}' already exists", field="username")
    return user


def create_user(
    *,
    actor: Actor,
    username: str,
    role: str,
    email: str | None = None,
    display_name: str | None = None,
) -> User:
    require_permission(actor, "MANAGE_USERS")
    user = bootstrap_user(username=username, role=role, email=email, display_name=display_name)
    log_activity(
        module="users",
        action="created",
        description=f"Created user {user.username} with role {user.role}",
        user_id=actor.user_id,
        new_values=user.to_dict(),
    )
    return user


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


def list_users(*, include_inactive: bool = False) -> list[User]:
    query = db.session.query(User)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    return query.order_by(User.username.asc()).all()


def update_user_role(user_id: int, *, actor: Actor, role: str) -> User:
    require_permission(actor, "MANAGE_USERS")
    user = get_user(user_id)
    new_role = _clean_role(role)
    old_role = user.role
    user.role = new_role
    db.session.commit()

    log_activity(
        module="users",
        action="updated",
        description=f"Changed role of {user.username} from {old_role} to {new_role}",
        user_id=actor.user_id,
        old_values={"role": old_role},
        new_values={"role": new_role},
    )
    return user


def deactivate_user(user_id: int, *, actor: Actor) -> User:
    require_permission(actor, "MANAGE_USERS")
    user = get_user(user_id)
    if user.id == actor.user_id:
        raise ValidationError("You cannot deactivate your own account", field="user_id")
    user.is_active = False
    db.session.commit()

    log_activity(
        module="users",
        action="deactivated",
        description=f"Deactivated user {user.username}",
        user_id=actor.user_id,
        old_values={"is_active": True},
        new_values={"is_active": False},
    )
    return user
