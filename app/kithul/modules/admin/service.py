"""
Admin service layer.
User accounts (non-administrators only) and collection center registry.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.kithul.audit import record_event
from app.kithul.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.kithul.models import AuditEvent, User
from app.kithul.modules.field_collection.models import SapCan, TreacleCan
from app.kithul.roles import ADMINISTRATOR, normalize_role
from app.kithul.utils import iso, utcnow

from .models import CollectionCenter


def center_to_dict(c: CollectionCenter) -> dict[str, Any]:
    return {
        "id": c.id,
        "centerId": c.center_id,
        "centerName": c.center_name,
        "location": c.location,
        "centerAgent": c.center_agent,
        "contactPhone": c.contact_phone,
        "isActive": c.is_active,
        "createdAt": iso(c.created_at),
        "updatedAt": iso(c.updated_at),
    }


# ─────────────────────────────────────────────────────────────────────────────
# Users
# ─────────────────────────────────────────────────────────────────────────────

def list_users(s: Session) -> list[User]:
    return (
        s.query(User)
        .filter(User.role != ADMINISTRATOR)
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )


def get_managed_user(s: Session, raw_id) -> User:
    """Load a user an administrator may manage. Administrator accounts are off limits."""
    try:
        pk = int(str(raw_id))
    except ValueError:
        raise ValidationError("Invalid user id") from None
    user = s.get(User, pk)
    if not user:
        raise NotFoundError("User not found")
    if user.role == ADMINISTRATOR:
        raise ForbiddenError("Cannot access administrator accounts")
    return user


def _managed_role(value) -> str:
    role = normalize_role(value)
    if role is None or role == ADMINISTRATOR:
        raise ValidationError("Unsupported role")
    return role


def create_user(
    s: Session,
    *,
    user_id: str,
    password: str,
    name: str,
    role: str,
    actor: User,
) -> User:
    role = _managed_role(role)
    if s.query(User).filter(User.user_id == user_id).one_or_none():
        raise ConflictError("User ID already exists")

    user = User(
        user_id=user_id,
        password_hash=generate_password_hash(password),
        name=name,
        role=role,
        is_active=True,
    )
    s.add(user)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="admin.user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"user_id": user.user_id, "role": user.role},
    )
    return user


def update_user(
    s: Session,
    user: User,
    *,
    actor: User,
    name: str | None = None,
    role: str | None = None,
    is_active: bool | None = None,
) -> User:
    changes: dict[str, Any] = {}
    previous_role = user.role

    if name is not None and name != user.name:
        changes["name"] = {"old": user.name, "new": name}
        user.name = name
    if role is not None:
        new_role = _managed_role(role)
        if new_role != user.role:
            user.role = new_role
    if is_active is not None and is_active != user.is_active:
        changes["is_active"] = {"old": user.is_active, "new": is_active}
        user.is_active = is_active

    if user.role != previous_role:
        record_event(
            s,
            actor=actor,
            action="admin.user.role_change",
            entity_type="User",
            entity_id=str(user.id),
            metadata={"previous_role": previous_role, "new_role": user.role},
        )
    if changes:
        record_event(
            s,
            actor=actor,
            action="admin.user.update",
            entity_type="User",
            entity_id=str(user.id),
            metadata={"changes": changes},
        )
    return user


def delete_user(s: Session, user: User, *, actor: User) -> None:
    if user.id == actor.id:
        raise ValidationError("You cannot delete your own account")
    record_event(
        s,
        actor=actor,
        action="admin.user.delete",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"user_id": user.user_id, "role": user.role},
    )
    s.delete(user)


def list_audit_events(s: Session, *, limit: int = 100) -> list[AuditEvent]:
    limit = max(1, min(limit, 500))
    return s.query(AuditEvent).order_by(AuditEvent.id.desc()).limit(limit).all()


# ─────────────────────────────────────────────────────────────────────────────
# Collection centers
# ─────────────────────────────────────────────────────────────────────────────

def list_centers(s: Session, *, active_only: bool = False) -> list[CollectionCenter]:
    q = s.query(CollectionCenter)
    if active_only:
        q = q.filter(CollectionCenter.is_active.is_(True))
    return q.order_by(CollectionCenter.center_name.asc()).all()


def get_center(s: Session, raw_id) -> CollectionCenter:
    try:
        pk = int(str(raw_id))
    except ValueError:
        raise ValidationError("Invalid center id") from None
    center = s.get(CollectionCenter, pk)
    if not center:
        raise NotFoundError("Center not found")
    return center


def _ensure_center_id_free(s: Session, center_id: str, *, exclude_pk: int | None = None) -> None:
    q = s.query(CollectionCenter).filter(CollectionCenter.center_id == center_id)
    if exclude_pk is not None:
        q = q.filter(CollectionCenter.id != exclude_pk)
    if q.first():
        raise ConflictError("Center ID already exists")


def create_center(
    s: Session,
    *,
    center_id: str,
    center_name: str,
    location: str,
    center_agent: str,
    contact_phone: str | None = None,
    actor: User,
) -> CollectionCenter:
    _ensure_center_id_free(s, center_id)
    center = CollectionCenter(
        center_id=center_id,
        center_name=center_name,
        location=location,
        center_agent=center_agent,
        contact_phone=contact_phone or None,
        is_active=True,
    )
    s.add(center)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="admin.center.create",
        entity_type="CollectionCenter",
        entity_id=center.center_id,
        metadata={"center_name": center.center_name},
    )
    return center


def update_center(s: Session, center: CollectionCenter, *, actor: User, **fields: Any) -> CollectionCenter:
    """Apply the given column values (None means "leave unchanged")."""
    changes: dict[str, Any] = {}
    new_center_id = fields.get("center_id")
    if new_center_id is not None and new_center_id != center.center_id:
        _ensure_center_id_free(s, new_center_id, exclude_pk=center.id)

    for attr in ("center_id", "center_name", "location", "center_agent", "contact_phone", "is_active"):
        value = fields.get(attr)
        if value is None or getattr(center, attr) == value:
            continue
        changes[attr] = {"old": getattr(center, attr), "new": value}
        setattr(center, attr, value)

    center.updated_at = utcnow()
    if changes:
        record_event(
            s,
            actor=actor,
            action="admin.center.update",
            entity_type="CollectionCenter",
            entity_id=center.center_id,
            metadata={"changes": changes},
        )
    return center


def center_can_count(s: Session, center: CollectionCenter) -> int:
    total = 0
    for model in (SapCan, TreacleCan):
        total += s.scalar(select(func.count(model.id)).where(model.collection_center_id == center.id)) or 0
    return total


def delete_center(s: Session, center: CollectionCenter, *, actor: User) -> None:
    if center_can_count(s, center):
        raise ValidationError("Cannot delete center with associated cans. Deactivate instead.")
    record_event(
        s,
        actor=actor,
        action="admin.center.delete",
        entity_type="CollectionCenter",
        entity_id=center.center_id,
    )
    s.delete(center)
