"""
Field collection service layer.

A draft is one collector's day in the field. Cans are stored in the table of the
product they feed (sap cans -> treacle, treacle cans -> jaggery), so every
draft-level rollup unions both can tables.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.kithul.audit import record_event
from app.kithul.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.kithul.models import User
from app.kithul.modules.admin.models import CollectionCenter
from app.kithul.products import (
    CAN_ID_PREFIXES,
    SUPPORTED_PRODUCTS,
    get_model,
    product_for_can_type,
)
from app.kithul.roles import ADMINISTRATOR, FIELD_COLLECTION
from app.kithul.utils import generate_id, iso, num, utcnow

from .models import CenterCompletion, FieldCollectionDraft

DRAFT_STATUSES = ("draft", "submitted", "completed")
SERIAL_RE = re.compile(r"\d{1,8}")


def can_model_for_type(can_type: str):
    return get_model(product_for_can_type(can_type), "cans")


def _can_models():
    return [get_model(p, "cans") for p in SUPPORTED_PRODUCTS]


# ─────────────────────────────────────────────────────────────────────────────
# Serialization
# ─────────────────────────────────────────────────────────────────────────────

def draft_to_dict(d: FieldCollectionDraft, **extra: Any) -> dict[str, Any]:
    out = {
        "id": d.id,
        "draftId": d.draft_id,
        "date": iso(d.collection_date),
        "status": d.status,
        "createdBy": d.created_by,
        "createdAt": iso(d.created_at),
        "updatedAt": iso(d.updated_at),
    }
    out.update(extra)
    return out


def can_to_dict(can, center: CollectionCenter | None = None) -> dict[str, Any]:
    return {
        "id": can.id,
        "canId": can.can_id,
        "draftId": can.draft_id,
        "productType": can.product_type,
        "brixValue": num(can.brix_value),
        "phValue": num(can.ph_value),
        "quantity": num(can.quantity),
        "collectionCenterId": center.center_id if center else None,
        "collectionCenterName": center.center_name if center else None,
        "createdAt": iso(can.created_at),
        "updatedAt": iso(can.updated_at),
    }


# ─────────────────────────────────────────────────────────────────────────────
# Access
# ─────────────────────────────────────────────────────────────────────────────

def can_access_draft(user: User, draft: FieldCollectionDraft) -> bool:
    return user.role == ADMINISTRATOR or draft.created_by == user.user_id


def get_draft(s: Session, draft_id: str, *, user: User) -> FieldCollectionDraft:
    draft = s.query(FieldCollectionDraft).filter(FieldCollectionDraft.draft_id == draft_id).one_or_none()
    if not draft:
        raise NotFoundError("Draft not found")
    if not can_access_draft(user, draft):
        raise ForbiddenError("Forbidden")
    return draft


def _ensure_editable(draft: FieldCollectionDraft) -> None:
    if draft.status != "draft":
        raise ValidationError("Draft is not editable")


# ─────────────────────────────────────────────────────────────────────────────
# Drafts
# ─────────────────────────────────────────────────────────────────────────────

def _can_totals(s: Session, can_models) -> dict[int, tuple[int, float]]:
    """draft pk -> (can count, total quantity) over the given can tables."""
    totals: dict[int, tuple[int, float]] = {}
    for model in can_models:
        rows = s.execute(
            select(model.draft_id, func.count(model.id), func.coalesce(func.sum(model.quantity), 0))
            .group_by(model.draft_id)
        ).all()
        for draft_pk, count, qty in rows:
            prev_count, prev_qty = totals.get(draft_pk, (0, 0.0))
            totals[draft_pk] = (prev_count + int(count), prev_qty + float(qty))
    return totals


def list_drafts(
    s: Session,
    *,
    user: User,
    can_type: str | None = None,
    status: str | None = None,
) -> list[dict[str, Any]]:
    q = s.query(FieldCollectionDraft, User.name).outerjoin(User, User.user_id == FieldCollectionDraft.created_by)
    if user.role != ADMINISTRATOR:
        q = q.filter(FieldCollectionDraft.created_by == user.user_id)
    if status:
        q = q.filter(func.lower(FieldCollectionDraft.status) == status.lower())
    if can_type:
        can_model = can_model_for_type(can_type)
        q = q.filter(select(can_model.id).where(can_model.draft_id == FieldCollectionDraft.id).exists())
    q = q.order_by(FieldCollectionDraft.collection_date.desc(), FieldCollectionDraft.created_at.desc())

    totals = _can_totals(s, _can_models())
    out = []
    for draft, creator_name in q.all():
        count, qty = totals.get(draft.id, (0, 0.0))
        out.append(draft_to_dict(draft, createdByName=creator_name, canCount=count, totalQuantity=qty))
    return out


def draft_cans(s: Session, draft: FieldCollectionDraft, *, center: CollectionCenter | None = None):
    """(can, center) pairs for a draft across both can tables, oldest first."""
    pairs = []
    for model in _can_models():
        q = (
            s.query(model, CollectionCenter)
            .join(CollectionCenter, CollectionCenter.id == model.collection_center_id)
            .filter(model.draft_id == draft.id)
        )
        if center is not None:
            q = q.filter(model.collection_center_id == center.id)
        pairs.extend(q.all())
    pairs.sort(key=lambda pair: (pair[0].created_at, pair[0].can_id))
    return pairs


def draft_detail(s: Session, draft: FieldCollectionDraft) -> dict[str, Any]:
    groups: dict[int, dict[str, Any]] = {}
    pairs = draft_cans(s, draft)
    for can, center in pairs:
        group = groups.setdefault(
            center.id,
            {"centerId": center.center_id, "name": center.center_name, "location": center.location, "cans": []},
        )
        group["cans"].append(can_to_dict(can, center))
    cans = sorted(groups.values(), key=lambda g: g["name"].lower())
    return draft_to_dict(draft, cans=cans, canCount=len(pairs))


def create_draft(s: Session, *, user: User, day: date | None = None) -> FieldCollectionDraft:
    day = day or date.today()
    existing = (
        s.query(FieldCollectionDraft)
        .filter(FieldCollectionDraft.created_by == user.user_id, FieldCollectionDraft.collection_date == day)
        .first()
    )
    if existing:
        raise ConflictError("Draft for this date already exists")

    draft = FieldCollectionDraft(
        draft_id=generate_id("d"),
        collection_date=day,
        status="draft",
        created_by=user.user_id,
    )
    s.add(draft)
    s.flush()
    record_event(
        s,
        actor=user,
        action="field_collection.draft.create",
        entity_type="FieldCollectionDraft",
        entity_id=draft.draft_id,
        metadata={"date": day.isoformat()},
    )
    return draft


def set_draft_status(s: Session, draft: FieldCollectionDraft, status: str, *, user: User) -> FieldCollectionDraft:
    if status not in DRAFT_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    if status == "draft":
        completed = (
            s.query(func.count(CenterCompletion.id)).filter(CenterCompletion.draft_id == draft.draft_id).scalar()
        )
        if not completed:
            raise ValidationError("At least one center must be submitted before saving the draft")
    previous = draft.status
    draft.status = status
    draft.updated_at = utcnow()
    if previous != status:
        record_event(
            s,
            actor=user,
            action="field_collection.draft.status",
            entity_type="FieldCollectionDraft",
            entity_id=draft.draft_id,
            metadata={"from": previous, "to": status},
        )
    return draft


def submit_draft(s: Session, draft: FieldCollectionDraft, *, user: User) -> FieldCollectionDraft:
    return set_draft_status(s, draft, "submitted", user=user)


def reopen_draft(s: Session, draft: FieldCollectionDraft, *, user: User) -> FieldCollectionDraft:
    previous = draft.status
    draft.status = "draft"
    draft.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="field_collection.draft.reopen",
        entity_type="FieldCollectionDraft",
        entity_id=draft.draft_id,
        metadata={"from": previous},
    )
    return draft


def _assignment_for(s: Session, product: str, can):
    """(junction row, processing batch) for a can, or (None, None)."""
    link_model = get_model(product, "processingBatchCans")
    batch_model = get_model(product, "processingBatches")
    row = (
        s.query(link_model, batch_model)
        .join(batch_model, batch_model.id == link_model.processing_batch_id)
        .filter(link_model.can_id == can.id)
        .first()
    )
    return row if row else (None, None)


def delete_draft(s: Session, draft: FieldCollectionDraft, *, user: User) -> None:
    for product in SUPPORTED_PRODUCTS:
        can_model = get_model(product, "cans")
        link_model = get_model(product, "processingBatchCans")
        batch_model = get_model(product, "processingBatches")
        can_ids = select(can_model.id).where(can_model.draft_id == draft.id)
        locked = (
            s.query(batch_model.id)
            .join(link_model, link_model.processing_batch_id == batch_model.id)
            .filter(link_model.can_id.in_(can_ids), batch_model.status == "completed")
            .first()
        )
        if locked:
            raise ValidationError("Cannot delete a draft with cans in a completed processing batch")

    for product in SUPPORTED_PRODUCTS:
        can_model = get_model(product, "cans")
        link_model = get_model(product, "processingBatchCans")
        can_ids = select(can_model.id).where(can_model.draft_id == draft.id)
        s.query(link_model).filter(link_model.can_id.in_(can_ids)).delete(synchronize_session=False)
        s.query(can_model).filter(can_model.draft_id == draft.id).delete(synchronize_session=False)
    s.query(CenterCompletion).filter(CenterCompletion.draft_id == draft.draft_id).delete(synchronize_session=False)
    record_event(
        s,
        actor=user,
        action="field_collection.draft.delete",
        entity_type="FieldCollectionDraft",
        entity_id=draft.draft_id,
    )
    s.delete(draft)


# ─────────────────────────────────────────────────────────────────────────────
# Center completion
# ─────────────────────────────────────────────────────────────────────────────

def submit_center(s: Session, draft: FieldCollectionDraft, center_id: str, *, user: User) -> CenterCompletion:
    completion = (
        s.query(CenterCompletion)
        .filter(CenterCompletion.draft_id == draft.draft_id, CenterCompletion.center_id == center_id)
        .one_or_none()
    )
    if completion is None:
        completion = CenterCompletion(draft_id=draft.draft_id, center_id=center_id)
        s.add(completion)
    completion.completed_at = utcnow()
    record_event(
        s,
        actor=user,
        action="field_collection.center.submit",
        entity_type="FieldCollectionDraft",
        entity_id=draft.draft_id,
        metadata={"center_id": center_id},
    )
    return completion


def reopen_center(s: Session, draft: FieldCollectionDraft, center_id: str, *, user: User) -> None:
    s.query(CenterCompletion).filter(
        CenterCompletion.draft_id == draft.draft_id, CenterCompletion.center_id == center_id
    ).delete(synchronize_session=False)
    record_event(
        s,
        actor=user,
        action="field_collection.center.reopen",
        entity_type="FieldCollectionDraft",
        entity_id=draft.draft_id,
        metadata={"center_id": center_id},
    )


def completed_centers(s: Session, draft: FieldCollectionDraft) -> list[dict[str, Any]]:
    rows = (
        s.query(CenterCompletion)
        .filter(CenterCompletion.draft_id == draft.draft_id)
        .order_by(CenterCompletion.completed_at.asc())
        .all()
    )
    return [{"centerId": r.center_id, "completedAt": iso(r.completed_at)} for r in rows]


# ─────────────────────────────────────────────────────────────────────────────
# Lookups
# ─────────────────────────────────────────────────────────────────────────────

def resolve_center(s: Session, ref: str) -> CollectionCenter | None:
    """Match an active center by center_id, numeric id, exact name, then name prefix."""
    ref = (ref or "").strip()
    if not ref:
        return None
    active = s.query(CollectionCenter).filter(CollectionCenter.is_active.is_(True))
    center = active.filter(CollectionCenter.center_id == ref).first()
    if center is None and ref.isdigit():
        center = active.filter(CollectionCenter.id == int(ref)).first()
    if center is None:
        lowered = ref.lower()
        name = func.lower(func.trim(CollectionCenter.center_name))
        center = (
            active.filter(or_(name == lowered, name.like(lowered + "%")))
            .order_by((name == lowered).desc(), CollectionCenter.center_name.asc())
            .first()
        )
    return center


def list_field_collectors(s: Session) -> list[User]:
    return (
        s.query(User)
        .filter(User.role == FIELD_COLLECTION, User.is_active.is_(True))
        .order_by(User.name.asc(), User.user_id.asc())
        .all()
    )


# ─────────────────────────────────────────────────────────────────────────────
# Cans
# ─────────────────────────────────────────────────────────────────────────────

def build_can_id(can_type: str, *, can_id: str | None = None, serial_number: str | None = None) -> str:
    prefix = CAN_ID_PREFIXES[can_type]
    value = (can_id or "").strip().upper()
    if not value:
        serial = (serial_number or "").strip()
        if not serial:
            raise ValidationError("Either canId or serialNumber (8 digits) is required")
        if not SERIAL_RE.fullmatch(serial):
            raise ValidationError(f"Invalid can ID format. Expected {prefix}-########")
        value = f"{prefix}-{serial.zfill(8)}"
    if not re.fullmatch(rf"{prefix}-\d{{8}}", value):
        raise ValidationError(f"Invalid can ID format. Expected {prefix}-########")
    return value


def find_can(s: Session, can_id: str):
    """Locate a can by business id across both can tables. Returns (product, can)."""
    for product in SUPPORTED_PRODUCTS:
        model = get_model(product, "cans")
        can = s.query(model).filter(model.can_id == can_id).one_or_none()
        if can is not None:
            return product, can
    raise NotFoundError("Can not found")


def can_exists(s: Session, can_id: str) -> bool:
    try:
        find_can(s, can_id)
    except NotFoundError:
        return False
    return True


def create_can(
    s: Session,
    *,
    draft: FieldCollectionDraft,
    center: CollectionCenter,
    can_type: str,
    can_id: str,
    quantity: float,
    brix_value: float | None = None,
    ph_value: float | None = None,
    user: User,
):
    _ensure_editable(draft)
    if can_exists(s, can_id):
        raise ConflictError("Can ID already exists")

    model = can_model_for_type(can_type)
    can = model(
        can_id=can_id,
        draft_id=draft.id,
        collection_center_id=center.id,
        product_type=can_type,
        brix_value=brix_value,
        ph_value=ph_value,
        quantity=quantity,
    )
    s.add(can)
    s.flush()
    record_event(
        s,
        actor=user,
        action="field_collection.can.create",
        entity_type=model.__name__,
        entity_id=can.can_id,
        metadata={"draft_id": draft.draft_id, "center_id": center.center_id, "quantity": quantity},
    )
    return can


def draft_for_can(s: Session, can, *, user: User) -> FieldCollectionDraft:
    draft = s.get(FieldCollectionDraft, can.draft_id)
    if not draft:
        raise NotFoundError("Draft not found")
    if not can_access_draft(user, draft):
        raise ForbiddenError("Forbidden")
    return draft


def update_can(s: Session, can, *, user: User, **fields: float | None):
    draft = draft_for_can(s, can, user=user)
    _ensure_editable(draft)
    changes = {}
    for attr in ("brix_value", "ph_value", "quantity"):
        value = fields.get(attr)
        if value is not None and num(getattr(can, attr)) != value:
            changes[attr] = {"old": num(getattr(can, attr)), "new": value}
            setattr(can, attr, value)
    can.updated_at = utcnow()
    if changes:
        record_event(
            s,
            actor=user,
            action="field_collection.can.update",
            entity_type=type(can).__name__,
            entity_id=can.can_id,
            metadata={"changes": changes},
        )
    return can


def delete_can(s: Session, product: str, can, *, user: User) -> None:
    draft = draft_for_can(s, can, user=user)
    _ensure_editable(draft)
    link, _batch = _assignment_for(s, product, can)
    if link is not None:
        raise ValidationError("Can is assigned to a processing batch")
    record_event(
        s,
        actor=user,
        action="field_collection.can.delete",
        entity_type=type(can).__name__,
        entity_id=can.can_id,
        metadata={"draft_id": draft.draft_id},
    )
    s.delete(can)
