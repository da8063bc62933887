"""
Processing service layer.
Handles batch CRUD, can assignment, status transitions and downstream cleanup.
"""
from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.kithul.audit import record_event
from app.kithul.errors import NotFoundError, ValidationError
from app.kithul.models import User
from app.kithul.modules.admin.models import CollectionCenter
from app.kithul.modules.field_collection.models import FieldCollectionDraft
from app.kithul.products import SUPPORTED_PRODUCTS, get_model
from app.kithul.utils import generate_id, iso, num, utcnow

BATCH_STATUSES = ("draft", "in-progress", "completed", "cancelled")
EDITABLE_STATUSES = {"draft", "in-progress"}
MAX_CANS_PER_BATCH = 15


def _models(product: str):
    return (
        get_model(product, "processingBatches"),
        get_model(product, "processingBatchCans"),
        get_model(product, "cans"),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Serialization
# ─────────────────────────────────────────────────────────────────────────────

def batch_to_dict(batch, *, can_count: int = 0, total_quantity: float = 0.0, **extra: Any) -> dict[str, Any]:
    out = {
        "id": batch.id,
        "batchId": batch.batch_id,
        "batchNumber": batch.batch_number,
        "scheduledDate": iso(batch.scheduled_date),
        "productType": batch.product_type,
        "status": batch.status,
        "notes": batch.notes,
        "totalSapOutput": num(batch.total_sap_output),
        "gasUsedKg": num(batch.gas_used_kg),
        "createdBy": batch.created_by,
        "createdAt": iso(batch.created_at),
        "updatedAt": iso(batch.updated_at),
        "canCount": can_count,
        "totalQuantity": total_quantity,
    }
    out.update(extra)
    return out


def can_totals_by_batch(s: Session, product: str) -> dict[int, tuple[int, float]]:
    """processing batch pk -> (can count, summed can quantity)."""
    _batch_model, link_model, can_model = _models(product)
    rows = s.execute(
        select(
            link_model.processing_batch_id,
            func.count(link_model.id),
            func.coalesce(func.sum(can_model.quantity), 0),
        )
        .join(can_model, can_model.id == link_model.can_id)
        .group_by(link_model.processing_batch_id)
    ).all()
    return {pk: (int(count), float(qty)) for pk, count, qty in rows}


def summarize(s: Session, product: str, batch) -> dict[str, Any]:
    count, qty = can_totals_by_batch(s, product).get(batch.id, (0, 0.0))
    return batch_to_dict(batch, can_count=count, total_quantity=qty)


# ─────────────────────────────────────────────────────────────────────────────
# Queries
# ─────────────────────────────────────────────────────────────────────────────

def list_batches(s: Session, products: list[str]) -> list[dict[str, Any]]:
    out = []
    for product in products:
        batch_model = get_model(product, "processingBatches")
        totals = can_totals_by_batch(s, product)
        for batch in s.query(batch_model).all():
            count, qty = totals.get(batch.id, (0, 0.0))
            out.append(batch_to_dict(batch, can_count=count, total_quantity=qty))
    out.sort(key=lambda b: (b["scheduledDate"] or "", b["createdAt"] or ""), reverse=True)
    return out


def find_batch(s: Session, batch_id: str):
    """Locate a processing batch by business id across products. Returns (product, batch)."""
    for product in SUPPORTED_PRODUCTS:
        model = get_model(product, "processingBatches")
        batch = s.query(model).filter(model.batch_id == batch_id).one_or_none()
        if batch is not None:
            return product, batch
    raise NotFoundError("Processing batch not found")


def batch_can_ids(s: Session, product: str, batch) -> list[str]:
    _batch_model, link_model, can_model = _models(product)
    rows = (
        s.query(can_model.can_id)
        .join(link_model, link_model.can_id == can_model.id)
        .filter(link_model.processing_batch_id == batch.id)
        .order_by(can_model.can_id.asc())
        .all()
    )
    return [r[0] for r in rows]


def list_available_cans(
    s: Session,
    product: str,
    *,
    active_only: bool = False,
    for_batch: str | None = None,
) -> list[dict[str, Any]]:
    """Cans not yet in a batch (plus those already in ``for_batch``), oldest first."""
    batch_model, link_model, can_model = _models(product)
    q = (
        s.query(can_model, FieldCollectionDraft, CollectionCenter, batch_model.batch_id)
        .join(FieldCollectionDraft, FieldCollectionDraft.id == can_model.draft_id)
        .join(CollectionCenter, CollectionCenter.id == can_model.collection_center_id)
        .outerjoin(link_model, link_model.can_id == can_model.id)
        .outerjoin(batch_model, batch_model.id == link_model.processing_batch_id)
    )
    if active_only:
        q = q.filter(FieldCollectionDraft.status != "completed")
    if for_batch:
        q = q.filter((link_model.processing_batch_id.is_(None)) | (batch_model.batch_id == for_batch))
    else:
        q = q.filter(link_model.processing_batch_id.is_(None))
    q = q.order_by(can_model.created_at.asc(), can_model.can_id.asc())

    out = []
    for can, draft, center, assigned_batch_id in q.all():
        out.append(
            {
                "id": can.can_id,
                "canId": can.can_id,
                "quantity": num(can.quantity),
                "productType": can.product_type,
                "brixValue": num(can.brix_value),
                "phValue": num(can.ph_value),
                "createdAt": iso(can.created_at),
                "updatedAt": iso(can.updated_at),
                "assignedBatchId": assigned_batch_id,
                "draft": {"id": draft.draft_id, "date": iso(draft.collection_date), "status": draft.status},
                "collectionCenter": {"id": center.center_id, "name": center.center_name, "location": center.location},
            }
        )
    return out


# ─────────────────────────────────────────────────────────────────────────────
# Mutations
# ─────────────────────────────────────────────────────────────────────────────

def next_batch_number(s: Session, product: str) -> str:
    model = get_model(product, "processingBatches")
    highest = 0
    for (raw,) in s.query(model.batch_number).all():
        if raw and raw.strip().isdigit():
            highest = max(highest, int(raw))
    return f"{highest + 1:02d}"


def create_batch(s: Session, *, product: str, scheduled_date: date | None = None, user: User):
    model = get_model(product, "processingBatches")
    batch = model(
        batch_id=generate_id("pb"),
        batch_number=next_batch_number(s, product),
        scheduled_date=scheduled_date or date.today(),
        product_type=product,
        status="in-progress",
        created_by=user.user_id,
    )
    s.add(batch)
    s.flush()
    record_event(
        s,
        actor=user,
        action="processing.batch.create",
        entity_type=model.__name__,
        entity_id=batch.batch_id,
        metadata={"batch_number": batch.batch_number, "product": product},
    )
    return batch


def update_batch(s: Session, batch, *, user: User, **fields: Any):
    """Apply non-None column values. ``notes`` may be set to "" to clear it."""
    status = fields.get("status")
    if status is not None and status not in BATCH_STATUSES:
        raise ValidationError(f"Invalid status: {status}")

    changes: dict[str, Any] = {}
    for attr in ("status", "scheduled_date", "notes", "total_sap_output", "gas_used_kg"):
        value = fields.get(attr)
        if value is None:
            continue
        if attr == "notes":
            value = value or None
        old = getattr(batch, attr)
        if old != value:
            changes[attr] = {"old": old, "new": value}
            setattr(batch, attr, value)
    batch.updated_at = utcnow()
    if changes:
        record_event(
            s,
            actor=user,
            action="processing.batch.update",
            entity_type=type(batch).__name__,
            entity_id=batch.batch_id,
            metadata={"changes": changes},
        )
    return batch


def assign_cans(s: Session, product: str, batch, can_ids: list[str], *, user: User) -> list[str]:
    """Replace the batch's can set. Returns the assigned can ids."""
    if batch.status not in EDITABLE_STATUSES:
        raise ValidationError("Batch is not editable")
    unique_ids = list(dict.fromkeys(c.strip() for c in can_ids if c and c.strip()))
    if len(unique_ids) > MAX_CANS_PER_BATCH:
        raise ValidationError(f"A batch can contain at most {MAX_CANS_PER_BATCH} cans")

    _batch_model, link_model, can_model = _models(product)
    cans = s.query(can_model).filter(can_model.can_id.in_(unique_ids)).all() if unique_ids else []
    found = {c.can_id: c for c in cans}
    missing = [c for c in unique_ids if c not in found]
    if missing:
        raise ValidationError(f"Cans not found: {', '.join(missing)}")

    if cans:
        taken = (
            s.query(can_model.can_id)
            .join(link_model, link_model.can_id == can_model.id)
            .filter(can_model.id.in_([c.id for c in cans]), link_model.processing_batch_id != batch.id)
            .all()
        )
        if taken:
            raise ValidationError(f"Cans already assigned to another batch: {', '.join(sorted(r[0] for r in taken))}")

    s.query(link_model).filter(link_model.processing_batch_id == batch.id).delete(synchronize_session=False)
    for can_id in unique_ids:
        s.add(link_model(processing_batch_id=batch.id, can_id=found[can_id].id))
    batch.updated_at = utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="processing.batch.assign_cans",
        entity_type=type(batch).__name__,
        entity_id=batch.batch_id,
        metadata={"can_ids": unique_ids},
    )
    return unique_ids


def submit_batch(s: Session, batch, *, user: User):
    if batch.status == "cancelled":
        raise ValidationError("Cancelled batches cannot be submitted")
    return update_batch(s, batch, user=user, status="completed")


def _delete_downstream(s: Session, product: str, batch) -> int:
    """Remove packaging (and its labeling) rows built from this processing batch."""
    packaging_model = get_model(product, "packagingBatches")
    labeling_model = get_model(product, "labelingBatches")
    packaging_ids = select(packaging_model.id).where(packaging_model.processing_batch_id == batch.id)
    s.query(labeling_model).filter(labeling_model.packaging_batch_id.in_(packaging_ids)).delete(
        synchronize_session=False
    )
    return (
        s.query(packaging_model)
        .filter(packaging_model.processing_batch_id == batch.id)
        .delete(synchronize_session=False)
    )


def reopen_batch(s: Session, product: str, batch, *, user: User):
    if batch.status == "cancelled":
        raise ValidationError("Cancelled batches cannot be reopened")
    if batch.status != "completed":
        raise ValidationError("Only completed batches can be reopened")
    removed = _delete_downstream(s, product, batch)
    update_batch(s, batch, user=user, status="in-progress")
    if removed:
        record_event(
            s,
            actor=user,
            action="processing.batch.reopen",
            entity_type=type(batch).__name__,
            entity_id=batch.batch_id,
            reason="Packaging removed on reopen",
            metadata={"packaging_rows_removed": removed},
        )
    return batch


def delete_batch(s: Session, product: str, batch, *, user: User) -> None:
    _batch_model, link_model, _can_model = _models(product)
    _delete_downstream(s, product, batch)
    s.query(link_model).filter(link_model.processing_batch_id == batch.id).delete(synchronize_session=False)
    record_event(
        s,
        actor=user,
        action="processing.batch.delete",
        entity_type=type(batch).__name__,
        entity_id=batch.batch_id,
    )
    s.delete(batch)
