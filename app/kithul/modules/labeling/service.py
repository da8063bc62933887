"""
Labeling service layer.

Labeling is keyed by the packaging batch it decorates: one labeling row per
packaging batch, created on demand and filled in with accessory counts.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from app.kithul.audit import record_event
from app.kithul.errors import ValidationError
from app.kithul.models import User
from app.kithul.modules.packaging.service import camel, find_packaging, packaging_row, rows_query
from app.kithul.modules.processing.service import can_totals_by_batch
from app.kithul.products import get_model
from app.kithul.utils import generate_id, iso, num, utcnow

from .models import ACCESSORY_FIELDS

LABELING_STATUSES = ("pending", "in-progress", "completed", "on-hold")

REQUIRED_ACCESSORIES = {
    "treacle": ("sticker", "shrink_sleeve", "neck_tag", "corrugated_carton"),
    "jaggery": ("sticker", "corrugated_carton"),
}


def labeling_row(pkg, batch, labeling, *, totals: tuple[int, float] = (0, 0.0)) -> dict[str, Any]:
    out = packaging_row(pkg, batch, totals=totals, labeling=labeling)
    if labeling is None:
        out["labelingStatus"] = "pending"
    out["labelingNotes"] = labeling.notes if labeling is not None else None
    out["labelingCreatedAt"] = iso(labeling.created_at) if labeling is not None else None
    out["labelingUpdatedAt"] = iso(labeling.updated_at) if labeling is not None else None
    for accessory in ACCESSORY_FIELDS:
        value = getattr(labeling, f"{accessory}_quantity") if labeling is not None else None
        out[camel(accessory) + "Quantity"] = num(value)
    for accessory in ACCESSORY_FIELDS:
        value = getattr(labeling, f"{accessory}_cost") if labeling is not None else None
        out[camel(accessory) + "Cost"] = num(value)
    return out


def list_labeling(s: Session, products: list[str]) -> list[dict[str, Any]]:
    out = []
    for product in products:
        labeling_model = get_model(product, "labelingBatches")
        totals = can_totals_by_batch(s, product)
        rows = rows_query(s, product).filter(labeling_model.id.isnot(None)).all()
        for pkg, batch, labeling in rows:
            out.append(labeling_row(pkg, batch, labeling, totals=totals.get(batch.id, (0, 0.0))))
    out.sort(key=lambda r: r["labelingCreatedAt"] or "", reverse=True)
    return out


def available_packaging(s: Session, products: list[str]) -> list[dict[str, Any]]:
    """Completed packaging batches that have not been sent to labeling."""
    out = []
    for product in products:
        packaging_model = get_model(product, "packagingBatches")
        labeling_model = get_model(product, "labelingBatches")
        totals = can_totals_by_batch(s, product)
        rows = (
            rows_query(s, product)
            .filter(packaging_model.status == "completed", labeling_model.id.is_(None))
            .order_by(packaging_model.started_at.desc())
            .all()
        )
        for pkg, batch, _labeling in rows:
            can_count, total_quantity = totals.get(batch.id, (0, 0.0))
            out.append(
                {
                    "packagingId": pkg.packaging_id,
                    "processingBatchId": batch.batch_id,
                    "batchNumber": batch.batch_number,
                    "productType": batch.product_type,
                    "scheduledDate": iso(batch.scheduled_date),
                    "finishedQuantity": num(pkg.finished_quantity),
                    "totalSapOutput": num(batch.total_sap_output),
                    "totalQuantity": total_quantity,
                    "canCount": can_count,
                }
            )
    return out


def get_labeling_row(s: Session, packaging_id: str) -> dict[str, Any]:
    product, pkg, batch, labeling = find_packaging(s, packaging_id)
    totals = can_totals_by_batch(s, product).get(batch.id, (0, 0.0))
    return labeling_row(pkg, batch, labeling, totals=totals)


# ─────────────────────────────────────────────────────────────────────────────
# Mutations
# ─────────────────────────────────────────────────────────────────────────────

def _new_labeling(product: str, pkg):
    model = get_model(product, "labelingBatches")
    return model(labeling_id=generate_id("lab"), packaging_batch_id=pkg.id, status="pending")


def create_labeling(s: Session, *, packaging_id: str, user: User):
    product, pkg, _batch, labeling = find_packaging(s, packaging_id)
    if pkg.status != "completed":
        raise ValidationError("Packaging batch must be completed first")
    if labeling is not None:
        raise ValidationError("Labeling batch already exists for this packaging batch")

    labeling = _new_labeling(product, pkg)
    s.add(labeling)
    s.flush()
    record_event(
        s,
        actor=user,
        action="labeling.batch.create",
        entity_type=type(labeling).__name__,
        entity_id=labeling.labeling_id,
        metadata={"packaging_id": pkg.packaging_id},
    )
    return labeling


def update_labeling(
    s: Session,
    product: str,
    pkg,
    labeling,
    *,
    user: User,
    quantities: dict[str, float | None],
    costs: dict[str, float | None] | None = None,
    status: str | None = None,
    notes: str | None = None,
):
    """Upsert the labeling row for ``pkg``. Returns the labeling row."""
    if quantities.get("sticker") is None or quantities.get("corrugated_carton") is None:
        raise ValidationError("Sticker and corrugated carton quantities are required.")
    if product == "treacle" and (quantities.get("shrink_sleeve") is None or quantities.get("neck_tag") is None):
        raise ValidationError("Shrink sleeve and neck tag quantities are required for treacle (in-house) labeling.")
    if status is not None and status not in LABELING_STATUSES:
        raise ValidationError(f"Invalid status: {status}")

    created = labeling is None
    if created:
        if pkg.status != "completed":
            raise ValidationError("Packaging batch must be completed first")
        labeling = _new_labeling(product, pkg)
        s.add(labeling)

    required = REQUIRED_ACCESSORIES[product]
    for accessory in ACCESSORY_FIELDS:
        setattr(labeling, f"{accessory}_quantity", quantities.get(accessory) if accessory in required else None)
    for accessory, value in (costs or {}).items():
        if value is not None:
            setattr(labeling, f"{accessory}_cost", value)
    if notes is not None:
        labeling.notes = notes or None

    if status is not None:
        labeling.status = status
    elif all(getattr(labeling, f"{a}_quantity") is not None for a in required):
        labeling.status = "completed"
    else:
        labeling.status = labeling.status or "pending"
    labeling.updated_at = utcnow()
    s.flush()

    record_event(
        s,
        actor=user,
        action="labeling.batch.create" if created else "labeling.batch.update",
        entity_type=type(labeling).__name__,
        entity_id=labeling.labeling_id,
        metadata={
            "packaging_id": pkg.packaging_id,
            "quantities": {a: quantities.get(a) for a in required},
            "status": labeling.status,
        },
    )
    return labeling


def delete_labeling(s: Session, labeling, *, user: User) -> None:
    record_event(
        s,
        actor=user,
        action="labeling.batch.delete",
        entity_type=type(labeling).__name__,
        entity_id=labeling.labeling_id,
    )
    s.delete(labeling)
