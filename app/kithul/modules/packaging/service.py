"""
Packaging service layer.
A packaging batch consumes one completed processing batch and records the
finished quantity plus the packing materials used (bottles/lids for treacle,
foil/bags/paper for jaggery).
"""
from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from app.kithul.audit import record_event
from app.kithul.errors import NotFoundError, ValidationError
from app.kithul.models import User
from app.kithul.modules.processing.service import batch_to_dict, can_totals_by_batch, find_batch
from app.kithul.products import SUPPORTED_PRODUCTS, get_model
from app.kithul.utils import generate_id, iso, num, utcnow

from .models import MATERIAL_FIELDS

PACKAGING_STATUSES = ("pending", "in-progress", "completed", "on-hold")

REQUIRED_MATERIALS = {
    "treacle": ("bottle", "lid"),
    "jaggery": ("alufoil", "vacuum_bag", "parchment_paper"),
}
REQUIRED_MATERIALS_MESSAGE = {
    "treacle": "Bottle and lid quantities are required for treacle (in-house) packaging.",
    "jaggery": "Alufoil, vacuum bag, and parchment paper quantities are required for jaggery packaging.",
}


def camel(field: str) -> str:
    head, *rest = field.split("_")
    return head + "".join(p.title() for p in rest)


# ─────────────────────────────────────────────────────────────────────────────
# Serialization
# ─────────────────────────────────────────────────────────────────────────────

def packaging_row(pkg, batch, *, totals: tuple[int, float] = (0, 0.0), labeling=None) -> dict[str, Any]:
    can_count, total_quantity = totals
    out: dict[str, Any] = {
        "id": pkg.id,
        "packagingId": pkg.packaging_id,
        "processingBatchId": batch.batch_id,
        "batchNumber": batch.batch_number,
        "productType": batch.product_type,
        "scheduledDate": iso(batch.scheduled_date),
        "startedAt": iso(pkg.started_at),
        "updatedAt": iso(pkg.updated_at),
        "packagingStatus": pkg.status,
        "processingStatus": batch.status,
        "notes": pkg.notes,
        "canCount": can_count,
        "totalQuantity": total_quantity,
        "totalSapOutput": num(batch.total_sap_output),
        "finishedQuantity": num(pkg.finished_quantity),
    }
    for material in MATERIAL_FIELDS:
        out[camel(material) + "Quantity"] = num(getattr(pkg, f"{material}_quantity"))
    for material in MATERIAL_FIELDS:
        out[camel(material) + "Cost"] = num(getattr(pkg, f"{material}_cost"))
    out["labelingId"] = labeling.labeling_id if labeling is not None else None
    out["labelingStatus"] = labeling.status if labeling is not None else None
    return out


def rows_query(s: Session, product: str):
    packaging_model = get_model(product, "packagingBatches")
    batch_model = get_model(product, "processingBatches")
    labeling_model = get_model(product, "labelingBatches")
    return (
        s.query(packaging_model, batch_model, labeling_model)
        .join(batch_model, batch_model.id == packaging_model.processing_batch_id)
        .outerjoin(labeling_model, labeling_model.packaging_batch_id == packaging_model.id)
    )


def list_packaging(s: Session, products: list[str]) -> list[dict[str, Any]]:
    out = []
    for product in products:
        totals = can_totals_by_batch(s, product)
        for pkg, batch, labeling in rows_query(s, product).all():
            out.append(packaging_row(pkg, batch, totals=totals.get(batch.id, (0, 0.0)), labeling=labeling))
    out.sort(key=lambda r: r["startedAt"] or "", reverse=True)
    return out


def available_processing(s: Session, products: list[str]) -> list[dict[str, Any]]:
    """Completed processing batches that have no packaging batch yet."""
    out = []
    for product in products:
        batch_model = get_model(product, "processingBatches")
        packaging_model = get_model(product, "packagingBatches")
        totals = can_totals_by_batch(s, product)
        batches = (
            s.query(batch_model)
            .outerjoin(packaging_model, packaging_model.processing_batch_id == batch_model.id)
            .filter(batch_model.status == "completed", packaging_model.id.is_(None))
            .order_by(batch_model.scheduled_date.desc(), batch_model.created_at.desc())
            .all()
        )
        for batch in batches:
            count, qty = totals.get(batch.id, (0, 0.0))
            out.append(batch_to_dict(batch, can_count=count, total_quantity=qty))
    return out


def find_packaging(s: Session, packaging_id: str):
    """Returns (product, packaging batch, processing batch, labeling batch or None)."""
    for product in SUPPORTED_PRODUCTS:
        packaging_model = get_model(product, "packagingBatches")
        row = rows_query(s, product).filter(packaging_model.packaging_id == packaging_id).first()
        if row is not None:
            pkg, batch, labeling = row
            return product, pkg, batch, labeling
    raise NotFoundError("Packaging batch not found")


def get_packaging_row(s: Session, packaging_id: str) -> dict[str, Any]:
    product, pkg, batch, labeling = find_packaging(s, packaging_id)
    totals = can_totals_by_batch(s, product).get(batch.id, (0, 0.0))
    return packaging_row(pkg, batch, totals=totals, labeling=labeling)


# ─────────────────────────────────────────────────────────────────────────────
# Mutations
# ─────────────────────────────────────────────────────────────────────────────

def create_packaging(s: Session, *, processing_batch_id: str, user: User):
    product, batch = find_batch(s, processing_batch_id)
    if batch.status != "completed":
        raise ValidationError("Processing batch must be completed first")
    packaging_model = get_model(product, "packagingBatches")
    if s.query(packaging_model).filter(packaging_model.processing_batch_id == batch.id).first():
        raise ValidationError("Packaging batch already exists for this processing batch")

    pkg = packaging_model(
        packaging_id=generate_id("pkg"),
        processing_batch_id=batch.id,
        status="pending",
        started_at=utcnow(),
    )
    s.add(pkg)
    s.flush()
    record_event(
        s,
        actor=user,
        action="packaging.batch.create",
        entity_type=packaging_model.__name__,
        entity_id=pkg.packaging_id,
        metadata={"processing_batch_id": batch.batch_id},
    )
    return pkg


def update_packaging(
    s: Session,
    product: str,
    pkg,
    *,
    user: User,
    finished_quantity: float | None,
    quantities: dict[str, float | None],
    costs: dict[str, float | None] | None = None,
    status: str | None = None,
    notes: str | None = None,
):
    """
    quantities/costs are keyed by material name ("bottle", "vacuum_bag", ...).
    Materials not used by the product are cleared.
    """
    required = REQUIRED_MATERIALS[product]
    if any(quantities.get(m) is None for m in required):
        raise ValidationError(REQUIRED_MATERIALS_MESSAGE[product])
    if finished_quantity is None:
        raise ValidationError("Finished quantity is required for packaging.")
    if status is not None and status not in PACKAGING_STATUSES:
        raise ValidationError(f"Invalid status: {status}")

    pkg.finished_quantity = finished_quantity
    for material in MATERIAL_FIELDS:
        setattr(pkg, f"{material}_quantity", quantities.get(material) if material in required else None)
    for material, value in (costs or {}).items():
        if value is not None:
            setattr(pkg, f"{material}_cost", value)
    if status is not None:
        pkg.status = status
    if notes is not None:
        pkg.notes = notes or None
    pkg.updated_at = utcnow()

    record_event(
        s,
        actor=user,
        action="packaging.batch.update",
        entity_type=type(pkg).__name__,
        entity_id=pkg.packaging_id,
        metadata={
            "finished_quantity": finished_quantity,
            "quantities": {m: quantities.get(m) for m in required},
            "status": pkg.status,
        },
    )
    return pkg


def delete_packaging(s: Session, product: str, pkg, *, user: User) -> None:
    labeling_model = get_model(product, "labelingBatches")
    s.query(labeling_model).filter(labeling_model.packaging_batch_id == pkg.id).delete(synchronize_session=False)
    record_event(
        s,
        actor=user,
        action="packaging.batch.delete",
        entity_type=type(pkg).__name__,
        entity_id=pkg.packaging_id,
    )
    s.delete(pkg)
