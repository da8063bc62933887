"""
Daily production report.

Figures are collected per product and per stage, then summed across products.
Date filters are half-open ``[day, day + 1)`` ranges so the same query works on
SQLite and Postgres.
"""
from __future__ import annotations

from datetime import date
from io import BytesIO
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Font
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.kithul.modules.field_collection.models import FieldCollectionDraft
from app.kithul.modules.labeling.models import ACCESSORY_FIELDS
from app.kithul.modules.packaging.models import MATERIAL_FIELDS
from app.kithul.modules.packaging.service import camel
from app.kithul.products import SUPPORTED_PRODUCTS, get_model
from app.kithul.utils import day_bounds, iso, utcnow

REPORTED_DRAFT_STATUSES = ("submitted", "completed")


def _f(value) -> float:
    return float(value or 0)


def field_collection_metrics(s: Session, product: str, day: date) -> dict[str, Any]:
    can_model = get_model(product, "cans")
    drafts = (
        s.query(FieldCollectionDraft)
        .filter(
            FieldCollectionDraft.collection_date == day,
            func.lower(FieldCollectionDraft.status).in_(REPORTED_DRAFT_STATUSES),
        )
        .order_by(FieldCollectionDraft.id.asc())
        .all()
    )
    draft_pks = [d.id for d in drafts]
    cans, quantity = 0, 0.0
    if draft_pks:
        cans, quantity = s.execute(
            select(func.count(can_model.id), func.coalesce(func.sum(can_model.quantity), 0)).where(
                can_model.draft_id.in_(draft_pks)
            )
        ).one()
    return {
        "drafts": len(drafts),
        "cans": int(cans),
        "quantity": _f(quantity),
        "draftIds": [d.draft_id for d in drafts],
    }


def processing_metrics(s: Session, product: str, day: date) -> dict[str, Any]:
    batch_model = get_model(product, "processingBatches")
    link_model = get_model(product, "processingBatchCans")
    can_model = get_model(product, "cans")
    batches = (
        s.query(batch_model)
        .filter(batch_model.scheduled_date == day, func.lower(batch_model.status) == "completed")
        .all()
    )
    total_input = 0.0
    if batches:
        total_input = s.execute(
            select(func.coalesce(func.sum(can_model.quantity), 0))
            .join(link_model, link_model.can_id == can_model.id)
            .where(link_model.processing_batch_id.in_([b.id for b in batches]))
        ).scalar_one()
    return {
        "totalBatches": len(batches),
        "completedBatches": len(batches),
        "totalOutput": sum(_f(b.total_sap_output) for b in batches),
        "totalInput": _f(total_input),
        "totalGasUsedKg": sum(_f(b.gas_used_kg) for b in batches),
    }


def packaging_metrics(s: Session, product: str, day: date) -> dict[str, Any]:
    model = get_model(product, "packagingBatches")
    start, end = day_bounds(day)
    rows = s.query(model).filter(model.started_at >= start, model.started_at < end).all()
    out: dict[str, Any] = {
        "totalBatches": len(rows),
        "completedBatches": sum(1 for r in rows if (r.status or "").lower() == "completed"),
        "finishedQuantity": sum(_f(r.finished_quantity) for r in rows),
    }
    for material in MATERIAL_FIELDS:
        out[camel(material) + "Quantity"] = sum(_f(getattr(r, f"{material}_quantity")) for r in rows)
    out["totalCost"] = sum(_f(getattr(r, f"{m}_cost")) for r in rows for m in MATERIAL_FIELDS)
    return out


def labeling_metrics(s: Session, product: str, day: date) -> dict[str, Any]:
    model = get_model(product, "labelingBatches")
    start, end = day_bounds(day)
    rows = s.query(model).filter(model.created_at >= start, model.created_at < end).all()
    out: dict[str, Any] = {
        "totalBatches": len(rows),
        "completedBatches": sum(1 for r in rows if (r.status or "").lower() == "completed"),
    }
    for accessory in ACCESSORY_FIELDS:
        out[camel(accessory) + "Quantity"] = sum(_f(getattr(r, f"{accessory}_quantity")) for r in rows)
    out["totalCost"] = sum(_f(getattr(r, f"{a}_cost")) for r in rows for a in ACCESSORY_FIELDS)
    return out


STAGES = {
    "fieldCollection": field_collection_metrics,
    "processing": processing_metrics,
    "packaging": packaging_metrics,
    "labeling": labeling_metrics,
}


def _sum_stage(blocks: list[dict[str, Any]]) -> dict[str, Any]:
    total: dict[str, Any] = {}
    for block in blocks:
        for key, value in block.items():
            if key == "draftIds":
                seen = total.setdefault(key, [])
                seen.extend(v for v in value if v not in seen)
            else:
                total[key] = total.get(key, 0) + value
    return total


def daily_report(s: Session, day: date) -> dict[str, Any]:
    per_product = {}
    for product in SUPPORTED_PRODUCTS:
        block: dict[str, Any] = {"product": product}
        for stage, fn in STAGES.items():
            block[stage] = fn(s, product, day)
        per_product[product] = block

    totals = {stage: _sum_stage([per_product[p][stage] for p in SUPPORTED_PRODUCTS]) for stage in STAGES}
    return {
        "date": day.isoformat(),
        "generatedAt": iso(utcnow()),
        "perProduct": per_product,
        "totals": totals,
    }


# ─────────────────────────────────────────────────────────────────────────────
# Excel export
# ─────────────────────────────────────────────────────────────────────────────

STAGE_TITLES = {
    "fieldCollection": "Field collection",
    "processing": "Processing",
    "packaging": "Packaging",
    "labeling": "Labeling",
}


def _label(key: str) -> str:
    out = "".join(" " + c.lower() if c.isupper() else c for c in key)
    return out[:1].upper() + out[1:]


def _write_block(ws, stages: dict[str, Any]) -> None:
    bold = Font(bold=True)
    for stage, title in STAGE_TITLES.items():
        ws.append([title])
        ws.cell(row=ws.max_row, column=1).font = bold
        for key, value in stages[stage].items():
            if key == "draftIds":
                value = ", ".join(value)
            ws.append([_label(key), value])
        ws.append([])
    ws.column_dimensions["A"].width = 32
    ws.column_dimensions["B"].width = 20


def report_workbook_bytes(report: dict[str, Any]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Summary"
    ws.append(["Daily production report", report["date"]])
    ws.cell(row=1, column=1).font = Font(bold=True, size=14)
    ws.append(["Generated at", report["generatedAt"]])
    ws.append([])
    _write_block(ws, report["totals"])

    for product, block in report["perProduct"].items():
        sheet = wb.create_sheet(title=product.title())
        sheet.append([f"{product.title()} production", report["date"]])
        sheet.cell(row=1, column=1).font = Font(bold=True, size=14)
        sheet.append([])
        _write_block(sheet, block)

    bio = BytesIO()
    wb.save(bio)
    return bio.getvalue()
