from flask import Blueprint, g, jsonify, request

from app.kithul.db import db_session
from app.kithul.errors import ValidationError
from app.kithul.payload import Fields
from app.kithul.products import SUPPORTED_PRODUCTS, normalize_product, products_or_all
from app.kithul.rbac import require_role
from app.kithul.roles import ADMINISTRATOR, PROCESSING

from . import service

bp = Blueprint("processing", __name__)

ROLES = (PROCESSING, ADMINISTRATOR)


def product_arg(default: str | None = None) -> str | None:
    raw = request.args.get("productType")
    if not raw:
        return default
    product = normalize_product(raw)
    if product is None:
        raise ValidationError("Unsupported product type")
    return product


@bp.get("/cans")
@require_role(*ROLES)
def cans_list():
    product = product_arg(default="treacle")
    status = (request.args.get("status") or "").strip().lower()
    for_batch = (request.args.get("forBatch") or "").strip() or None
    cans = service.list_available_cans(db_session(), product, active_only=status == "active", for_batch=for_batch)
    return jsonify({"cans": cans})


@bp.get("/batches")
@require_role(*ROLES)
def batches_list():
    batches = service.list_batches(db_session(), products_or_all(product_arg()))
    return jsonify({"batches": batches})


@bp.post("/batches")
@require_role(*ROLES)
def batches_create():
    f = Fields(request.get_json(silent=True))
    scheduled = f.date("scheduledDate")
    product = f.choice("productType", SUPPORTED_PRODUCTS) or "treacle"
    f.check()

    s = db_session()
    batch = service.create_batch(s, product=product, scheduled_date=scheduled, user=g.current_user)
    s.commit()
    return jsonify(service.batch_to_dict(batch, canIds=[])), 201


@bp.get("/batches/<batch_id>")
@require_role(*ROLES)
def batches_get(batch_id: str):
    s = db_session()
    product, batch = service.find_batch(s, batch_id)
    out = service.summarize(s, product, batch)
    out["canIds"] = service.batch_can_ids(s, product, batch)
    return jsonify(out)


@bp.patch("/batches/<batch_id>")
@require_role(*ROLES)
def batches_update(batch_id: str):
    f = Fields(request.get_json(silent=True))
    fields = {
        "status": f.choice("status", service.BATCH_STATUSES),
        "scheduled_date": f.date("scheduledDate"),
        "notes": f.string("notes", max_len=2000) if f.has("notes") else None,
        "total_sap_output": f.number("totalSapOutput", minimum=0),
        "gas_used_kg": f.number("gasUsedKg", minimum=0),
    }
    requested_product = f.choice("productType", SUPPORTED_PRODUCTS)
    f.check()
    if requested_product is None and all(v is None for v in fields.values()):
        raise ValidationError("No fields to update")

    s = db_session()
    product, batch = service.find_batch(s, batch_id)
    if requested_product is not None and requested_product != product:
        raise ValidationError("Cannot move batch between products")
    service.update_batch(s, batch, user=g.current_user, **fields)
    s.commit()
    return jsonify(service.summarize(s, product, batch))


@bp.put("/batches/<batch_id>/cans")
@require_role(*ROLES)
def batches_assign_cans(batch_id: str):
    payload = request.get_json(silent=True)
    can_ids = payload.get("canIds") if isinstance(payload, dict) else None
    if not isinstance(can_ids, list) or not all(isinstance(c, str) for c in can_ids):
        raise ValidationError("canIds must be a list of can ids")

    s = db_session()
    product, batch = service.find_batch(s, batch_id)
    assigned = service.assign_cans(s, product, batch, can_ids, user=g.current_user)
    s.commit()
    out = service.summarize(s, product, batch)
    out["canIds"] = assigned
    return jsonify(out)


@bp.post("/batches/<batch_id>/submit")
@require_role(*ROLES)
def batches_submit(batch_id: str):
    s = db_session()
    product, batch = service.find_batch(s, batch_id)
    service.submit_batch(s, batch, user=g.current_user)
    s.commit()
    return jsonify(service.summarize(s, product, batch))


@bp.post("/batches/<batch_id>/reopen")
@require_role(*ROLES)
def batches_reopen(batch_id: str):
    s = db_session()
    product, batch = service.find_batch(s, batch_id)
    service.reopen_batch(s, product, batch, user=g.current_user)
    s.commit()
    return jsonify(service.summarize(s, product, batch))


@bp.delete("/batches/<batch_id>")
@require_role(*ROLES)
def batches_delete(batch_id: str):
    s = db_session()
    product, batch = service.find_batch(s, batch_id)
    service.delete_batch(s, product, batch, user=g.current_user)
    s.commit()
    return "", 204
