from flask import Blueprint, g, jsonify, request

from app.kithul.db import db_session
from app.kithul.modules.processing.routes import product_arg
from app.kithul.payload import Fields
from app.kithul.products import products_or_all
from app.kithul.rbac import require_role
from app.kithul.roles import ADMINISTRATOR, PACKAGING, PROCESSING

from . import service
from .models import MATERIAL_FIELDS
from .service import PACKAGING_STATUSES, camel

bp = Blueprint("packaging", __name__)

READ_ROLES = (PACKAGING, PROCESSING, ADMINISTRATOR)
WRITE_ROLES = (PACKAGING, ADMINISTRATOR)


@bp.get("/batches")
@require_role(*READ_ROLES)
def batches_list():
    rows = service.list_packaging(db_session(), products_or_all(product_arg()))
    return jsonify({"batches": rows})


@bp.get("/batches/available-processing")
@require_role(*READ_ROLES)
def available_processing():
    batches = service.available_processing(db_session(), products_or_all(product_arg()))
    return jsonify({"batches": batches})


@bp.post("/batches")
@require_role(*WRITE_ROLES)
def batches_create():
    f = Fields(request.get_json(silent=True))
    processing_batch_id = f.string("processingBatchId", required=True, min_len=1)
    f.check()

    s = db_session()
    pkg = service.create_packaging(s, processing_batch_id=processing_batch_id, user=g.current_user)
    s.commit()
    return jsonify(service.get_packaging_row(s, pkg.packaging_id)), 201


@bp.get("/batches/<packaging_id>")
@require_role(*READ_ROLES)
def batches_get(packaging_id: str):
    return jsonify(service.get_packaging_row(db_session(), packaging_id))


@bp.patch("/batches/<packaging_id>")
@require_role(*WRITE_ROLES)
def batches_update(packaging_id: str):
    f = Fields(request.get_json(silent=True))
    finished_quantity = f.number("finishedQuantity", minimum=0)
    quantities = {m: f.number(camel(m) + "Quantity", minimum=0) for m in MATERIAL_FIELDS}
    costs = {m: f.number(camel(m) + "Cost", minimum=0) for m in MATERIAL_FIELDS}
    status = f.choice("status", PACKAGING_STATUSES)
    notes = f.string("notes", max_len=2000) if f.has("notes") else None
    f.check()

    s = db_session()
    product, pkg, _batch, _labeling = service.find_packaging(s, packaging_id)
    service.update_packaging(
        s,
        product,
        pkg,
        user=g.current_user,
        finished_quantity=finished_quantity,
        quantities=quantities,
        costs=costs,
        status=status,
        notes=notes,
    )
    s.commit()
    return jsonify(service.get_packaging_row(s, packaging_id))


@bp.delete("/batches/<packaging_id>")
@require_role(*WRITE_ROLES)
def batches_delete(packaging_id: str):
    s = db_session()
    product, pkg, _batch, _labeling = service.find_packaging(s, packaging_id)
    service.delete_packaging(s, product, pkg, user=g.current_user)
    s.commit()
    return "", 204
