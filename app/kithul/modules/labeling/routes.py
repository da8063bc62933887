from flask import Blueprint, g, jsonify, request

from app.kithul.db import db_session
from app.kithul.modules.packaging.service import camel, find_packaging
from app.kithul.modules.processing.routes import product_arg
from app.kithul.payload import Fields
from app.kithul.products import products_or_all
from app.kithul.rbac import require_role
from app.kithul.roles import ADMINISTRATOR, LABELING, PACKAGING

from . import service
from .models import ACCESSORY_FIELDS
from .service import LABELING_STATUSES

bp = Blueprint("labeling", __name__)

READ_ROLES = (LABELING, PACKAGING, ADMINISTRATOR)
WRITE_ROLES = (LABELING, ADMINISTRATOR)


@bp.get("/batches")
@require_role(*READ_ROLES)
def batches_list():
    rows = service.list_labeling(db_session(), products_or_all(product_arg()))
    return jsonify({"batches": rows})


@bp.get("/available-packaging")
@require_role(*READ_ROLES)
def available_packaging():
    rows = service.available_packaging(db_session(), products_or_all(product_arg()))
    return jsonify({"batches": rows})


@bp.post("/batches")
@require_role(*WRITE_ROLES)
def batches_create():
    f = Fields(request.get_json(silent=True))
    packaging_id = f.string("packagingId", required=True, min_len=1)
    f.check()

    s = db_session()
    service.create_labeling(s, packaging_id=packaging_id, user=g.current_user)
    s.commit()
    return jsonify(service.get_labeling_row(s, packaging_id)), 201


@bp.get("/batches/<packaging_id>")
@require_role(*READ_ROLES)
def batches_get(packaging_id: str):
    return jsonify(service.get_labeling_row(db_session(), packaging_id))


@bp.patch("/batches/<packaging_id>")
@require_role(*READ_ROLES)
def batches_update(packaging_id: str):
    f = Fields(request.get_json(silent=True))
    quantities = {a: f.number(camel(a) + "Quantity", minimum=0) for a in ACCESSORY_FIELDS}
    costs = {a: f.number(camel(a) + "Cost", minimum=0) for a in ACCESSORY_FIELDS}
    status = f.choice("status", LABELING_STATUSES)
    notes = f.string("notes", max_len=2000) if f.has("notes") else None
    f.check()

    s = db_session()
    product, pkg, _batch, labeling = find_packaging(s, packaging_id)
    service.update_labeling(
        s,
        product,
        pkg,
        labeling,
        user=g.current_user,
        quantities=quantities,
        costs=costs,
        status=status,
        notes=notes,
    )
    s.commit()
    return jsonify(service.get_labeling_row(s, packaging_id))


@bp.delete("/batches/<packaging_id>")
@require_role(*WRITE_ROLES)
def batches_delete(packaging_id: str):
    s = db_session()
    _product, _pkg, _batch, labeling = find_packaging(s, packaging_id)
    if labeling is not None:
        service.delete_labeling(s, labeling, user=g.current_user)
        s.commit()
    return "", 204
