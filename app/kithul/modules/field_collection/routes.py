from flask import Blueprint, g, jsonify, request

from app.kithul.auth import public_user
from app.kithul.db import db_session
from app.kithul.errors import ValidationError
from app.kithul.modules.admin.service import center_to_dict, list_centers
from app.kithul.payload import Fields
from app.kithul.products import CAN_TYPE_TO_PRODUCT, normalize_can_type
from app.kithul.rbac import require_role
from app.kithul.roles import ADMINISTRATOR, FIELD_COLLECTION

from . import service
from .service import DRAFT_STATUSES

bp = Blueprint("field_collection", __name__)

ROLES = (FIELD_COLLECTION, ADMINISTRATOR)


def _can_type_arg() -> str | None:
    raw = request.args.get("productType")
    if not raw:
        return None
    can_type = normalize_can_type(raw)
    if can_type is None:
        raise ValidationError("Unsupported product type")
    return can_type


# ─────────────────────────────────────────────────────────────────────────────
# Drafts
# ─────────────────────────────────────────────────────────────────────────────

@bp.get("/drafts")
@require_role(*ROLES)
def drafts_list():
    status = (request.args.get("status") or "").strip() or None
    drafts = service.list_drafts(db_session(), user=g.current_user, can_type=_can_type_arg(), status=status)
    return jsonify({"drafts": drafts})


@bp.get("/drafts/<draft_id>")
@require_role(*ROLES)
def drafts_get(draft_id: str):
    s = db_session()
    draft = service.get_draft(s, draft_id, user=g.current_user)
    return jsonify(service.draft_detail(s, draft))


@bp.post("/drafts")
@require_role(*ROLES)
def drafts_create():
    f = Fields(request.get_json(silent=True))
    day = f.date("date")
    f.check()

    s = db_session()
    draft = service.create_draft(s, user=g.current_user, day=day)
    s.commit()
    return jsonify(service.draft_to_dict(draft, canCount=0, totalQuantity=0.0)), 201


@bp.put("/drafts/<draft_id>")
@require_role(*ROLES)
def drafts_update(draft_id: str):
    f = Fields(request.get_json(silent=True))
    status = f.choice("status", DRAFT_STATUSES)
    f.check()
    if status is None:
        raise ValidationError("No fields to update")

    s = db_session()
    draft = service.get_draft(s, draft_id, user=g.current_user)
    service.set_draft_status(s, draft, status, user=g.current_user)
    s.commit()
    return jsonify(service.draft_to_dict(draft))


@bp.delete("/drafts/<draft_id>")
@require_role(*ROLES)
def drafts_delete(draft_id: str):
    s = db_session()
    draft = service.get_draft(s, draft_id, user=g.current_user)
    service.delete_draft(s, draft, user=g.current_user)
    s.commit()
    return "", 204


@bp.post("/drafts/<draft_id>/submit")
@require_role(*ROLES)
def drafts_submit(draft_id: str):
    s = db_session()
    draft = service.get_draft(s, draft_id, user=g.current_user)
    service.submit_draft(s, draft, user=g.current_user)
    s.commit()
    return jsonify(service.draft_to_dict(draft))


@bp.post("/drafts/<draft_id>/reopen")
@require_role(*ROLES)
def drafts_reopen(draft_id: str):
    s = db_session()
    draft = service.get_draft(s, draft_id, user=g.current_user)
    service.reopen_draft(s, draft, user=g.current_user)
    s.commit()
    return jsonify(service.draft_to_dict(draft))


# ─────────────────────────────────────────────────────────────────────────────
# Center completion
# ─────────────────────────────────────────────────────────────────────────────

@bp.post("/drafts/<draft_id>/centers/<center_id>/submit")
@require_role(*ROLES)
def center_submit(draft_id: str, center_id: str):
    s = db_session()
    draft = service.get_draft(s, draft_id, user=g.current_user)
    service.submit_center(s, draft, center_id, user=g.current_user)
    s.commit()
    return jsonify({"draftId": draft.draft_id, "centerId": center_id, "completed": True})


@bp.post("/drafts/<draft_id>/centers/<center_id>/reopen")
@require_role(*ROLES)
def center_reopen(draft_id: str, center_id: str):
    s = db_session()
    draft = service.get_draft(s, draft_id, user=g.current_user)
    service.reopen_center(s, draft, center_id, user=g.current_user)
    s.commit()
    return jsonify({"draftId": draft.draft_id, "centerId": center_id, "completed": False})


@bp.get("/drafts/<draft_id>/completed-centers")
@require_role(*ROLES)
def center_completions(draft_id: str):
    s = db_session()
    draft = service.get_draft(s, draft_id, user=g.current_user)
    return jsonify({"completedCenters": service.completed_centers(s, draft)})


@bp.get("/drafts/<draft_id>/centers/<center_id>/cans")
@require_role(*ROLES)
def center_cans(draft_id: str, center_id: str):
    s = db_session()
    draft = service.get_draft(s, draft_id, user=g.current_user)
    center = service.resolve_center(s, center_id)
    if center is None:
        return jsonify({"cans": []})
    pairs = service.draft_cans(s, draft, center=center)
    return jsonify({"cans": [service.can_to_dict(can, c) for can, c in pairs]})


# ─────────────────────────────────────────────────────────────────────────────
# Lookups
# ─────────────────────────────────────────────────────────────────────────────

@bp.get("/centers")
@require_role(*ROLES)
def centers_list():
    centers = list_centers(db_session(), active_only=True)
    return jsonify({"centers": [center_to_dict(c) for c in centers]})


@bp.get("/field-collectors")
@require_role(*ROLES)
def field_collectors():
    users = service.list_field_collectors(db_session())
    return jsonify({"collectors": [public_user(u) for u in users]})


# ─────────────────────────────────────────────────────────────────────────────
# Cans
# ─────────────────────────────────────────────────────────────────────────────

@bp.post("/cans")
@require_role(*ROLES)
def cans_create():
    f = Fields(request.get_json(silent=True))
    draft_id = f.string("draftId", required=True, min_len=1)
    center_ref = f.string("collectionCenterId", required=True, min_len=1)
    can_type = f.choice("productType", CAN_TYPE_TO_PRODUCT.keys(), required=True)
    can_id = f.string("canId", blank_as_none=True)
    serial = f.data.get("serialNumber")
    brix = f.number("brixValue", minimum=0, maximum=100)
    ph = f.number("phValue", minimum=0, maximum=14)
    quantity = f.number("quantity", required=True, positive=True)
    f.check()

    s = db_session()
    draft = service.get_draft(s, draft_id, user=g.current_user)
    center = service.resolve_center(s, center_ref)
    if center is None:
        raise ValidationError(f"Invalid collection center ID: {center_ref}")
    full_can_id = service.build_can_id(
        can_type, can_id=can_id, serial_number=str(serial) if serial is not None else None
    )
    can = service.create_can(
        s,
        draft=draft,
        center=center,
        can_type=can_type,
        can_id=full_can_id,
        quantity=quantity,
        brix_value=brix,
        ph_value=ph,
        user=g.current_user,
    )
    s.commit()
    return jsonify(service.can_to_dict(can, center)), 201


@bp.put("/cans/<can_id>")
@require_role(*ROLES)
def cans_update(can_id: str):
    f = Fields(request.get_json(silent=True))
    brix = f.number("brixValue", minimum=0, maximum=100)
    ph = f.number("phValue", minimum=0, maximum=14)
    quantity = f.number("quantity", positive=True)
    f.check()
    if brix is None and ph is None and quantity is None:
        raise ValidationError("No fields to update")

    s = db_session()
    _product, can = service.find_can(s, can_id)
    service.update_can(s, can, user=g.current_user, brix_value=brix, ph_value=ph, quantity=quantity)
    s.commit()
    return jsonify(service.can_to_dict(can))


@bp.delete("/cans/<can_id>")
@require_role(*ROLES)
def cans_delete(can_id: str):
    s = db_session()
    product, can = service.find_can(s, can_id)
    service.delete_can(s, product, can, user=g.current_user)
    s.commit()
    return "", 204
