import re

from flask import Blueprint, g, jsonify, request

from app.kithul.audit import audit_to_dict
from app.kithul.auth import USER_ID_RE, user_to_dict
from app.kithul.db import db_session
from app.kithul.errors import ValidationError
from app.kithul.payload import Fields
from app.kithul.rbac import require_role
from app.kithul.roles import ADMINISTRATOR, ROLE_LIST

from . import service

bp = Blueprint("admin", __name__)

CENTER_ID_RE = re.compile(r"[a-zA-Z0-9_-]+")


# ─────────────────────────────────────────────────────────────────────────────
# Users
# ─────────────────────────────────────────────────────────────────────────────

@bp.get("/roles")
@require_role(ADMINISTRATOR)
def roles():
    return jsonify({"roles": ROLE_LIST})


@bp.get("/users")
@require_role(ADMINISTRATOR)
def users_list():
    users = service.list_users(db_session())
    return jsonify({"users": [user_to_dict(u) for u in users]})


@bp.get("/users/<user_pk>")
@require_role(ADMINISTRATOR)
def users_get(user_pk: str):
    user = service.get_managed_user(db_session(), user_pk)
    return jsonify(user_to_dict(user))


@bp.post("/users")
@require_role(ADMINISTRATOR)
def users_create():
    f = Fields(request.get_json(silent=True))
    user_id = f.string("userId", required=True, min_len=3, max_len=40, pattern=USER_ID_RE)
    password = f.string("password", required=True, min_len=8)
    name = f.string("name", required=True, min_len=1, max_len=120)
    role = f.string("role", required=True, min_len=1)
    f.check()

    s = db_session()
    user = service.create_user(s, user_id=user_id, password=password, name=name, role=role, actor=g.current_user)
    s.commit()
    return jsonify(user_to_dict(user)), 201


@bp.patch("/users/<user_pk>")
@require_role(ADMINISTRATOR)
def users_update(user_pk: str):
    f = Fields(request.get_json(silent=True))
    name = f.string("name", min_len=1, max_len=120)
    role = f.string("role", min_len=1)
    is_active = f.boolean("isActive")
    f.check()
    if name is None and role is None and is_active is None:
        raise ValidationError("No updates provided")

    s = db_session()
    user = service.get_managed_user(s, user_pk)
    service.update_user(s, user, actor=g.current_user, name=name, role=role, is_active=is_active)
    s.commit()
    return jsonify(user_to_dict(user))


@bp.delete("/users/<user_pk>")
@require_role(ADMINISTRATOR)
def users_delete(user_pk: str):
    if user_pk.isdigit() and int(user_pk) == g.current_user.id:
        raise ValidationError("You cannot delete your own account")
    s = db_session()
    user = service.get_managed_user(s, user_pk)
    service.delete_user(s, user, actor=g.current_user)
    s.commit()
    return "", 204


@bp.get("/audit")
@require_role(ADMINISTRATOR)
def audit_list():
    limit = request.args.get("limit", default=100, type=int)
    events = service.list_audit_events(db_session(), limit=limit)
    return jsonify({"events": [audit_to_dict(ev) for ev in events]})


# ─────────────────────────────────────────────────────────────────────────────
# Collection centers
# ─────────────────────────────────────────────────────────────────────────────

def _center_fields(f: Fields, *, required: bool) -> dict:
    return {
        "center_id": f.string("centerId", required=required, min_len=2, max_len=20, pattern=CENTER_ID_RE),
        "center_name": f.string("centerName", required=required, min_len=2, max_len=100),
        "location": f.string("location", required=required, min_len=2, max_len=100),
        "center_agent": f.string("centerAgent", required=required, min_len=2, max_len=100),
        "contact_phone": f.string("contactPhone", max_len=20, blank_as_none=True),
    }


@bp.get("/centers")
@require_role(ADMINISTRATOR)
def centers_list():
    centers = service.list_centers(db_session())
    return jsonify({"centers": [service.center_to_dict(c) for c in centers]})


@bp.get("/centers/<center_pk>")
@require_role(ADMINISTRATOR)
def centers_get(center_pk: str):
    center = service.get_center(db_session(), center_pk)
    return jsonify(service.center_to_dict(center))


@bp.post("/centers")
@require_role(ADMINISTRATOR)
def centers_create():
    f = Fields(request.get_json(silent=True))
    fields = _center_fields(f, required=True)
    f.check()

    s = db_session()
    center = service.create_center(s, actor=g.current_user, **fields)
    s.commit()
    return jsonify(service.center_to_dict(center)), 201


@bp.patch("/centers/<center_pk>")
@require_role(ADMINISTRATOR)
def centers_update(center_pk: str):
    f = Fields(request.get_json(silent=True))
    fields = _center_fields(f, required=False)
    fields["is_active"] = f.boolean("isActive")
    f.check()
    if all(v is None for v in fields.values()):
        raise ValidationError("No updates provided")

    s = db_session()
    center = service.get_center(s, center_pk)
    service.update_center(s, center, actor=g.current_user, **fields)
    s.commit()
    return jsonify(service.center_to_dict(center))


@bp.delete("/centers/<center_pk>")
@require_role(ADMINISTRATOR)
def centers_delete(center_pk: str):
    s = db_session()
    center = service.get_center(s, center_pk)
    service.delete_center(s, center, actor=g.current_user)
    s.commit()
    return "", 204
