from flask import Blueprint, current_app, g, jsonify, request

from app.kithul.auth import public_user
from app.kithul.db import db_session
from app.kithul.errors import ValidationError
from app.kithul.rbac import require_auth
from app.kithul.storage import storage_from_config

from .service import update_profile

bp = Blueprint("profile", __name__)


@bp.get("")
@require_auth
def profile_get():
    return jsonify(public_user(g.current_user))


@bp.patch("")
@require_auth
def profile_update():
    # Multipart from the profile form; JSON is accepted for name/password-only edits.
    if request.mimetype == "multipart/form-data":
        data = request.form
    else:
        data = request.get_json(silent=True)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError("Invalid payload", details={"_body": "must be a JSON object"})
        for key in ("currentPassword", "newPassword"):
            if data.get(key) is not None and not isinstance(data[key], str):
                raise ValidationError("Invalid payload", details={key: "must be a string"})

    raw_name = data.get("name")
    name = None
    clear_name = False
    if raw_name is not None:
        name = str(raw_name).strip()
        if len(name) > 120:
            raise ValidationError("Name must be at most 120 characters")
        if not name:
            name, clear_name = None, True
    current_password = data.get("currentPassword") or None
    new_password = data.get("newPassword") or None

    avatar = None
    file = request.files.get("avatar")
    if file and file.filename:
        avatar = (file.read(), file.filename, file.mimetype)

    if raw_name is None and new_password is None and avatar is None:
        raise ValidationError("No changes provided")

    s = db_session()
    user = update_profile(
        s,
        g.current_user,
        storage=storage_from_config(current_app.config),
        name=name,
        clear_name=clear_name,
        current_password=current_password,
        new_password=new_password,
        avatar=avatar,
    )
    s.commit()
    return jsonify(public_user(user))
