from __future__ import annotations

import re
import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from functools import wraps
from typing import Any

from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.security import check_password_hash, generate_password_hash

from app.kithul.audit import record_event
from app.kithul.db import db_session
from app.kithul.errors import ConflictError
from app.kithul.models import User
from app.kithul.payload import Fields
from app.kithul.roles import DEFAULT_ROLE, is_allowed_role, is_self_service_role, normalize_role
from app.kithul.security import TokenError, bearer_token, decode_token, issue_token
from app.kithul.utils import iso, utcnow

bp = Blueprint("auth", __name__)

USER_ID_RE = re.compile(r"[a-zA-Z0-9_.-]+")


def assign_request_id() -> None:
    """Per-request id for log/audit correlation."""
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None


# ─────────────────────────────────────────────────────────────────────────────
# Rate limiting (per client IP, in-process)
# ─────────────────────────────────────────────────────────────────────────────

def _attempts() -> dict[str, list[datetime]]:
    return current_app.extensions.setdefault("auth_attempts", defaultdict(list))


def _check_rate_limit(ip: str) -> bool:
    now = utcnow()
    cutoff = now - timedelta(seconds=current_app.config["AUTH_RATE_WINDOW"])
    attempts = _attempts()
    attempts[ip] = [t for t in attempts[ip] if t > cutoff]
    return len(attempts[ip]) >= current_app.config["AUTH_RATE_LIMIT"]


def rate_limited(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        ip = request.remote_addr or "unknown"
        if _check_rate_limit(ip):
            current_app.logger.warning("Auth rate limit hit ip=%s endpoint=%s", ip, request.endpoint)
            return jsonify({"error": "Too many requests, please try again later"}), 429
        _attempts()[ip].append(utcnow())
        return fn(*args, **kwargs)

    return wrapped


# ─────────────────────────────────────────────────────────────────────────────
# Serialization
# ─────────────────────────────────────────────────────────────────────────────

def public_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "userId": user.user_id,
        "name": user.name,
        "role": user.role,
        "profileImage": user.profile_image,
    }


def user_to_dict(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "userId": user.user_id,
        "name": user.name,
        "role": user.role,
        "createdAt": iso(user.created_at),
        "profileImage": user.profile_image,
        "isActive": user.is_active,
    }


# ─────────────────────────────────────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────────────────────────────────────

@bp.post("/register")
@rate_limited
def register():
    f = Fields(request.get_json(silent=True))
    user_id = f.string("userId", required=True, min_len=3, max_len=40, pattern=USER_ID_RE)
    password = f.string("password", required=True, min_len=8)
    name = f.string("name", max_len=120, blank_as_none=True)
    requested_role = f.data.get("role")
    f.check()

    s = db_session()
    if s.query(User).filter(User.user_id == user_id).one_or_none():
        raise ConflictError("User ID already in use")

    role = DEFAULT_ROLE
    blocked = requested_role is not None and not is_self_service_role(requested_role)
    if not blocked and is_allowed_role(requested_role):
        role = normalize_role(requested_role)

    user = User(
        user_id=user_id,
        password_hash=generate_password_hash(password),
        name=name,
        role=role,
        is_active=True,
    )
    s.add(user)
    s.flush()
    if blocked:
        current_app.logger.warning(
            "Blocked self-registration role=%r for user=%s ip=%s", requested_role, user_id, request.remote_addr
        )
        record_event(
            s,
            actor=user,
            action="auth.register.blocked_role",
            entity_type="User",
            entity_id=str(user.id),
            reason="Role not available for self-registration",
            metadata={"requested_role": str(requested_role), "assigned_role": role},
        )
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify(user_to_dict(user)), 201


@bp.post("/login")
@rate_limited
def login():
    f = Fields(request.get_json(silent=True))
    user_id = f.string("userId", required=True, min_len=1)
    password = f.string("password", required=True, min_len=1)
    f.check()

    ip = request.remote_addr or "unknown"
    s = db_session()
    user = s.query(User).filter(User.user_id == user_id).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        current_app.logger.warning("Failed login user=%s ip=%s", user_id, ip)
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=user_id,
            reason="Invalid credentials",
        )
        s.commit()
        return jsonify({"error": "Invalid credentials"}), 401

    if not is_allowed_role(user.role):
        return jsonify({"error": "Role not allowed"}), 403

    token = issue_token(user, secret=current_app.config["JWT_SECRET"], expires=current_app.config["JWT_EXPIRES"])
    _attempts()[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    current_app.logger.info("Login user=%s role=%s", user.user_id, user.role)
    return jsonify({"token": token, "user": public_user(user)})


@bp.get("/me")
def me():
    # Unlike require_auth, a deleted account is reported as user=null.
    token = bearer_token(request.headers.get("Authorization"))
    if not token:
        return jsonify({"error": "Missing token"}), 401
    try:
        claims = decode_token(token, secret=current_app.config["JWT_SECRET"])
    except TokenError:
        return jsonify({"error": "Invalid token"}), 401
    user = db_session().get(User, claims["id"])
    if user is None:
        return jsonify({"user": None})
    if not user.is_active:
        return jsonify({"error": "Invalid token"}), 401
    return jsonify({"user": public_user(user)})
