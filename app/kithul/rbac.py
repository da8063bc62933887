from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g, jsonify, request

from app.kithul.db import db_session
from app.kithul.models import User
from app.kithul.security import TokenError, bearer_token, decode_token


def _authenticate():
    """Resolve the bearer token into g.current_user; returns an error response or None."""
    token = bearer_token(request.headers.get("Authorization"))
    if not token:
        return jsonify({"error": "Missing token"}), 401
    try:
        claims = decode_token(token, secret=current_app.config["JWT_SECRET"])
    except TokenError as e:
        current_app.logger.info("Rejected token (request_id=%s): %s", getattr(g, "request_id", None), e)
        return jsonify({"error": "Invalid token"}), 401
    user = db_session().get(User, claims["id"])
    if not user or not user.is_active:
        return jsonify({"error": "Invalid token"}), 401
    g.auth = claims
    g.current_user = user
    return None


def require_auth(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        err = _authenticate()
        if err is not None:
            return err
        return fn(*args, **kwargs)

    return wrapped


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    allowed = set(roles)

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            err = _authenticate()
            if err is not None:
                return err
            user: User = g.current_user
            if user.role not in allowed:
                current_app.logger.warning(
                    "Forbidden: user=%s role=%s endpoint=%s request_id=%s",
                    user.user_id,
                    user.role,
                    request.endpoint,
                    getattr(g, "request_id", None),
                )
                return jsonify({"error": "Forbidden"}), 403
            return fn(*args, **kwargs)

        return wrapped

    return decorator
