import mimetypes
from pathlib import Path

from flask import Blueprint, abort, current_app, jsonify, send_file, send_from_directory
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.kithul.db import db_session
from app.kithul.storage import StorageError, storage_from_config
from app.kithul.utils import iso, utcnow

bp = Blueprint("routes", __name__)


@bp.get("/api/health")
def health():
    """Liveness probe. No DB access."""
    return jsonify({"ok": True, "service": "kithul-flow-ops", "time": iso(utcnow())})


@bp.get("/api/db-ping")
def db_ping():
    try:
        db_session().execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        current_app.logger.error("db-ping failed: %s", e)
        return jsonify({"ok": False, "error": str(e.__class__.__name__)}), 500
    return jsonify({"ok": True})


@bp.get("/uploads/<path:key>")
def uploads(key: str):
    storage = storage_from_config(current_app.config)
    try:
        if not storage.exists(key):
            abort(404)
        fh = storage.open(key)
    except StorageError:
        abort(404)
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(fh, mimetype=mimetype, max_age=3600)


def register_spa(app) -> None:
    """Serve the built client (desktop shell) with index.html as the fallback for client routes."""
    root = Path(app.config["STATIC_DIR"])

    def spa(path: str = ""):
        if path.startswith(("api/", "uploads/")):
            abort(404)
        if path and (root / path).is_file():
            return send_from_directory(root, path)
        if (root / "index.html").is_file():
            return send_from_directory(root, "index.html")
        abort(404)

    app.add_url_rule("/", "spa_index", spa, methods=["GET"])
    app.add_url_rule("/<path:path>", "spa", spa, methods=["GET"])
