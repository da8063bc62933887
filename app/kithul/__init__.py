import logging
import os
import re

from dotenv import load_dotenv
from flask import Flask, g, jsonify
from flask_cors import CORS
from sqlalchemy.exc import IntegrityError

from app.kithul.config import load_config
from app.kithul.db import init_db, teardown_db_session
from app.kithul.errors import ApiError
from app.kithul.routes import bp as routes_bp, register_spa
from app.kithul.auth import assign_request_id, bp as auth_bp
from app.kithul.modules.admin.routes import bp as admin_bp
from app.kithul.modules.profile.routes import bp as profile_bp
from app.kithul.modules.field_collection.routes import bp as field_collection_bp
from app.kithul.modules.processing.routes import bp as processing_bp
from app.kithul.modules.packaging.routes import bp as packaging_bp
from app.kithul.modules.labeling.routes import bp as labeling_bp
from app.kithul.modules.reports.routes import bp as reports_bp

# Loopback and private-LAN browsers (desktop shell, tablets on the shop Wi-Fi).
_LOCAL_ORIGINS = [
    re.compile(r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$"),
    re.compile(r"^https?://(10\.\d{1,3}\.\d{1,3}\.\d{1,3}|192\.168\.\d{1,3}\.\d{1,3}|172\.(1[6-9]|2\d|3[01])\.\d{1,3}\.\d{1,3})(:\d+)?$"),
]


def _check_production_config(app: Flask) -> None:
    env = (app.config.get("ENV") or "").strip().lower()
    if env not in ("prod", "production"):
        return
    if not os.environ.get("DATABASE_URL"):
        raise RuntimeError("DATABASE_URL is required in production.")
    if str(app.config["DATABASE_URL"]).startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
    if str(app.config.get("SECRET_KEY") or "") in ("", "change-me"):
        raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
    if str(app.config.get("JWT_SECRET") or "") in ("", "change-me"):
        raise RuntimeError("JWT_SECRET must be set to a strong value in production (not default).")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, static_folder=None)
    app.config.from_mapping(load_config())
    app.json.sort_keys = False

    _check_production_config(app)

    os.makedirs(app.config["APP_DATA_DIR"], exist_ok=True)
    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    origins = [app.config["CLIENT_ORIGIN"], *_LOCAL_ORIGINS]
    CORS(
        app,
        resources={r"/api/*": {"origins": origins}, r"/uploads/*": {"origins": origins}},
        supports_credentials=True,
    )

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(profile_bp, url_prefix="/api/profile")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(field_collection_bp, url_prefix="/api/field-collection")
    app.register_blueprint(processing_bp, url_prefix="/api/processing")
    app.register_blueprint(packaging_bp, url_prefix="/api/packaging")
    app.register_blueprint(labeling_bp, url_prefix="/api/labeling")
    app.register_blueprint(reports_bp, url_prefix="/api/reports")
    if app.config.get("STATIC_DIR"):
        register_spa(app)

    app.before_request(assign_request_id)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):  # type: ignore[no-redef]
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(IntegrityError)
    def _integrity_error(e: IntegrityError):  # type: ignore[no-redef]
        # Unique constraints raced past the service-level checks.
        app.logger.warning("Integrity error (request_id=%s): %s", getattr(g, "request_id", None), e.orig)
        return jsonify({"error": "Conflicting record already exists"}), 409

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"error": "Not Found"}), 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return jsonify({"error": "Method Not Allowed"}), 405

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify({"error": "Image must be smaller than 5MB"}), 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.error(
            "Unhandled 500 (request_id=%s)",
            getattr(g, "request_id", None),
            exc_info=getattr(e, "original_exception", None) or e,
        )
        return jsonify({"error": "Server error"}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
