"""
Solar Operations Backend
Flask Application Factory.

Usage:
    from solarops import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, jsonify, request

from solarops.config import config
from solarops.models import db
from solarops.middleware.logging_config import configure_logging
from solarops.middleware.timing import init_request_timing
from solarops.middleware.jwt_auth import init_jwt_middleware

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiating runs the production env checks.
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)

    # ── Request timing & caller identity ─────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    @app.before_request
    def _guard_request():
        from flask import abort
        # Content-Type validation for mutating methods
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if "json" not in ct and "multipart/form-data" not in ct and request.data:
                abort(415, description="Content-Type must be application/json or multipart/form-data")

    # ── Import all models so create_all sees them ────────────────────────
    from solarops.models import auth as _auth_models                  # noqa: F401
    from solarops.models import report as _report_models              # noqa: F401
    from solarops.models import notification as _notification_models  # noqa: F401
    from solarops.models import purchase as _purchase_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
        if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
            os.makedirs(app.instance_path, exist_ok=True)
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from solarops.blueprints.report_bp import report_bp
    from solarops.blueprints.notification_bp import notification_bp
    from solarops.blueprints.purchase_bp import purchase_bp

    app.register_blueprint(report_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(purchase_bp)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        try:
            db.session.execute(db.text("SELECT 1"))
            database = "ok"
        except Exception as exc:
            logger.error("Health check — database failed: %s", exc)
            database = "error"
        status = 200 if database == "ok" else 503
        return jsonify({"status": "ok" if status == 200 else "degraded", "database": database}), status

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found", "path": request.path}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({"error": "Request body too large"}), 413

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return jsonify({"error": e.description}), 415

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    return app
