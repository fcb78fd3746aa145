"""
MAAP Snapshot Platform
Flask Application Factory.

Usage:
    from maap import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os
import uuid

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from maap.config import get_config
from maap.models import db
from maap.middleware.logging_config import configure_logging
from maap.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; bulk finalize is limited per route
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


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
    app.config.from_object(get_config(config_name))

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        from flask import request as _req, abort
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and _req.content_length and _req.content_length > max_len:
            abort(413, description="Request body too large")
        if _req.method in ("POST", "PUT", "PATCH") and _req.path.startswith("/api/"):
            ct = _req.content_type or ""
            if _req.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from maap.models import organization as _organization_models  # noqa: F401
    from maap.models import assignment as _assignment_models      # noqa: F401
    from maap.models import ability as _ability_models            # noqa: F401
    from maap.models import maap_snapshot as _maap_snapshot_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS; migrations own changes) ─
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from maap.blueprints import ALL_BLUEPRINTS

    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("maap-finalize")
    @click.option("--employee-id", "employee_ids", type=int, multiple=True,
                  help="Employee to capture and finalize (repeatable).")
    @click.option("--snapshot-id", "snapshot_ids", type=int, multiple=True,
                  help="Existing snapshot to finalize (repeatable).")
    @click.option("--created-by", type=int, default=None, help="Employee id recorded as finalizer.")
    @click.option("--reason", default=None, help="Audit reason (required with --employee-id).")
    @click.option("--change-type", default="bulk_check_in_finalization", show_default=True)
    @click.option("--workers", type=int, default=None, help="Override MAAP_BULK_MAX_WORKERS.")
    def maap_finalize_cmd(employee_ids, snapshot_ids, created_by, reason, change_type, workers):
        """Finalize check-ins for many employees, one transaction each."""
        from maap.services import bulk_finalization_service as bulk

        if bool(employee_ids) == bool(snapshot_ids):
            raise click.UsageError("Give either --employee-id or --snapshot-id, not both or neither.")
        batch_id = uuid.uuid4().hex[:12]
        if snapshot_ids:
            results = bulk.run_batch(list(snapshot_ids), max_workers=workers, batch_id=batch_id)
        else:
            if not (reason or "").strip():
                raise click.UsageError("--reason is required with --employee-id.")
            results = bulk.finalize_employees(
                list(employee_ids), created_by, reason,
                change_type=change_type, max_workers=workers, batch_id=batch_id,
            )
        summary = bulk.summarize(results, batch_id=batch_id)
        click.echo(json.dumps(summary, indent=2, default=str))
        logger.info("maap-finalize: %d succeeded, %d failed", summary["succeeded"], summary["failed"])
        if summary["failed"]:
            raise SystemExit(1)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "MAAP Snapshot Platform"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    return app
