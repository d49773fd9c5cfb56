"""
CrewFlow
Flask Application Factory.

Usage:
    from crewflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate

from crewflow.config import config
from crewflow.models import db
from crewflow.middleware.logging_config import configure_logging
from crewflow.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement + real SAVEPOINTs (global engine events) ───────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        # pysqlite's own BEGIN handling breaks SAVEPOINT; SQLAlchemy emits BEGIN below
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@_sa_event.listens_for(_sa_engine.Engine, "begin")
def _sqlite_begin(conn):
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")


migrate = Migrate()


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
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from crewflow.models import matrix as _matrix_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ──
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in \
            app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from crewflow.blueprints.health_bp import health_bp
    from crewflow.blueprints.matrix_bp import matrix_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(matrix_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    _register_cli(app)

    # ── Health check (short form, detailed version at /health/live) ────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "CrewFlow"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    return app


def _register_cli(app):
    @app.cli.command("matrix-export")
    @click.argument("contract_id", type=int)
    @click.argument("output", type=click.Path(dir_okay=False, writable=True))
    def matrix_export_cmd(contract_id, output):
        """Write the training matrix workbook of CONTRACT_ID to OUTPUT."""
        from crewflow.services.matrix_sync_service import export_matrix

        content, filename = export_matrix(contract_id)
        with open(output, "wb") as fh:
            fh.write(content)
        click.echo(f"Exported {filename} -> {output}")

    @app.cli.command("matrix-import")
    @click.argument("contract_id", type=int)
    @click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
    @click.option("--report", "report_path", type=click.Path(dir_okay=False, writable=True),
                  help="Save the change report workbook here.")
    @click.option("--policy", type=click.Choice(["delete", "reject"]), default=None,
                  help="Override MATRIX_ORPHAN_COLUMN_POLICY for this run.")
    def matrix_import_cmd(contract_id, input_path, report_path, policy):
        """Apply an edited matrix workbook INPUT to CONTRACT_ID."""
        from crewflow.core.exceptions import NotFoundError, ValidationError
        from crewflow.services.matrix_sync_service import get_import_report, import_matrix

        with open(input_path, "rb") as fh:
            content = fh.read()
        try:
            outcome = import_matrix(
                contract_id, content, filename=os.path.basename(input_path), orphan_column_policy=policy,
            )
        except (NotFoundError, ValidationError) as exc:
            raise click.ClickException(str(exc)) from exc

        click.echo(outcome["message"])
        click.echo(json.dumps(outcome["stats"], indent=2))
        for err in outcome["errors"]:
            click.echo(f"  error: {err}", err=True)
        if report_path:
            report, _ = get_import_report(outcome["import_id"])
            with open(report_path, "wb") as fh:
                fh.write(report)
            click.echo(f"Report saved to {report_path}")

    @app.cli.command("matrix-check")
    @click.argument("contract_id", type=int)
    def matrix_check_cmd(contract_id):
        """Check the placeholder invariant of CONTRACT_ID."""
        from crewflow.core.exceptions import NotFoundError
        from crewflow.services.catalog_service import get_contract
        from crewflow.services.matrix_repository import check_placeholder_invariant

        try:
            get_contract(contract_id)
        except NotFoundError as exc:
            raise click.ClickException(str(exc)) from exc
        violations = check_placeholder_invariant(contract_id)
        if not violations:
            click.echo("OK: placeholder invariant holds")
            return
        for v in violations:
            click.echo(f"function {v['function_id']}: {v['issue']} "
                       f"(real={v['real_entries']}, placeholders={v['placeholders']})")
        raise SystemExit(1)
