"""
Approval Workflow Service — application factory.

    from app import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event
from sqlalchemy.engine import Engine

from app.config import config
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.tenant_context import init_tenant_context
from app.middleware.timing import init_request_timing
from app.models import db
from app.services.approval_roles import roles_from_config
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(key_func=get_remote_address, default_limits=[])

_JSON_METHODS = ("POST", "PUT", "PATCH")


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, _record):
    # RESTRICT / CASCADE on approval FKs only hold in SQLite with this pragma
    if type(dbapi_conn).__module__.startswith("sqlite3"):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """Build a configured app.

    Raises:
        RuntimeError: production config without DATABASE_URL / SECRET_KEY.
        ValueError: APPROVAL_ROLES or LOG_FORMAT hold an unknown value.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    configure_logging(app)
    app.config["APPROVAL_ROLES"] = [r.value for r in roles_from_config(app.config["APPROVAL_ROLES"])]

    _init_extensions(app)
    init_request_timing(app)
    init_tenant_context(app)
    _install_json_guard(app)

    from app.models import approval, auth  # noqa: F401  (register tables)

    if config_name != "production":
        with app.app_context():
            db.create_all()

    from app.blueprints.approval_bp import approval_bp
    from app.blueprints.health_bp import health_bp

    app.register_blueprint(approval_bp)
    app.register_blueprint(health_bp)
    init_rate_limits(app, limiter)

    _register_cli(app)
    _register_error_handlers(app)
    return app


def _init_extensions(app):
    uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        os.makedirs(os.path.dirname(uri[len("sqlite:///"):]) or ".", exist_ok=True)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins == "*":
        CORS(app, expose_headers=["X-Request-ID"])
    elif origins:
        CORS(
            app,
            origins=[o.strip() for o in origins.split(",") if o.strip()],
            expose_headers=["X-Request-ID"],
        )


def _install_json_guard(app):
    @app.before_request
    def _require_json_body():
        if request.method not in _JSON_METHODS or not request.path.startswith("/api/"):
            return None
        if request.get_data(cache=True) and not request.is_json:
            return api_error(E.UNSUPPORTED_MEDIA_TYPE, "Content-Type must be application/json")
        return None


def _register_cli(app):
    @app.cli.command("seed-approval-samples")
    @click.option("--tenant-id", type=int, required=True, help="Tenant to seed")
    def seed_approval_samples(tenant_id):
        """Create the sample approval routes and their default templates."""
        from app.models.auth import Tenant
        from app.services.approval_service import seed_samples

        if db.session.get(Tenant, tenant_id) is None:
            raise click.ClickException(f"Tenant {tenant_id} not found")
        result = seed_samples(tenant_id)
        for name in result["created"]:
            click.echo(f"  + {name}")
        for name in result["skipped"]:
            click.echo(f"  = {name} (exists)")
        click.echo(f"Created {len(result['created'])} route(s), skipped {len(result['skipped'])}.")


def _register_error_handlers(app):
    @app.errorhandler(404)
    def _not_found(_e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(_e):
        return api_error(E.METHOD_NOT_ALLOWED, f"{request.method} not allowed on {request.path}")

    @app.errorhandler(413)
    def _too_large(_e):
        limit = app.config.get("MAX_CONTENT_LENGTH")
        return api_error(E.PAYLOAD_TOO_LARGE, "Request body too large", details={"max_bytes": limit})

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.RATE_LIMITED, f"Too many requests: {e.description}")

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("Unhandled error on %s %s", request.method, request.path, exc_info=e)
        return api_error(E.INTERNAL, "Internal server error")
