"""
Workgraph: hierarchy and dependency graph engine.
Flask Application Factory.

Usage:
    from workgraph import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_migrate import Migrate

from workgraph.config import config
from workgraph.models import db
from workgraph.middleware.logging_config import configure_logging

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
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    # ── Import all models so Alembic can detect them ─────────────────────
    from workgraph.models import workstream as _workstream_models    # noqa: F401
    from workgraph.models import release as _release_models          # noqa: F401
    from workgraph.models import dependency as _dependency_models    # noqa: F401

    if app.config.get("AUTO_CREATE_TABLES"):
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("show-tree")
    @click.argument("workstream_id", type=int, required=False)
    def show_tree_cmd(workstream_id):
        """Print the workstream hierarchy (all roots when no id is given)."""
        from workgraph.services import hierarchy_service

        if workstream_id is None:
            roots = [ws.id for ws in hierarchy_service.list_roots()]
        else:
            roots = [workstream_id]
        for root_id in roots:
            for line in hierarchy_service.render_tree(root_id):
                click.echo(line)

    @app.cli.command("cache-health")
    def cache_health_cmd():
        """Report the cache backend in use."""
        from workgraph.services.cache_service import health_check
        click.echo(health_check())

    return app
