# -*- coding: utf-8 -*-
import os
from typing import Any, Dict, Optional

from flask import Flask

from starfall.config import Config
from starfall.database import db

# Observability imports
from starfall.services.metrics import init_metrics
from starfall.services.request_context import init_request_context
from starfall.services.structured_logging import init_logging


def _normalize_db_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://") and "+psycopg://" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _database_url() -> str:
    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        db_path = os.path.join(os.path.dirname(__file__), "..", "instance", "starfall.db")
        os.makedirs(os.path.dirname(db_path), exist_ok=True)
        return f"sqlite:///{os.path.abspath(db_path)}"
    return _normalize_db_url(db_url)


def _migrate_db(app):
    """Run Alembic migrations to head using the app's DB URL."""
    from pathlib import Path

    from alembic import command
    from alembic.config import Config as AlembicConfig

    BASE_DIR = Path(__file__).resolve().parent.parent
    cfg = AlembicConfig()  # in-memory config, avoid alembic.ini dependency
    cfg.set_main_option("script_location", str(BASE_DIR / "migrations"))
    cfg.set_main_option("sqlalchemy.url", app.config["SQLALCHEMY_DATABASE_URI"])

    try:
        command.upgrade(cfg, "head")
        app.logger.info("Database migrations applied successfully")
    except Exception as e:
        app.logger.error(f"Migration failed: {e}")
        raise


def create_app(test_config: Optional[Dict[str, Any]] = None, **service_overrides) -> Flask:
    """
    Build the coordinator app.

    test_config is applied on top of Config; service_overrides (notifier,
    invoice_provider, delivery_provider) replace the services built from
    config.
    """
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    # --- Core config ---
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # --- DB config ---
    app.config.setdefault("SQLALCHEMY_DATABASE_URI", _database_url())
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("postgresql"):
        app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {
            "pool_pre_ping": True,
            "pool_recycle": 300,
        })
    db.init_app(app)

    # --- Initialize observability ---
    init_logging(app)
    init_request_context(app)
    init_metrics(app)

    from starfall.middleware.errors import register_error_handlers
    register_error_handlers(app)

    # --- Services ---
    from starfall.services.container import init_services
    init_services(app, **service_overrides)

    # --- Mount blueprints ---
    from starfall.routes import health, telegram, webhooks
    app.register_blueprint(health.health_bp)
    app.register_blueprint(webhooks.webhooks_bp)
    app.register_blueprint(telegram.telegram_bp)

    # --- DB init ---
    with app.app_context():
        import starfall.models  # noqa: F401  registers tables on db.metadata

        if app.config.get("RUN_MIGRATIONS") and not app.config.get("TESTING"):
            _migrate_db(app)
        else:
            db.create_all()

    return app
