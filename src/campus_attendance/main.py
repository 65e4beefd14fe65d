from __future__ import annotations

import importlib
import logging
from typing import Optional

import click
from dotenv import load_dotenv
from flask import Flask

from .api.controller import register as register_attendance
from .common.logging_utils import configure_logging
from .config import get_settings_module
from .container import Container, build_container
from .database.bootstrap import apply_schema, list_tables

logger = logging.getLogger(__name__)


def register_commands(app: Flask, container: Container) -> None:
    @app.cli.command("init-db")
    def init_db():
        """Apply schema.sql to the configured database."""
        db_config = dict(app.config["DB_CONFIG"])
        apply_schema(db_config)
        tables = list_tables(db_config)
        click.echo(
            f"Applied schema.sql -> {db_config.get('user')}@{db_config.get('host')}:"
            f"{db_config.get('port', 3306)}/{db_config.get('database')} (tables={len(tables)})"
        )

    @app.cli.command("close-expired-sessions")
    def close_expired_sessions():
        """Close every ACTIVE session whose check-in window has passed."""
        closed = container.session_service.close_expired()
        click.echo(f"Closed {closed} expired session(s).")


def create_app(container: Optional[Container] = None) -> Flask:
    """App factory. Tests pass a prebuilt (in-memory) container."""

    load_dotenv(override=False)
    app = Flask(__name__)

    settings_module = get_settings_module()
    settings = importlib.import_module(settings_module)
    app.secret_key = getattr(settings, "SECRET_KEY")
    app.config["DEBUG"] = bool(getattr(settings, "DEBUG", False))
    app.config["TESTING"] = bool(getattr(settings, "TESTING", False))
    app.config["DB_CONFIG"] = dict(getattr(settings, "DB_CONFIG"))
    configure_logging(getattr(settings, "LOG_LEVEL", "INFO"))

    if container is None:
        db_config = app.config["DB_CONFIG"]
        logger.info(
            "settings=%s db=%s@%s:%s/%s",
            settings_module,
            db_config.get("user"),
            db_config.get("host"),
            db_config.get("port", 3306),
            db_config.get("database"),
        )
        if bool(getattr(settings, "AUTO_INIT_DB", False)):
            apply_schema(db_config)
            logger.info("schema ready (tables=%d)", len(list_tables(db_config)))

        container = build_container(
            db_config=db_config,
            qr_ttl_seconds=int(getattr(settings, "QR_TOKEN_TTL_SECONDS")),
            late_after_seconds=getattr(settings, "LATE_AFTER_SECONDS", None),
        )

    app.extensions["campus_attendance"] = container
    register_attendance(app, container)
    register_commands(app, container)
    return app
