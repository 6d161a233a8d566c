from __future__ import annotations

import os

import click
from flask import Flask
from flask_session import Session
from werkzeug.exceptions import HTTPException

from .config import Config
from .db import init_db
from .db_bootstrap import ensure_database_exists
from .errors import ServiceError, error_payload
from .logging_setup import configure_logging
from .auth.machine import get_auth_service
from .auth.routes import auth_bp
from .tasks.routes import tasks_bp
from .tasks.sweeper import TaskSweeper


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    if app.config.get("AUTO_CREATE_DB", False):
        ensure_database_exists(app.config["DATABASE_URL"])

    if app.config.get("SESSION_TYPE") == "filesystem":
        session_dir = app.config.get("SESSION_FILE_DIR")
        if session_dir:
            os.makedirs(session_dir, exist_ok=True)

    Session(app)
    init_db(app)

    if app.config.get("EMAIL_BACKEND") == "memory":
        app.extensions["email_outbox"] = []

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(tasks_bp, url_prefix="/tasks")
    _register_error_handlers(app)

    sweeper = TaskSweeper(
        app.extensions["db_sessionmaker"],
        interval_seconds=app.config["SWEEP_INTERVAL_SECONDS"],
    )
    app.extensions["task_sweeper"] = sweeper
    if app.config.get("SWEEPER_ENABLED", False):
        sweeper.start()

    @app.get("/health")
    def health_check():
        return {"ok": True, "sweeper": sweeper.running}

    @app.cli.command("sweep-tasks")
    def sweep_tasks_command():
        """Remove completed tasks whose grace period has passed."""
        removed = sweeper.run_once()
        click.echo(f"removed {removed} expired tasks")

    @app.cli.command("purge-codes")
    def purge_codes_command():
        """Delete pending codes that expired without being used."""
        purged = get_auth_service().purge_expired_codes()
        click.echo(f"purged {purged} expired codes")

    return app


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ServiceError)
    def handle_service_error(err: ServiceError):
        return error_payload(err)

    @app.errorhandler(Exception)
    def handle_unexpected(err: Exception):
        if isinstance(err, HTTPException):
            return err
        app.logger.exception("Unhandled error")
        payload = {"ok": False, "error": "internal server error"}
        if app.debug:
            payload["detail"] = str(err)
        return payload, 500
