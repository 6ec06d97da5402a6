# backend/bookstack/__init__.py
from __future__ import annotations

import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None, **collaborator_overrides) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before init_app: the engine is built from config there
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .collaborators import init_collaborators
    init_collaborators(app, **collaborator_overrides)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp, addresses_bp
    from .routes.orders import orders_bp
    from .routes.readlist import readlist_bp
    from .routes.titles import titles_bp
    from .routes.borrows import borrows_bp
    from .routes.notifications import notifications_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(addresses_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(readlist_bp)
    app.register_blueprint(titles_bp)
    app.register_blueprint(borrows_bp)
    app.register_blueprint(notifications_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config["EXPIRY_SWEEP_ENABLED"]:
        from .scheduler import start_expiry_scheduler
        start_expiry_scheduler(app)

    return app
