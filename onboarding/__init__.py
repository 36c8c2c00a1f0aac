# onboarding/__init__.py
from __future__ import annotations

import logging

from flask import Flask, jsonify

from .exceptions import TransitionError
from .extensions import db, limiter, login_manager, migrate
from .settings import Config


def create_app(config_object=None, *, clock=None, mailer=None) -> Flask:
    """
    Application factory.

    ``clock`` and ``mailer`` replace the wall clock and the SMTP sender;
    tests pass a FixedClock and a MemoryEmailSender.
    """
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("onboarding").setLevel(level)

    # ======================
    # Extensions
    # ======================
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # Tables must be on db.metadata before create_all / Alembic autogenerate.
    from . import models  # noqa: F401
    from .services import audit  # noqa: F401  (append-only listeners)

    from .services.registry import init_services

    init_services(app, clock=clock, mailer=mailer)

    # ======================
    # Blueprints (all under /api)
    # ======================
    from .admin import admin_bp
    from .auth import auth
    from .public import public
    from .routes import main

    for blueprint in (main, auth, admin_bp, public):
        app.register_blueprint(blueprint)

    _register_error_handlers(app)
    return app


def _register_error_handlers(app: Flask) -> None:
    """Every error leaves the API as JSON, never as an HTML page."""

    @app.errorhandler(TransitionError)
    def transition_rejected(e: TransitionError):
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "Access denied.", "reason": "FORBIDDEN_ROLE"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found.", "reason": "NOT_FOUND"}), 404

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({"error": "Upload too large."}), 413

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests. Try again later."}), 429
