# kingrent/__init__.py
from __future__ import annotations

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .settings import Config
from .extensions import db, migrate, login_manager, limiter


def create_app(config_object=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    # ======================
    # Initialize Extensions
    # ======================
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # ======================
    # Import Models (CRITICAL)
    # ======================
    from . import models  # noqa: F401

    # ======================
    # Register Blueprints
    # ======================
    from .routes import main
    from .auth import auth
    from .admin import admin_bp
    from .messaging import chat_bp
    from .public import public

    app.register_blueprint(main)
    app.register_blueprint(auth)
    app.register_blueprint(admin_bp)
    app.register_blueprint(chat_bp)
    app.register_blueprint(public)

    # ======================
    # CLI (flask send-payment-reminders, flask create-admin)
    # ======================
    from .cli import register_commands

    register_commands(app)

    # ======================
    # JSON error handlers
    # ======================
    @app.errorhandler(429)
    def ratelimit_handler(e):
        return jsonify({"error": "Too many requests. Please try again later."}), 429

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({"error": "File too large"}), 413

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def unhandled_error(e):
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500

    return app
