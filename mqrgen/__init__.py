# mqrgen/__init__.py

import logging

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from mqrgen.config import Config, require_settings
from mqrgen.extensions import cors, init_gateway, init_store
from mqrgen.utils.error_handler import register_error_handlers
from mqrgen.utils.qr_generator import generate_styled_qr
from mqrgen.routes.admin_routes import admin_bp
from mqrgen.routes.api_routes import api_bp
from mqrgen.routes.auth_routes import auth_bp
from mqrgen.routes.core_routes import core_bp
from mqrgen.routes.payment_routes import payment_bp
from mqrgen.routes.qr_routes import qr_bp
from mqrgen.routes.subscription_routes import subscription_bp
from mqrgen.routes.webhook_routes import webhook_bp


def _configure_logging(app: Flask) -> None:
    level = app.config.get("LOG_LEVEL", "INFO")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logging.getLogger("mqrgen").setLevel(level)
    app.logger.setLevel(level)


def create_app(config_object=None, **overrides) -> Flask:
    app = Flask(__name__, static_folder="../static", static_url_path="/static")

    # Load configuration
    app.config.from_object(config_object or Config)
    app.config.update(overrides)
    require_settings(app.config, app.config.get("REQUIRED_SETTINGS", ()))
    _configure_logging(app)

    # Initialize extensions
    cors.init_app(app, origins=app.config.get("CORS_ORIGINS", "*"))
    init_store(app)
    init_gateway(app)
    app.extensions["mqrgen.renderer"] = generate_styled_qr

    # Fix proxy headers
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)

    register_error_handlers(app)

    # Register blueprints
    app.register_blueprint(core_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(qr_bp, url_prefix="/qr")
    app.register_blueprint(api_bp, url_prefix="/api/v1")
    app.register_blueprint(payment_bp, url_prefix="/payments")
    app.register_blueprint(webhook_bp, url_prefix="/payments")
    app.register_blueprint(subscription_bp, url_prefix="/subscription")
    app.register_blueprint(admin_bp, url_prefix="/admin")

    return app
