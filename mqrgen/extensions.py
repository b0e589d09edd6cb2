# mqrgen/extensions.py

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS

db = SQLAlchemy()
cors = CORS()


def init_store(app):
    """Build the storage backend named by STORAGE_BACKEND and attach it to the app."""
    backend = app.config.get("STORAGE_BACKEND", "sql")
    retries = app.config.get("CONFLICT_RETRIES", 8)

    if backend == "sql":
        from .repositories.sql import SqlStore

        db.init_app(app)
        with app.app_context():
            db.create_all()
        store = SqlStore(conflict_retries=retries)
    elif backend == "memory":
        from .repositories.memory import MemoryStore

        store = MemoryStore(conflict_retries=retries)
    else:
        raise RuntimeError(f"Unknown STORAGE_BACKEND: {backend!r}")

    app.extensions["mqrgen.store"] = store
    app.logger.info("Storage backend: %s", store.backend)
    return store


def init_gateway(app):
    from .services.gateway import build_gateway

    gateway = build_gateway(app.config)
    app.extensions["mqrgen.gateway"] = gateway
    app.logger.info("Payment gateway: %s", gateway.name)
    return gateway


def get_store():
    return current_app.extensions["mqrgen.store"]


def get_gateway():
    return current_app.extensions["mqrgen.gateway"]


def get_renderer():
    return current_app.extensions["mqrgen.renderer"]
