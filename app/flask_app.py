"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with the provisioning store, the background
dispatcher, all blueprints, middleware, and configuration.

Gunicorn entry point: ``app.flask_app:create_app()``
"""
from __future__ import annotations
import atexit
import logging
import uuid
from typing import Optional

from flask import Flask, g, request

from app.config import AppConfig, load_settings
from app.core import audit
from app.core.dispatcher import BulkTransport, ProvisioningDispatcher
from app.core.graph import GraphBulkClient
from app.core.provisioning_service import ProvisioningService
from app.core.queue_store import QueueStore

CORRELATION_HEADERS = ("x-ms-correlation-id", "X-Correlation-Id")


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(
    config: Optional[AppConfig] = None,
    *,
    store: Optional[QueueStore] = None,
    transport: Optional[BulkTransport] = None,
) -> Flask:
    """Create and configure Flask application.

    Args:
        config: Settings (defaults to load_settings())
        store: Pre-built queue store (defaults to one on config.database_url)
        transport: Bulk transport (defaults to a GraphBulkClient)
    """
    # Load configuration
    cfg = config or load_settings()
    configure_logging(cfg.log_level)

    # Create Flask app
    app = Flask(__name__)

    # Store config for easy access in routes
    app.config["APP_CONFIG"] = cfg

    # Persistence
    if store is None:
        store = QueueStore(cfg.database_url)
    store.create_all()

    # Outbound transport with one audit row per bulk upload attempt
    if transport is None:
        transport = GraphBulkClient(
            cfg.graph,
            on_response=lambda url, status, body: audit.safe_record(
                store, audit.outbound_entry(url, status, body)
            ),
        )

    dispatcher = ProvisioningDispatcher(store, transport, cfg.batch)
    service = ProvisioningService(store, dispatcher)

    app.config["QUEUE_STORE"] = store
    app.config["DISPATCHER"] = dispatcher
    app.config["PROVISIONING_SERVICE"] = service

    # Register blueprints
    from app.api import admin, errors, health, scim

    app.register_blueprint(health.bp)
    app.register_blueprint(admin.bp, url_prefix="/admin")
    app.register_blueprint(scim.bp, url_prefix="/scim/v2")

    # Register error handlers
    errors.register_error_handlers(app)

    # Register middleware/before_request handlers
    _register_middleware(app)

    if cfg.dispatcher_enabled:
        dispatcher.start()
        atexit.register(dispatcher.stop, cfg.batch.flush_seconds * 2)

    # Log startup info
    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    print(f"[flask_app] Mode={mode_label}")
    print("[flask_app] SCIM 2.0 intake registered at /scim/v2")
    print(f"[flask_app] Dispatcher={'running' if dispatcher.is_running else 'disabled'}")

    if cfg.demo_mode:
        print("[flask_app] WARNING: Demo mode active - do not deploy with demo credentials")

    return app


def configure_logging(level: str) -> None:
    """Root logging setup; a no-op for handlers when the host already configured them."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


def _register_middleware(app: Flask):
    """Register before/after request middleware."""

    @app.before_request
    def assign_correlation_id() -> None:
        """Pick up the caller's correlation id or mint a new one."""
        correlation_id = None
        for header in CORRELATION_HEADERS:
            value = request.headers.get(header, "").strip()
            if value:
                correlation_id = value[:128]
                break
        g.correlation_id = correlation_id or str(uuid.uuid4())

    @app.after_request
    def echo_correlation_id(response):
        correlation_id = g.get("correlation_id")
        if correlation_id:
            response.headers["X-Correlation-Id"] = correlation_id
        return response


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000, debug=False)
