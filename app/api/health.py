"""Health check endpoints."""
import logging

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

bp = Blueprint("health", __name__)

logger = logging.getLogger(__name__)


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Readiness: queue store reachable, dispatcher running when enabled."""
    cfg = current_app.config["APP_CONFIG"]
    store = current_app.config["QUEUE_STORE"]
    dispatcher = current_app.config["DISPATCHER"]

    checks = {"store": "ok", "dispatcher": "disabled"}
    ready = True

    try:
        store.ping()
    except SQLAlchemyError as exc:
        logger.warning("Readiness check: queue store unreachable: %s", exc)
        checks["store"] = "unavailable"
        ready = False

    if cfg.dispatcher_enabled:
        if dispatcher.is_running:
            checks["dispatcher"] = "running"
        else:
            checks["dispatcher"] = "stopped"
            ready = False

    body = {"status": "ready" if ready else "not ready", "checks": checks}
    return jsonify(body), 200 if ready else 503
