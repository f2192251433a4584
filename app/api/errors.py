"""Error handlers for the application.

Every response is JSON: SCIM clients get SCIM error bodies (RFC 7644
§3.12), everything else a plain ``{"error", "message"}`` object.
"""
import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app.core.provisioning_service import ScimError

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(ScimError)
    def handle_scim_error(error: ScimError):
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(SQLAlchemyError)
    def handle_store_error(error):
        """Queue store unavailable: the change was not accepted."""
        logger.error("Queue store error on %s %s: %s", request.method, request.path, error, exc_info=True)
        return _error_response(503, "Service Unavailable", "Provisioning queue is unavailable")

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return _error_response(error.code or 500, error.name, error.description or error.name)

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # ALWAYS log the error (even in production) - logs are secure
        logger.error("Unhandled exception on %s %s: %s", request.method, request.path, error, exc_info=True)
        return _error_response(500, "Internal Server Error", "An unexpected error occurred")


def _error_response(status: int, title: str, message: str):
    if _is_scim_request():
        return jsonify(ScimError(status, message).to_dict()), status
    return jsonify({"error": title, "message": message}), status


def _is_scim_request() -> bool:
    # SCIM endpoints always return SCIM error bodies (RFC 7644)
    return request.path.startswith("/scim/v2")
