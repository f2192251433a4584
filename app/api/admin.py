"""Admin endpoints for operating the provisioning queue.

Routes (mounted under /admin):
    POST /flush              - request an immediate dispatch cycle
    GET  /records            - list queue records (?status=&limit=)
    GET  /records/<id>       - one record's current state

Same shared-secret authentication as the SCIM intake.
"""
from __future__ import annotations
import logging

from flask import Blueprint, current_app, g, jsonify, request

from app.api.decorators import authenticate_request
from app.core.provisioning_service import ScimError

bp = Blueprint("admin", __name__)

DEFAULT_LIST_LIMIT = 100

logger = logging.getLogger(__name__)


def _service():
    return current_app.config["PROVISIONING_SERVICE"]


@bp.before_request
def require_auth():
    authenticate_request()


@bp.route("/flush", methods=["POST"])
def flush():
    """Manual flush trigger; coalesces with any pending flush request."""
    logger.info("Manual flush requested via admin API (correlation_id=%s)", g.get("correlation_id"))
    accepted = _service().request_flush()
    return jsonify({"flushRequested": accepted}), 202


@bp.route("/records", methods=["GET"])
def list_records():
    raw_limit = request.args.get("limit", str(DEFAULT_LIST_LIMIT))
    try:
        limit = int(raw_limit)
    except ValueError:
        raise ScimError(400, "limit must be an integer", "invalidValue") from None

    records = _service().list_records(status=request.args.get("status"), limit=limit)
    return jsonify({
        "totalResults": len(records),
        "Resources": [record.to_dict() for record in records],
    }), 200


@bp.route("/records/<record_id>", methods=["GET"])
def get_record(record_id: str):
    record = _service().get_record(record_id)
    return jsonify(record.to_dict()), 200
