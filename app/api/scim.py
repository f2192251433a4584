"""SCIM 2.0 intake endpoints (RFC 7644) for user provisioning.

Requests are never forwarded synchronously: each accepted change becomes
one queued provisioning record and the dispatcher delivers it to Graph in
a later batch. Hence 202 Accepted rather than 201/200.

Architecture:
    SCIM API (/scim/v2/*) -> app/core/provisioning_service.py -> QueueStore
                                            └─ request_flush() -> ProvisioningDispatcher

Security:
    - Shared secret (Authorization: SharedSecret <secret>) on every endpoint
      except discovery (ServiceProviderConfig, Schemas)
    - 64 KB request size limit
    - JSON content type required for payload-bearing methods
"""

from __future__ import annotations
import logging

from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.exceptions import BadRequest

from app.api.decorators import authenticate_request
from app.core.provisioning_service import SCIM_LIST_RESPONSE_SCHEMA, SCIM_USER_SCHEMA, ScimError

# SCIM 2.0 Blueprint
bp = Blueprint('scim', __name__)

# Configuration
JSON_MAX_SIZE_BYTES = 65536  # 64 KB
ACCEPTED_CONTENT_TYPES = ("application/scim+json", "application/json")
DISCOVERY_ENDPOINTS = ("service_provider_config", "schemas")

logger = logging.getLogger(__name__)


def _service():
    return current_app.config["PROVISIONING_SERVICE"]


def _json_body():
    try:
        return request.get_json(force=True)
    except BadRequest:
        raise ScimError(400, "Request body is not valid JSON", "invalidSyntax") from None


# ─────────────────────────────────────────────────────────────────────────────
# Request Validation Middleware
# ─────────────────────────────────────────────────────────────────────────────

@bp.before_request
def validate_request():
    """Validate shared secret, request size, and content type."""
    endpoint = (request.endpoint or "").rsplit(".", 1)[-1]
    if endpoint in DISCOVERY_ENDPOINTS:
        return None

    authenticate_request()

    if request.content_length and request.content_length > JSON_MAX_SIZE_BYTES:
        logger.warning("Rejected oversized SCIM payload (%d bytes) on %s", request.content_length, request.path)
        raise ScimError(413, "Request payload exceeds maximum allowed size (64 KB)", "invalidValue")

    if request.method in ("POST", "PUT", "PATCH"):
        content_type = (request.mimetype or "").lower()
        if content_type not in ACCEPTED_CONTENT_TYPES:
            logger.warning("Rejected SCIM request with Content-Type %r on %s", content_type, request.path)
            raise ScimError(415, "Content-Type must be application/scim+json", "invalidSyntax")
    return None


# ─────────────────────────────────────────────────────────────────────────────
# SCIM Schema Discovery Endpoints
# ─────────────────────────────────────────────────────────────────────────────

@bp.route('/ServiceProviderConfig', methods=['GET'])
def service_provider_config():
    """Return SCIM ServiceProviderConfig (RFC 7643 Section 5)."""
    max_operations = current_app.config["APP_CONFIG"].batch.MAX_OPERATIONS_LIMIT
    config = {
        "schemas": ["urn:ietf:params:scim:schemas:core:2.0:ServiceProviderConfig"],
        "patch": {
            "supported": True
        },
        "bulk": {
            "supported": True,
            "maxOperations": max_operations,
            "maxPayloadSize": 1048576
        },
        "filter": {
            "supported": True,
            "maxResults": 200
        },
        "changePassword": {
            "supported": False
        },
        "sort": {
            "supported": False
        },
        "etag": {
            "supported": False
        },
        "authenticationSchemes": [
            {
                "name": "Shared Secret",
                "description": "Static shared secret in the Authorization header",
                "type": "sharedsecret",
                "primary": True
            }
        ]
    }
    return jsonify(config), 200


@bp.route('/Schemas', methods=['GET'])
def schemas():
    """Return SCIM schema definitions."""
    schema_list = {
        "schemas": [SCIM_LIST_RESPONSE_SCHEMA],
        "totalResults": 1,
        "Resources": [
            {
                "id": SCIM_USER_SCHEMA,
                "name": "User",
                "description": "User Account",
                "attributes": [
                    {
                        "name": "userName",
                        "type": "string",
                        "multiValued": False,
                        "required": True,
                        "caseExact": False,
                        "mutability": "readWrite",
                        "returned": "default",
                        "uniqueness": "server"
                    },
                    {
                        "name": "name",
                        "type": "complex",
                        "multiValued": False,
                        "required": False,
                        "mutability": "readWrite",
                        "returned": "default"
                    },
                    {
                        "name": "emails",
                        "type": "complex",
                        "multiValued": True,
                        "required": False,
                        "mutability": "readWrite",
                        "returned": "default"
                    },
                    {
                        "name": "active",
                        "type": "boolean",
                        "multiValued": False,
                        "required": False,
                        "mutability": "readWrite",
                        "returned": "default"
                    }
                ],
                "meta": {
                    "resourceType": "Schema",
                    "location": f"{request.host_url.rstrip('/')}/scim/v2/Schemas/{SCIM_USER_SCHEMA}"
                }
            }
        ]
    }
    return jsonify(schema_list), 200


# ─────────────────────────────────────────────────────────────────────────────
# SCIM User Operations
# ─────────────────────────────────────────────────────────────────────────────

@bp.route('/Users', methods=['GET'])
def list_users():
    """List the oldest queued create requests (at most 25)."""
    return jsonify(_service().list_users_scim()), 200


@bp.route('/Users', methods=['POST'])
def create_user():
    """Queue a new user (Joiner).

    Returns:
        202 Accepted with Location header pointing at the queued record
    """
    payload = _json_body()
    record = _service().enqueue_create(payload, g.correlation_id)

    response = jsonify({"id": record.id, "status": record.status.value})
    response.status_code = 202
    response.headers["Location"] = f"{request.host_url.rstrip('/')}/scim/v2/Users/{record.id}"
    return response


@bp.route('/Users/<user_id>', methods=['PATCH'])
def patch_user(user_id: str):
    """Queue a partial update (Mover) from a SCIM PatchOp request."""
    payload = _json_body()
    record = _service().enqueue_update(user_id, payload, g.correlation_id)
    return jsonify({"id": record.id, "status": record.status.value}), 202


@bp.route('/Users/<user_id>', methods=['DELETE'])
def delete_user(user_id: str):
    """Queue a deprovisioning (Leaver).

    Returns:
        204 No Content
    """
    _service().enqueue_delete(user_id, g.correlation_id)
    return '', 204
