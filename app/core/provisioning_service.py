"""
Provisioning Service Layer: SCIM intake into the outbox

This module accepts SCIM 2.0 lifecycle requests (create, patch, delete),
validates them, and turns each accepted request into one PENDING queue
record plus one inbound audit entry. Delivery to Graph happens later, in
batches, in the dispatcher.

Architecture:
    SCIM API (/scim/v2/*) ──> provisioning_service.py ──> QueueStore ──> ProvisioningDispatcher ──> Graph
    Admin API (/admin/*)  ──────────────┘

Features:
    - SCIM payload validation (userName, PatchOp operations)
    - SCIM → normalized payload transformation
    - Inbound audit trail (body hashes, correlation IDs)
    - Opportunistic flush request after every accepted change
    - Standardized error handling via ScimError
"""

from __future__ import annotations
import logging
from typing import Any, Optional

from app.core import audit
from app.core.models import ProvisionRecord, ProvisionRecordStatus, ProvisionRecordType
from app.core.scim_transformer import NormalizedPayload, ScimTransformer

# SCIM schemas
SCIM_USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
SCIM_ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"
SCIM_LIST_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
SCIM_PATCH_OP_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"

# Validation constraints
USERNAME_MAX_LENGTH = 256
TARGET_ID_MAX_LENGTH = 128
USERS_LIST_LIMIT = 25

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Custom Exceptions
# ─────────────────────────────────────────────────────────────────────────────

class ScimError(Exception):
    """SCIM protocol error with HTTP status and optional scimType."""

    def __init__(self, status: int, detail: str, scim_type: Optional[str] = None):
        self.status = status
        self.detail = detail
        self.scim_type = scim_type
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Convert to SCIM error response format."""
        error_dict = {
            "schemas": [SCIM_ERROR_SCHEMA],
            "status": str(self.status),
            "detail": self.detail
        }
        if self.scim_type:
            error_dict["scimType"] = self.scim_type
        return error_dict


# ─────────────────────────────────────────────────────────────────────────────
# Validation Functions
# ─────────────────────────────────────────────────────────────────────────────

def validate_user_name(user_name: Any) -> str:
    """Validate userName presence and length; returns the trimmed value."""
    if not isinstance(user_name, str) or not user_name.strip():
        raise ScimError(400, "userName is required", "invalidValue")

    user_name = user_name.strip()
    if len(user_name) > USERNAME_MAX_LENGTH:
        raise ScimError(400, f"userName must not exceed {USERNAME_MAX_LENGTH} characters", "invalidValue")
    return user_name


def validate_target_id(user_id: Any) -> str:
    """Validate the path identifier of a SCIM user resource."""
    if not isinstance(user_id, str) or not user_id.strip():
        raise ScimError(400, "User id is required", "invalidValue")
    if len(user_id) > TARGET_ID_MAX_LENGTH:
        raise ScimError(400, f"User id must not exceed {TARGET_ID_MAX_LENGTH} characters", "invalidValue")
    return user_id.strip()


def validate_scim_user_payload(payload: Any) -> None:
    """Validate SCIM User payload structure and required fields."""
    if not isinstance(payload, dict):
        raise ScimError(400, "Request body must be a JSON object", "invalidSyntax")

    validate_user_name(payload.get("userName"))

    name = payload.get("name")
    if name is not None and not isinstance(name, dict):
        raise ScimError(400, "name must be an object", "invalidValue")

    emails = payload.get("emails")
    if emails is not None and not isinstance(emails, list):
        raise ScimError(400, "emails must be an array", "invalidValue")


def validate_patch_request(payload: Any) -> list:
    """Validate a SCIM PatchOp request body and return its operations."""
    if not isinstance(payload, dict):
        raise ScimError(400, "Request body must be a JSON object", "invalidSyntax")

    schemas = payload.get("schemas")
    if schemas is not None and (not isinstance(schemas, list) or SCIM_PATCH_OP_SCHEMA not in schemas):
        raise ScimError(400, f"schemas must include {SCIM_PATCH_OP_SCHEMA}", "invalidSyntax")

    operations = payload.get("Operations")
    if not isinstance(operations, list) or not operations:
        raise ScimError(400, "At least one operation is required", "invalidSyntax")
    return operations


# ─────────────────────────────────────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────────────────────────────────────

class ProvisioningService:
    """Accepts SCIM lifecycle requests into the provisioning outbox.

    Args:
        store: QueueStore holding provision records and audit entries
        dispatcher: Object exposing ``request_flush()`` (None disables flushing)
    """

    def __init__(self, store, dispatcher=None):
        self.store = store
        self.dispatcher = dispatcher

    def _accept(self, record: ProvisionRecord, endpoint: str, status_code: int, body: Any) -> ProvisionRecord:
        entry = audit.inbound_entry(endpoint, status_code, body, record.correlation_id)
        self.store.enqueue(record, audit=entry)
        logger.info("Enqueued %s provisioning record %s", record.operation_type.value, record.id)
        if self.dispatcher is not None:
            self.dispatcher.request_flush()
        return record

    def enqueue_create(self, payload: dict, correlation_id: Optional[str] = None) -> ProvisionRecord:
        """Queue a Joiner (create user).

        Args:
            payload: SCIM User resource
            correlation_id: Optional correlation ID for tracing

        Returns:
            The PENDING ProvisionRecord

        Raises:
            ScimError: On validation failure (400)
        """
        validate_scim_user_payload(payload)

        normalized = ScimTransformer.scim_to_payload(payload)
        record = ProvisionRecord(
            operation_type=ProvisionRecordType.CREATE,
            payload_json=normalized.to_json(),
            target_id=normalized.scim_id or normalized.external_id,
            correlation_id=correlation_id or "",
        )
        return self._accept(record, "POST /scim/v2/Users", 202, payload)

    def enqueue_update(self, user_id: str, patch_request: dict, correlation_id: Optional[str] = None) -> ProvisionRecord:
        """Queue a Mover/attribute change from a SCIM PatchOp request.

        Raises:
            ScimError: 400 if the request carries no supported change
        """
        user_id = validate_target_id(user_id)
        operations = validate_patch_request(patch_request)

        raw_patch = ScimTransformer.normalize_patch(operations)
        if not raw_patch:
            raise ScimError(400, "No supported patch operations found", "invalidValue")

        normalized = NormalizedPayload(scim_id=user_id, raw_patch=raw_patch)
        record = ProvisionRecord(
            operation_type=ProvisionRecordType.UPDATE,
            payload_json=normalized.to_json(),
            target_id=user_id,
            correlation_id=correlation_id or "",
        )
        return self._accept(record, f"PATCH /scim/v2/Users/{user_id}", 202, patch_request)

    def enqueue_delete(self, user_id: str, correlation_id: Optional[str] = None) -> ProvisionRecord:
        """Queue a Leaver (deprovision user)."""
        user_id = validate_target_id(user_id)

        normalized = NormalizedPayload(scim_id=user_id, active=False)
        record = ProvisionRecord(
            operation_type=ProvisionRecordType.DELETE,
            payload_json=normalized.to_json(),
            target_id=user_id,
            correlation_id=correlation_id or "",
        )
        return self._accept(record, f"DELETE /scim/v2/Users/{user_id}", 204, user_id)

    def request_flush(self) -> bool:
        """Manual flush trigger. Returns False when no dispatcher is attached."""
        if self.dispatcher is None:
            return False
        self.dispatcher.request_flush()
        logger.info("Manual flush requested")
        return True

    def get_record(self, record_id: str) -> ProvisionRecord:
        """Look up a record's current state.

        Raises:
            ScimError: 404 if the record does not exist
        """
        record = self.store.get(record_id)
        if record is None:
            raise ScimError(404, f"Provisioning record '{record_id}' not found")
        return record

    def list_records(self, status: Optional[str] = None, limit: int = 100) -> list[ProvisionRecord]:
        status_filter = None
        if status:
            try:
                status_filter = ProvisionRecordStatus(status.strip().lower())
            except ValueError:
                allowed = ", ".join(s.value for s in ProvisionRecordStatus)
                raise ScimError(400, f"status must be one of: {allowed}", "invalidValue") from None
        limit = min(500, max(1, int(limit)))
        return self.store.list_records(status=status_filter, limit=limit)

    def list_users_scim(self) -> dict:
        """List the oldest queued create requests as a SCIM ListResponse."""
        records = self.store.list_records(operation_type=ProvisionRecordType.CREATE, limit=USERS_LIST_LIMIT)
        resources = [{"id": record.id, "targetId": record.target_id} for record in records]
        return {
            "schemas": [SCIM_LIST_RESPONSE_SCHEMA],
            "totalResults": len(resources),
            "startIndex": 1,
            "itemsPerPage": len(resources),
            "Resources": resources,
        }
