"""Queue record → Graph bulk operation mapping.

Pure transformation: no I/O and no failure path. Payloads are generated at
intake, so a malformed one is treated as empty rather than rejected.
"""
from __future__ import annotations
from typing import Any, Dict, Optional

from app.core.graph.models import BulkOperation
from app.core.models import ProvisionRecord, ProvisionRecordType
from app.core.scim_transformer import (
    ATTR_ENABLED,
    ATTR_GIVEN_NAME,
    ATTR_MAIL,
    ATTR_PRINCIPAL_NAME,
    ATTR_SURNAME,
    NormalizedPayload,
)

USERS_COLLECTION = "/Users"

_METHODS = {
    ProvisionRecordType.CREATE: "POST",
    ProvisionRecordType.UPDATE: "PATCH",
    ProvisionRecordType.DELETE: "DELETE",
}


class ProvisioningMapper:
    """Maps one ProvisionRecord to exactly one BulkOperation."""

    def map_to_operation(self, record: ProvisionRecord) -> BulkOperation:
        payload = NormalizedPayload.from_dict(record.payload)
        target_id = payload.scim_id or record.target_id

        method = _METHODS.get(record.operation_type, "POST")

        data: Optional[Dict[str, Any]] = None
        if record.operation_type is ProvisionRecordType.CREATE:
            data = full_attributes(payload)
        elif record.operation_type is ProvisionRecordType.UPDATE:
            # A partial update must never be widened into a full overwrite
            data = dict(payload.raw_patch) if payload.raw_patch else full_attributes(payload)

        if record.operation_type is ProvisionRecordType.CREATE or not target_id:
            path = USERS_COLLECTION
        else:
            path = f"{USERS_COLLECTION}/{target_id}"

        record_id = str(record.id)
        return BulkOperation(
            id=record_id,
            bulk_id=target_id or record_id,
            method=method,
            path=path,
            data=data,
        )


def full_attributes(payload: NormalizedPayload) -> Dict[str, Any]:
    """Full Graph attribute map; unset attributes are omitted, accountEnabled defaults to True."""
    attributes = {
        ATTR_PRINCIPAL_NAME: payload.user_name,
        ATTR_GIVEN_NAME: payload.given_name,
        ATTR_SURNAME: payload.family_name,
        ATTR_MAIL: payload.primary_email,
    }
    data = {key: value for key, value in attributes.items() if value is not None}
    data[ATTR_ENABLED] = True if payload.active is None else payload.active
    return data
