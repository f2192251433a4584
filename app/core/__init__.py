"""Core Business Logic Module

This module provides the provisioning outbox logic, independent of the
HTTP framework.

Module Structure:
    - models.py               : SQLAlchemy models (ProvisionRecord, AuditLog)
    - queue_store.py          : Transactional queue access
    - scim_transformer.py     : SCIM User / PatchOp → normalized payload
    - provisioning_mapper.py  : Queue record → Graph bulk operation
    - dispatcher.py           : Batching, retry and reclaim loop
    - provisioning_service.py : SCIM intake (validation, enqueue, audit)
    - audit.py                : Inbound/outbound audit entries
    - graph/                  : Microsoft Graph bulkUpload client

Usage Pattern:
    These modules are NOT auto-imported. Import explicitly when needed:
        from app.core.dispatcher import ProvisioningDispatcher
        from app.core.provisioning_service import ProvisioningService, ScimError
"""
