"""Audit trail helpers for inbound SCIM requests and outbound bulk uploads.

Request bodies are never stored; each entry carries a SHA-256 hash of the
canonical JSON body so a payload can be matched later without keeping
personal data in the audit table.
"""
from __future__ import annotations
import hashlib
import json
import logging
from typing import Any, Optional

from app.core.models import AuditDirection, AuditLog

logger = logging.getLogger(__name__)


def compute_body_hash(body: Any) -> str:
    """Return the upper-case SHA-256 hex digest of ``body``.

    Dicts and lists are hashed in canonical JSON form (sorted keys, no
    whitespace) so logically equal payloads produce equal hashes; strings
    and bytes are hashed as-is.
    """
    if body is None:
        raw = b""
    elif isinstance(body, bytes):
        raw = body
    elif isinstance(body, str):
        raw = body.encode("utf-8")
    else:
        raw = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest().upper()


def inbound_entry(endpoint: str, status_code: int, body: Any, correlation_id: Optional[str] = None) -> AuditLog:
    return AuditLog(
        direction=AuditDirection.INBOUND,
        endpoint=endpoint[:256],
        status_code=status_code,
        body_hash=compute_body_hash(body),
        correlation_id=(correlation_id or "")[:128],
    )


def outbound_entry(endpoint: str, status_code: int, body: Any, correlation_id: Optional[str] = None) -> AuditLog:
    return AuditLog(
        direction=AuditDirection.OUTBOUND,
        endpoint=endpoint[:256],
        status_code=status_code,
        body_hash=compute_body_hash(body),
        correlation_id=(correlation_id or "")[:128],
    )


def safe_record(store, entry: AuditLog) -> bool:
    """Persist an audit entry without ever raising.

    Outbound auditing runs inside the dispatch cycle; a failed audit write
    must not turn a delivered batch into a re-queued one.

    Returns:
        True if the entry was written, False otherwise
    """
    try:
        store.add_audit(entry)
        return True
    except Exception as exc:
        logger.warning("Failed to write %s audit entry for %s: %s", entry.direction.value, entry.endpoint, exc)
        return False
