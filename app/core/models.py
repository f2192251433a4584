"""Persistence models for the provisioning outbox.

Two tables:
    - provision_records : one row per identity change waiting to be pushed
    - audit_logs        : inbound/outbound request trail (body hashes only)
"""
from __future__ import annotations
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy import Enum as SqlEnum
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProvisionRecordType(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ProvisionRecordStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class AuditDirection(Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ProvisionRecord(Base):
    """A queued identity change (outbox row)."""
    __tablename__ = "provision_records"
    __table_args__ = (
        Index("ix_provision_records_status_created", "status", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    operation_type = Column(SqlEnum(ProvisionRecordType), nullable=False)
    status = Column(SqlEnum(ProvisionRecordStatus), nullable=False, default=ProvisionRecordStatus.PENDING)
    payload_json = Column(Text, nullable=False, default="{}")
    target_id = Column(String(128), nullable=True)
    correlation_id = Column(String(128), nullable=False, default="")
    attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def __init__(self, **kwargs: Any):
        # Column defaults only fire on INSERT; fill them eagerly so a record
        # is usable (mapped, counted) before it is ever flushed.
        kwargs.setdefault("id", str(uuid.uuid4()))
        kwargs.setdefault("status", ProvisionRecordStatus.PENDING)
        kwargs.setdefault("payload_json", "{}")
        kwargs.setdefault("correlation_id", "")
        kwargs.setdefault("attempts", 0)
        kwargs.setdefault("created_at", utcnow())
        super().__init__(**kwargs)

    @property
    def payload(self) -> dict[str, Any]:
        """Decoded payload; malformed JSON degrades to an empty mapping."""
        try:
            data = json.loads(self.payload_json or "{}")
        except (TypeError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def __repr__(self) -> str:
        return f"<ProvisionRecord {self.id} {self.operation_type} {self.status} attempts={self.attempts}>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operationType": self.operation_type.value if self.operation_type else None,
            "status": self.status.value if self.status else None,
            "targetId": self.target_id,
            "correlationId": self.correlation_id,
            "attempts": self.attempts,
            "createdAt": _isoformat(self.created_at),
            "lastAttemptAt": _isoformat(self.last_attempt_at),
            "completedAt": _isoformat(self.completed_at),
        }


class AuditLog(Base):
    """Request audit trail. Bodies are stored as SHA-256 hashes, never in clear."""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    direction = Column(SqlEnum(AuditDirection), nullable=False)
    endpoint = Column(String(256), nullable=False)
    status_code = Column(Integer, nullable=False, default=0)
    body_hash = Column(String(128), nullable=False, default="")
    correlation_id = Column(String(128), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<AuditLog {self.direction} {self.endpoint} {self.status_code}>"


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite drops tzinfo on read; everything is written in UTC
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
