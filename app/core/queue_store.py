"""SQLAlchemy-backed queue store for provisioning records.

The dispatcher is the only writer of ``status``/``attempts``; intake only
inserts PENDING rows. Every public method runs in its own transaction and
returns detached instances (``expire_on_commit=False``) so callers can
mutate them and hand them back to :meth:`QueueStore.persist`.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, Optional

from sqlalchemy import create_engine, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.models import (
    AuditLog,
    Base,
    ProvisionRecord,
    ProvisionRecordStatus,
    ProvisionRecordType,
)

logger = logging.getLogger(__name__)


def get_engine_options(database_url: str) -> dict:
    """Engine options for the given database URL.

    SQLite connections are shared with the dispatcher thread, and an
    in-memory database must live on a single connection to be visible at all.
    """
    if database_url.startswith("sqlite"):
        options: dict = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return options

    return {
        "pool_pre_ping": True,   # Detect dead connections before use
        "pool_recycle": 280,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 30,
    }


class QueueStore:
    """Transactional access to the provisioning outbox tables."""

    def __init__(self, database_url: str, engine: Optional[Engine] = None):
        self.database_url = database_url
        self.engine = engine or create_engine(database_url, **get_engine_options(database_url))
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        """Create tables if they do not exist yet."""
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope; commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Producer side
    # ─────────────────────────────────────────────────────────────────────────

    def enqueue(self, record: ProvisionRecord, audit: Optional[AuditLog] = None) -> ProvisionRecord:
        """Insert a new PENDING record (and its inbound audit row) atomically."""
        if record.status is not ProvisionRecordStatus.PENDING:
            raise ValueError("Only PENDING records can be enqueued")
        with self.session_scope() as session:
            session.add(record)
            if audit is not None:
                session.add(audit)
        logger.debug("Enqueued %s record %s", record.operation_type.value, record.id)
        return record

    def add_audit(self, entry: AuditLog) -> None:
        with self.session_scope() as session:
            session.add(entry)

    # ─────────────────────────────────────────────────────────────────────────
    # Dispatcher side
    # ─────────────────────────────────────────────────────────────────────────

    def fetch_pending(self, limit: int) -> list[ProvisionRecord]:
        """Return up to ``limit`` PENDING records, oldest ``created_at`` first."""
        if limit < 1:
            raise ValueError("limit must be at least 1")
        stmt = (
            select(ProvisionRecord)
            .where(ProvisionRecord.status == ProvisionRecordStatus.PENDING)
            .order_by(ProvisionRecord.created_at.asc(), ProvisionRecord.id.asc())
            .limit(limit)
        )
        with self.session_scope() as session:
            return list(session.scalars(stmt))

    def persist(self, records: Iterable[ProvisionRecord]) -> None:
        """Write status/attempt/timestamp changes for a batch in one transaction."""
        records = list(records)
        if not records:
            return
        with self.session_scope() as session:
            for record in records:
                session.merge(record)

    def reclaim_stale(self, cutoff: datetime, max_attempts: int) -> list[ProvisionRecord]:
        """Return IN_PROGRESS records last attempted before ``cutoff`` to the queue.

        The attempt was already counted when the record was marked IN_PROGRESS,
        so ``attempts`` is left untouched. Records that have used up their
        attempts become FAILED instead of PENDING.
        """
        stmt = select(ProvisionRecord).where(
            ProvisionRecord.status == ProvisionRecordStatus.IN_PROGRESS,
            ProvisionRecord.last_attempt_at < cutoff,
        )
        with self.session_scope() as session:
            reclaimed = list(session.scalars(stmt))
            for record in reclaimed:
                if record.attempts >= max_attempts:
                    record.status = ProvisionRecordStatus.FAILED
                else:
                    record.status = ProvisionRecordStatus.PENDING
        return reclaimed

    # ─────────────────────────────────────────────────────────────────────────
    # Read side
    # ─────────────────────────────────────────────────────────────────────────

    def get(self, record_id: str) -> Optional[ProvisionRecord]:
        with self.session_scope() as session:
            return session.get(ProvisionRecord, record_id)

    def list_records(
        self,
        status: Optional[ProvisionRecordStatus] = None,
        operation_type: Optional[ProvisionRecordType] = None,
        limit: int = 100,
    ) -> list[ProvisionRecord]:
        stmt = select(ProvisionRecord).order_by(ProvisionRecord.created_at.asc()).limit(limit)
        if status is not None:
            stmt = stmt.where(ProvisionRecord.status == status)
        if operation_type is not None:
            stmt = stmt.where(ProvisionRecord.operation_type == operation_type)
        with self.session_scope() as session:
            return list(session.scalars(stmt))

    def list_audit(self, limit: int = 100) -> list[AuditLog]:
        stmt = select(AuditLog).order_by(AuditLog.created_at.asc()).limit(limit)
        with self.session_scope() as session:
            return list(session.scalars(stmt))

    def ping(self) -> bool:
        """Cheap connectivity check for readiness probes."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
