"""Dispatch cycle behaviour against an in-memory store and a scripted transport."""
import json
from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.config.settings import ProvisioningBatchConfig
from app.core.dispatcher import MAX_ATTEMPTS, DispatchSummary, ProvisioningDispatcher
from app.core.graph import BulkResult, GraphAPIError, GraphTransportError
from app.core.models import ProvisionRecord, ProvisionRecordStatus, ProvisionRecordType, utcnow


def _enqueue(store, operation_type=ProvisionRecordType.CREATE, payload=None, created_at=None, target_id=None):
    record = ProvisionRecord(
        operation_type=operation_type,
        payload_json=json.dumps(payload or {"userName": "alice@contoso.com"}),
        target_id=target_id,
        created_at=created_at or utcnow(),
    )
    return store.enqueue(record)


def _dispatcher(store, transport, **batch):
    return ProvisioningDispatcher(store, transport, ProvisioningBatchConfig(**batch))


# ─────────────────────────────────────────────────────────────────────────────
# End-to-end scenarios
# ─────────────────────────────────────────────────────────────────────────────

def test_successful_create_is_completed(store, transport):
    record = _enqueue(store)
    transport.respond_all(201)

    summary = _dispatcher(store, transport).run_cycle()

    stored = store.get(record.id)
    assert stored.status is ProvisionRecordStatus.COMPLETED
    assert stored.completed_at is not None
    assert stored.attempts == 1
    assert summary.completed == 1
    assert transport.calls[0][0].method == "POST"


def test_update_failing_five_times_becomes_failed_without_sixth_attempt(store, transport):
    record = _enqueue(
        store,
        ProvisionRecordType.UPDATE,
        {"scimId": "u-1", "rawPatch": {"accountEnabled": False}},
        target_id="u-1",
    )
    transport.respond_all(500)
    dispatcher = _dispatcher(store, transport)

    for attempt in range(1, MAX_ATTEMPTS):
        dispatcher.run_cycle()
        stored = store.get(record.id)
        assert stored.status is ProvisionRecordStatus.PENDING
        assert stored.attempts == attempt

    summary = dispatcher.run_cycle()
    stored = store.get(record.id)
    assert stored.status is ProvisionRecordStatus.FAILED
    assert stored.attempts == MAX_ATTEMPTS
    assert summary.failed == 1

    assert dispatcher.run_cycle().fetched == 0
    assert len(transport.calls) == MAX_ATTEMPTS
    assert store.get(record.id).attempts == MAX_ATTEMPTS


def test_transport_error_requeues_whole_batch(store, transport):
    base = utcnow()
    records = [_enqueue(store, created_at=base + timedelta(seconds=i)) for i in range(3)]
    transport.fail_with(GraphTransportError("connection reset"))

    summary = _dispatcher(store, transport).run_cycle()

    assert summary == DispatchSummary(fetched=3, requeued=3)
    for record in records:
        stored = store.get(record.id)
        assert stored.status is ProvisionRecordStatus.PENDING
        assert stored.attempts == 1
        assert stored.completed_at is None


def test_graph_api_error_is_handled_like_transport_error(store, transport):
    record = _enqueue(store)
    transport.fail_with(GraphAPIError(503, "unavailable", "https://graph/bulkUpload"))

    _dispatcher(store, transport).run_cycle()

    assert store.get(record.id).status is ProvisionRecordStatus.PENDING


# ─────────────────────────────────────────────────────────────────────────────
# Result reconciliation
# ─────────────────────────────────────────────────────────────────────────────

def test_missing_result_is_treated_as_failure(store, transport):
    ok = _enqueue(store, created_at=utcnow() - timedelta(seconds=2))
    missing = _enqueue(store)
    transport.responder = lambda ops: [BulkResult(id=ok.id, status=200)]

    summary = _dispatcher(store, transport).run_cycle()

    assert store.get(ok.id).status is ProvisionRecordStatus.COMPLETED
    assert store.get(missing.id).status is ProvisionRecordStatus.PENDING
    assert (summary.completed, summary.requeued) == (1, 1)


def test_result_ids_match_case_insensitively(store, transport):
    record = _enqueue(store)
    transport.responder = lambda ops: [BulkResult(id=op.id.upper(), status=204) for op in ops]

    _dispatcher(store, transport).run_cycle()

    assert store.get(record.id).status is ProvisionRecordStatus.COMPLETED


def test_empty_queue_is_a_noop(store, transport):
    summary = _dispatcher(store, transport).run_cycle()
    assert summary.idle
    assert transport.calls == []


# ─────────────────────────────────────────────────────────────────────────────
# Batching, ordering and attempt bookkeeping
# ─────────────────────────────────────────────────────────────────────────────

def test_batch_respects_max_operations_oldest_first(store, transport):
    base = utcnow()
    newest = _enqueue(store, created_at=base + timedelta(seconds=10))
    oldest = _enqueue(store, created_at=base)
    middle = _enqueue(store, created_at=base + timedelta(seconds=5))

    summary = _dispatcher(store, transport, max_operations=2).run_cycle()

    assert summary.fetched == 2
    assert [op.id for op in transport.calls[0]] == [oldest.id, middle.id]
    assert store.get(newest.id).status is ProvisionRecordStatus.PENDING
    assert store.get(newest.id).attempts == 0


def test_attempt_is_persisted_in_progress_before_send(store, transport):
    record = _enqueue(store)
    seen = {}

    def responder(ops):
        stored = store.get(record.id)
        seen["status"] = stored.status
        seen["attempts"] = stored.attempts
        seen["last_attempt_at"] = stored.last_attempt_at
        return [BulkResult(id=op.id, status=200) for op in ops]

    transport.responder = responder
    _dispatcher(store, transport).run_cycle()

    assert seen["status"] is ProvisionRecordStatus.IN_PROGRESS
    assert seen["attempts"] == 1
    assert seen["last_attempt_at"] is not None


def test_requeued_record_keeps_created_at_and_priority(store, transport):
    base = utcnow()
    old = _enqueue(store, created_at=base)
    transport.respond_all(500)
    dispatcher = _dispatcher(store, transport, max_operations=1)
    dispatcher.run_cycle()

    newer = _enqueue(store, created_at=base + timedelta(seconds=30))
    transport.respond_all(200)
    dispatcher.run_cycle()

    assert transport.calls[1][0].id == old.id
    assert store.get(old.id).status is ProvisionRecordStatus.COMPLETED
    assert store.get(newer.id).status is ProvisionRecordStatus.PENDING


def test_persistence_failure_propagates(store, transport, monkeypatch):
    _enqueue(store)

    def broken_persist(records):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(store, "persist", broken_persist)

    with pytest.raises(SQLAlchemyError):
        _dispatcher(store, transport).run_cycle()
    assert transport.calls == []


# ─────────────────────────────────────────────────────────────────────────────
# Reclaim
# ─────────────────────────────────────────────────────────────────────────────

def _mark_in_progress(store, record, attempts, last_attempt_at):
    record.status = ProvisionRecordStatus.IN_PROGRESS
    record.attempts = attempts
    record.last_attempt_at = last_attempt_at
    store.persist([record])


def test_stale_in_progress_record_is_reclaimed_and_redispatched(store, transport):
    record = _enqueue(store)
    _mark_in_progress(store, record, attempts=2, last_attempt_at=utcnow() - timedelta(hours=1))

    summary = _dispatcher(store, transport).run_cycle()

    stored = store.get(record.id)
    assert summary.reclaimed == 1
    assert stored.status is ProvisionRecordStatus.COMPLETED
    assert stored.attempts == 3


def test_stale_record_without_attempts_left_is_failed(store, transport):
    record = _enqueue(store)
    _mark_in_progress(store, record, attempts=MAX_ATTEMPTS, last_attempt_at=utcnow() - timedelta(hours=1))

    summary = _dispatcher(store, transport).run_cycle()

    assert summary.reclaimed == 1
    assert summary.fetched == 0
    assert store.get(record.id).status is ProvisionRecordStatus.FAILED
    assert transport.calls == []


def test_recent_in_progress_record_is_left_alone_by_cycle(store, transport):
    record = _enqueue(store)
    _mark_in_progress(store, record, attempts=1, last_attempt_at=utcnow())

    summary = _dispatcher(store, transport).run_cycle()

    assert summary.reclaimed == 0
    assert store.get(record.id).status is ProvisionRecordStatus.IN_PROGRESS


def test_reclaim_orphans_takes_every_in_progress_record(store, transport):
    record = _enqueue(store)
    _mark_in_progress(store, record, attempts=1, last_attempt_at=utcnow() - timedelta(seconds=1))

    assert _dispatcher(store, transport).reclaim_orphans() == 1

    stored = store.get(record.id)
    assert stored.status is ProvisionRecordStatus.PENDING
    assert stored.attempts == 1


def test_start_after_stop_is_rejected(store, transport):
    dispatcher = _dispatcher(store, transport)
    dispatcher.stop()
    with pytest.raises(RuntimeError):
        dispatcher.start()
