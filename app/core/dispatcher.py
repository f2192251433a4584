"""Provisioning dispatcher: the outbox loop.

Turns PENDING queue records into batched Graph bulk uploads and reconciles
the per-operation results back into the queue.

Architecture:
    SCIM intake ──enqueue──> QueueStore <──fetch/persist── ProvisioningDispatcher
         │                                                     │
         └──────── request_flush() ──> FlushSignal ───wake────┘──send──> BulkTransport

Record lifecycle:
    PENDING → IN_PROGRESS → COMPLETED | PENDING (retry) | FAILED (terminal)

Scheduling:
    One background thread per process wakes on the periodic timer or on a
    flush signal, whichever comes first. Flush requests coalesce: any number
    of them raised before the loop wakes produce a single cycle.
"""
from __future__ import annotations
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Protocol, Sequence

from app.config.settings import ProvisioningBatchConfig
from app.core.graph.models import BulkOperation, BulkResult
from app.core.models import ProvisionRecord, ProvisionRecordStatus, utcnow
from app.core.provisioning_mapper import ProvisioningMapper

MAX_ATTEMPTS = 5

logger = logging.getLogger(__name__)


class BulkTransport(Protocol):
    """Anything that can deliver a batch of operations to the external system."""

    def send(self, operations: Sequence[BulkOperation]) -> List[BulkResult]:
        ...


class QueueBackend(Protocol):
    def fetch_pending(self, limit: int) -> List[ProvisionRecord]:
        ...

    def persist(self, records: Sequence[ProvisionRecord]) -> None:
        ...

    def reclaim_stale(self, cutoff: datetime, max_attempts: int) -> List[ProvisionRecord]:
        ...


class FlushSignal:
    """Single-slot, saturating wake-up notification.

    ``set()`` never blocks and never accumulates: setting an already pending
    signal is a no-op. ``wait()`` consumes the pending flag under the same
    lock, so a ``set()`` that races with processing is kept for the next wait.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._pending = False
        self._closed = False

    def set(self) -> None:
        with self._cond:
            self._pending = True
            self._cond.notify_all()

    def close(self) -> None:
        """Wake every waiter and make all further waits return immediately."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def pending(self) -> bool:
        with self._cond:
            return self._pending

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until set, closed or timed out.

        Returns:
            True if a pending signal was consumed, False on timeout or close
        """
        with self._cond:
            self._cond.wait_for(lambda: self._pending or self._closed, timeout=timeout)
            fired = self._pending
            self._pending = False
            return fired


@dataclass
class DispatchSummary:
    """Outcome counters for one dispatch cycle."""
    fetched: int = 0
    completed: int = 0
    requeued: int = 0
    failed: int = 0
    reclaimed: int = 0

    @property
    def idle(self) -> bool:
        return self.fetched == 0 and self.reclaimed == 0

    def __str__(self) -> str:
        return (
            f"fetched={self.fetched} completed={self.completed} requeued={self.requeued} "
            f"failed={self.failed} reclaimed={self.reclaimed}"
        )


class ProvisioningDispatcher:
    """Background outbox dispatcher.

    Usage:
        dispatcher = ProvisioningDispatcher(store, GraphBulkClient(cfg.graph), cfg.batch)
        dispatcher.start()
        ...
        dispatcher.request_flush()   # from request handlers, fire-and-forget
        ...
        dispatcher.stop()            # finishes the running cycle, then exits
    """

    def __init__(
        self,
        store: QueueBackend,
        transport: BulkTransport,
        config: ProvisioningBatchConfig,
        mapper: Optional[ProvisioningMapper] = None,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.transport = transport
        self.config = config
        self.mapper = mapper or ProvisioningMapper()
        self._clock = clock
        self._monotonic = monotonic
        self._signal = FlushSignal()
        self._cycle_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.cycles_run = 0

    # ─────────────────────────────────────────────────────────────────────────
    # Producer API
    # ─────────────────────────────────────────────────────────────────────────

    def request_flush(self) -> None:
        """Ask for an opportunistic dispatch cycle. Never blocks, never raises."""
        self._signal.set()

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._signal.closed:
            raise RuntimeError("Dispatcher has been stopped and cannot be restarted")
        if self.is_running:
            return
        self._thread = threading.Thread(target=self._run, name="provisioning-dispatcher", daemon=True)
        self._thread.start()
        logger.info(
            "Provisioning dispatcher started (batch=%d, flush=%ss, max_attempts=%d)",
            self.config.max_operations, self.config.flush_seconds, MAX_ATTEMPTS,
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Abort the wait and let the current cycle persist before the thread exits."""
        self._signal.close()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Provisioning dispatcher did not stop within %ss", timeout)
        logger.info("Provisioning dispatcher stopped")

    def _run(self) -> None:
        try:
            self.reclaim_orphans()
        except Exception:
            logger.exception("Failed to reclaim orphaned provisioning records at startup")

        interval = float(self.config.flush_seconds)
        next_tick = self._monotonic() + interval

        while not self._signal.closed:
            flushed = self._signal.wait(timeout=max(0.0, next_tick - self._monotonic()))
            if self._signal.closed:
                break

            if not flushed:
                # Timer tick; ticks missed while a cycle was running collapse into this one
                now = self._monotonic()
                while next_tick <= now:
                    next_tick += interval

            try:
                self.run_cycle()
            except Exception:
                logger.exception("Error running provisioning batch loop")

    # ─────────────────────────────────────────────────────────────────────────
    # Dispatch cycle
    # ─────────────────────────────────────────────────────────────────────────

    def reclaim_orphans(self) -> int:
        """Return every IN_PROGRESS record to the queue.

        Only valid while no cycle of this queue is running anywhere, i.e. at
        process start under the single-dispatcher assumption.
        """
        with self._cycle_lock:
            return len(self._reclaim(self._clock()))

    def _reclaim(self, cutoff: datetime) -> List[ProvisionRecord]:
        reclaimed = self.store.reclaim_stale(cutoff, MAX_ATTEMPTS)
        for record in reclaimed:
            logger.warning(
                "Reclaimed stale in-progress record %s (attempts=%d) -> %s",
                record.id, record.attempts, record.status.value,
            )
        return reclaimed

    def run_cycle(self) -> DispatchSummary:
        """Run one fetch → map → send → reconcile cycle.

        Transport failures are absorbed (records are re-queued or failed);
        persistence failures propagate to the caller.
        """
        with self._cycle_lock:
            self.cycles_run += 1
            summary = DispatchSummary()

            stale_cutoff = self._clock() - timedelta(seconds=self.config.reclaim_after_seconds)
            summary.reclaimed = len(self._reclaim(stale_cutoff))

            records = self.store.fetch_pending(self.config.max_operations)
            summary.fetched = len(records)
            if not records:
                return summary

            attempted_at = self._clock()
            for record in records:
                record.attempts += 1
                record.status = ProvisionRecordStatus.IN_PROGRESS
                record.last_attempt_at = attempted_at

            # The attempt must be on disk before anything leaves the process
            self.store.persist(records)

            try:
                operations = [self.mapper.map_to_operation(record) for record in records]
                results = self.transport.send(operations)
            except Exception:
                logger.exception("Failed to send provisioning batch of %d record(s)", len(records))
                results = []

            lookup = {result.id.lower(): result for result in results}
            finished_at = self._clock()

            for record in records:
                result = lookup.get(str(record.id).lower())
                if result is not None and result.succeeded:
                    record.status = ProvisionRecordStatus.COMPLETED
                    record.completed_at = finished_at
                    summary.completed += 1
                    continue

                if result is not None:
                    logger.warning("Graph bulk operation failed for record %s with status %s", record.id, result.status)
                else:
                    logger.warning("Graph bulk response missing status for record %s", record.id)

                if self._apply_retry_policy(record):
                    summary.failed += 1
                else:
                    summary.requeued += 1

            self.store.persist(records)

            logger.info("Provisioning cycle finished: %s", summary)
            return summary

    def _apply_retry_policy(self, record: ProvisionRecord) -> bool:
        """Re-queue or fail a record whose attempt did not succeed.

        Returns:
            True if the record is now terminally FAILED
        """
        if record.attempts >= MAX_ATTEMPTS:
            record.status = ProvisionRecordStatus.FAILED
            logger.error(
                "Provisioning record %s (%s) failed permanently after %d attempts",
                record.id, record.operation_type.value, record.attempts,
            )
            return True
        record.status = ProvisionRecordStatus.PENDING
        return False
