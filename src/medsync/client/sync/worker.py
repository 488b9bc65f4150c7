"""Sync worker that drains the pending-change queue.

This module provides:
- SyncWorker: Single-flight drain of the SyncQueue against the remote API
- DispatcherProtocol / ProbeProtocol: What the worker needs from its
  collaborators

A drain:
1. Takes the single-flight guard (a concurrent drain is reported as skipped)
2. Probes reachability and checks for a bearer token
3. Dispatches every queued item in FIFO order
4. Dequeues successes, bumps the retry counter of failures and drops items
   that reached the retry ceiling
5. Reconciles the local records (synced on success, failed on drop)

Per-item state:
    | Outcome                     | Queue             | Local record      |
    |-----------------------------|-------------------|-------------------|
    | 2xx                         | dequeued          | synced            |
    | error, retryCount+1 < max   | retryCount + 1    | unchanged         |
    | error, retryCount+1 >= max  | dequeued (drop)   | failed            |
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Protocol

from medsync.client.entities import ENTITIES
from medsync.client.records import Record, now_iso
from medsync.client.sync.types import DrainOutcome, DrainResult, ItemState
from medsync.core.types import QueueAction

if TYPE_CHECKING:
    from collections.abc import Callable

    from medsync.client.state import LocalStore
    from medsync.client.sync.queue import SyncQueue
    from medsync.client.sync.types import QueueItem

logger = logging.getLogger(__name__)


class DispatcherProtocol(Protocol):
    """Protocol for the remote side of a drain (RemoteAPI implements it)."""

    def has_token(self) -> bool:
        """Check if a bearer token is available."""
        ...

    def dispatch(self, item: QueueItem) -> Any:
        """Send a queued mutation; raise on any failure."""
        ...


class ProbeProtocol(Protocol):
    """Protocol for the reachability probe (NetworkObserver implements it)."""

    def probe_reachability(self) -> bool:
        """Actively check that the server can be reached."""
        ...


class SyncWorker:
    """Drains the sync queue, one drain at a time.

    Usage:
        worker = SyncWorker(store, queue, api, observer)
        result = worker.drain()
        if result.skipped:
            ...
    """

    def __init__(
        self,
        store: LocalStore,
        queue: SyncQueue,
        dispatcher: DispatcherProtocol,
        probe: ProbeProtocol,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the worker.

        Args:
            store: Local store, for record reconciliation and last_sync_at.
            queue: Queue to drain.
            dispatcher: Sends queue items to the server.
            probe: Reachability probe consulted before each drain.
            clock: Monotonic clock used for the last-attempt timestamp.
        """
        self._store = store
        self._queue = queue
        self._dispatcher = dispatcher
        self._probe = probe
        self._clock = clock

        # Single-flight guard, taken with a non-blocking acquire
        self._flight = threading.Lock()
        self._last_attempt: float | None = None

        # Callbacks
        self._on_drain_start: Callable[[], None] | None = None
        self._on_drain_complete: Callable[[DrainResult], None] | None = None

    @property
    def in_flight(self) -> bool:
        """Check if a drain is running."""
        return self._flight.locked()

    @property
    def last_attempt(self) -> float | None:
        """Clock value of the last drain that passed the guard."""
        return self._last_attempt

    def set_on_drain_start(self, callback: Callable[[], None]) -> None:
        """Set callback invoked when a drain starts dispatching."""
        self._on_drain_start = callback

    def set_on_drain_complete(self, callback: Callable[[DrainResult], None]) -> None:
        """Set callback invoked with the result of every drain request."""
        self._on_drain_complete = callback

    def drain(self) -> DrainResult:
        """Drain the queue.

        Never raises for per-item failures: they are logged, counted and
        retried on the next drain.

        Returns:
            What happened during this drain.
        """
        if not self._flight.acquire(blocking=False):
            logger.debug("Drain already in flight, skipping")
            return self._finish(DrainResult(outcome=DrainOutcome.SKIPPED_IN_FLIGHT))

        try:
            self._last_attempt = self._clock()
            result = self._drain_locked()
        finally:
            self._flight.release()
        return self._finish(result)

    def _finish(self, result: DrainResult) -> DrainResult:
        if self._on_drain_complete:
            try:
                self._on_drain_complete(result)
            except Exception:
                logger.exception("Drain completion callback failed")
        return result

    def _drain_locked(self) -> DrainResult:
        if not self._probe.probe_reachability():
            logger.info("Server unreachable, skipping sync")
            return DrainResult(outcome=DrainOutcome.SKIPPED_OFFLINE)

        if not self._dispatcher.has_token():
            logger.info("No credential available, skipping sync")
            return DrainResult(outcome=DrainOutcome.SKIPPED_NO_CREDENTIAL)

        if self._on_drain_start:
            try:
                self._on_drain_start()
            except Exception:
                logger.exception("Drain start callback failed")

        result = DrainResult()
        items = self._queue.items()
        logger.info("Draining %d queued changes", len(items))

        for snapshot in items:
            # Re-read: an inline dispatch may have completed or bumped it
            item = self._queue.get(snapshot.id)
            if item is None:
                continue

            state = self.process(item)
            if state == ItemState.DONE:
                result.succeeded.append(item.id)
            elif state == ItemState.DROPPED:
                result.dropped.append(item.id)
            else:
                result.failed.append(item.id)

        self._store.set_last_sync_at(now_iso())
        logger.info(
            "Sync finished: %d succeeded, %d failed, %d dropped",
            len(result.succeeded),
            len(result.failed),
            len(result.dropped),
        )
        return result

    def process(self, item: QueueItem) -> ItemState:
        """Dispatch one item and apply the outcome to queue and store.

        Returns:
            DONE, PENDING (retry later) or DROPPED.
        """
        try:
            echo = self._dispatcher.dispatch(item)
        except Exception as e:
            state = self._queue.record_failure(item, e)
            if state == ItemState.DROPPED:
                self._reconcile_dropped(item)
            return state

        self._queue.complete(item)
        self._reconcile_done(item, echo)
        return ItemState.DONE

    # === Local reconciliation ===

    def _stored_record_id(self, item: QueueItem) -> str | None:
        spec = ENTITIES.get(item.entity)
        if spec is None or not spec.is_stored:
            return None
        return item.record_id

    def _has_queued_changes(self, entity: str, record_id: str) -> bool:
        return any(
            other.entity == entity and other.record_id == record_id
            for other in self._queue.items()
        )

    def _reconcile_done(self, item: QueueItem, echo: Any = None) -> None:
        if item.action == QueueAction.DELETE:
            return
        record_id = self._stored_record_id(item)
        if record_id is None:
            return

        try:
            if item.action == QueueAction.CREATE and isinstance(echo, dict):
                record_id = self._adopt_server_copy(item.entity, record_id, echo)
            if self._has_queued_changes(item.entity, record_id):
                return
            record = self._store.get(item.entity, record_id)
            if record is not None:
                self._store.put(item.entity, record.mark_synced())
        except Exception:
            logger.exception("Failed to mark %s %s as synced", item.entity, record_id)

    def _adopt_server_copy(self, entity: str, record_id: str, echo: dict[str, Any]) -> str:
        """Replace the local row by the server's copy of a created record.

        Returns:
            The id the record is stored under afterwards.
        """
        server_id = echo.get("id")
        if not server_id or str(server_id) == record_id:
            return record_id

        record = self._store.get(entity, record_id)
        if record is None:
            return record_id

        adopted = Record.from_payload(
            {**record.to_request_body(), **echo},
            is_offline=record.is_offline,
            sync_status=record.sync_status,
            default_scope=record.patient_profile_id,
        )
        self._store.delete(entity, record_id)
        self._store.put(entity, adopted)
        self._store.rename_queued_record(entity, record_id, adopted.id)
        logger.info("Server assigned id %s to %s %s", adopted.id, entity, record_id)
        return adopted.id

    def _reconcile_dropped(self, item: QueueItem) -> None:
        record_id = self._stored_record_id(item)
        if record_id is None:
            return

        try:
            record = self._store.get(item.entity, record_id)
            if record is not None:
                self._store.put(item.entity, record.mark_failed())
        except Exception:
            logger.exception("Failed to mark %s %s as failed", item.entity, record_id)
