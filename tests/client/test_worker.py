"""Tests for the sync worker."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from medsync.client.api import APIError, TransportError
from medsync.client.records import Record
from medsync.client.state import LocalStore
from medsync.client.sync.queue import SyncQueue
from medsync.client.sync.types import DrainOutcome, DrainResult, QueueItem
from medsync.client.sync.worker import SyncWorker
from medsync.core.types import QueueAction, SyncStatus


class MockDispatcher:
    """Mock API for testing: records dispatched items."""

    def __init__(
        self,
        token: str | None = "token",
        fail_with: Exception | None = None,
        on_dispatch: Callable[[QueueItem], None] | None = None,
        echo: Any = None,
    ) -> None:
        self.token = token
        self.echo = echo
        self.fail_with = fail_with
        self.on_dispatch = on_dispatch
        self.dispatched: list[QueueItem] = []

    def has_token(self) -> bool:
        return self.token is not None

    def dispatch(self, item: QueueItem) -> Any:
        self.dispatched.append(item)
        if self.on_dispatch:
            self.on_dispatch(item)
        if self.fail_with is not None:
            raise self.fail_with
        return self.echo


class MockProbe:
    """Mock reachability probe."""

    def __init__(self, reachable: bool = True) -> None:
        self.reachable = reachable
        self.calls = 0

    def probe_reachability(self) -> bool:
        self.calls += 1
        return self.reachable


def make_record(record_id: str, is_offline: bool = True, **fields: object) -> Record:
    """Create a pending Record for testing."""
    return Record(
        id=record_id,
        patient_profile_id="p1",
        created_at="2025-01-01T10:00:00.000Z",
        updated_at="2025-01-01T10:00:00.000Z",
        is_offline=is_offline,
        sync_status=SyncStatus.PENDING,
        fields=dict(fields),
    )


@pytest.fixture
def store(tmp_path: Path) -> Iterator[LocalStore]:
    """Create a LocalStore instance."""
    s = LocalStore(tmp_path / "medsync.db")
    yield s
    s.close()


@pytest.fixture
def queue(store: LocalStore) -> SyncQueue:
    """Create a SyncQueue over the store."""
    return SyncQueue(store)


class TestGating:
    """Tests for the conditions checked before a drain."""

    def test_skipped_when_unreachable(self, store: LocalStore, queue: SyncQueue) -> None:
        """Nothing should be sent when the probe fails."""
        queue.enqueue(QueueAction.CREATE, "notes", {"id": "n1"})
        api = MockDispatcher()
        worker = SyncWorker(store, queue, api, MockProbe(reachable=False))

        result = worker.drain()

        assert result.outcome == DrainOutcome.SKIPPED_OFFLINE
        assert result.skipped is True
        assert api.dispatched == []
        assert len(queue) == 1

    def test_skipped_without_token(self, store: LocalStore, queue: SyncQueue) -> None:
        """Nothing should be sent without a credential."""
        queue.enqueue(QueueAction.CREATE, "notes", {"id": "n1"})
        api = MockDispatcher(token=None)
        worker = SyncWorker(store, queue, api, MockProbe())

        result = worker.drain()

        assert result.outcome == DrainOutcome.SKIPPED_NO_CREDENTIAL
        assert api.dispatched == []

    def test_skipped_drain_keeps_last_sync(self, store: LocalStore, queue: SyncQueue) -> None:
        """Skipped drains should not record a sync time."""
        worker = SyncWorker(store, queue, MockDispatcher(), MockProbe(reachable=False))

        worker.drain()

        assert store.get_last_sync_at() is None

    def test_empty_queue_completes(self, store: LocalStore, queue: SyncQueue) -> None:
        """Draining an empty queue is a completed no-op."""
        worker = SyncWorker(store, queue, MockDispatcher(), MockProbe())

        result = worker.drain()

        assert result.outcome == DrainOutcome.COMPLETED
        assert result.attempted == 0
        assert store.get_last_sync_at() is not None


class TestDrain:
    """Tests for dispatching queued items."""

    def test_fifo_across_entities(self, store: LocalStore, queue: SyncQueue) -> None:
        """Items should be dispatched in insertion order."""
        ids = [
            queue.enqueue(QueueAction.CREATE, "medications", {"id": "m1"}).id,
            queue.enqueue(QueueAction.UPDATE, "notes", {"id": "n1"}).id,
            queue.enqueue(QueueAction.DELETE, "appointments", {"id": "a1"}).id,
        ]
        api = MockDispatcher()
        worker = SyncWorker(store, queue, api, MockProbe())

        result = worker.drain()

        assert [item.id for item in api.dispatched] == ids
        assert result.succeeded == ids
        assert queue.is_empty()

    def test_success_marks_record_synced(self, store: LocalStore, queue: SyncQueue) -> None:
        """A confirmed create should clear the offline flag."""
        store.put("medications", make_record("m1", name="Aspirin"))
        queue.enqueue(QueueAction.CREATE, "medications", {"id": "m1", "name": "Aspirin"})
        worker = SyncWorker(store, queue, MockDispatcher(), MockProbe())

        worker.drain()

        record = store.get("medications", "m1")
        assert record is not None
        assert record.is_offline is False
        assert record.sync_status == SyncStatus.SYNCED

    def test_server_assigned_id_replaces_local_row(
        self, store: LocalStore, queue: SyncQueue
    ) -> None:
        """A drained create echoed with a new id is stored under that id."""
        store.put("notes", make_record("local-1", title="x"))
        queue.enqueue(QueueAction.CREATE, "notes", {"id": "local-1", "title": "x"})
        api = MockDispatcher(echo={"id": "srv-1", "title": "x"})
        worker = SyncWorker(store, queue, api, MockProbe())

        worker.drain()

        assert store.get("notes", "local-1") is None
        record = store.get("notes", "srv-1")
        assert record is not None
        assert record.sync_status == SyncStatus.SYNCED
        assert record.is_offline is False
        assert record.fields["title"] == "x"

    def test_queued_changes_follow_server_id(
        self, store: LocalStore, queue: SyncQueue
    ) -> None:
        """Later queued changes of a created record target the server id."""
        store.put("notes", make_record("local-1", title="x"))
        queue.enqueue(QueueAction.CREATE, "notes", {"id": "local-1", "title": "x"})
        queue.enqueue(QueueAction.UPDATE, "notes", {"id": "local-1", "title": "y"})

        def echo_create(item: QueueItem) -> None:
            api.echo = {"id": "srv-1"} if item.action == QueueAction.CREATE else None

        api = MockDispatcher(on_dispatch=echo_create)
        worker = SyncWorker(store, queue, api, MockProbe())

        worker.drain()

        assert [item.record_id for item in api.dispatched] == ["local-1", "srv-1"]
        record = store.get("notes", "srv-1")
        assert record is not None
        assert record.sync_status == SyncStatus.SYNCED

    def test_record_stays_pending_while_changes_queued(
        self, store: LocalStore, queue: SyncQueue
    ) -> None:
        """A record with a later failing change should not be marked synced."""
        store.put("notes", make_record("n1"))
        queue.enqueue(QueueAction.CREATE, "notes", {"id": "n1"})
        queue.enqueue(QueueAction.UPDATE, "notes", {"id": "n1", "title": "v2"})

        def fail_updates(item: QueueItem) -> None:
            if item.action == QueueAction.UPDATE:
                raise APIError("Bad gateway", 502)

        api = MockDispatcher(on_dispatch=fail_updates)
        worker = SyncWorker(store, queue, api, MockProbe())

        result = worker.drain()

        assert len(result.succeeded) == 1
        assert len(result.failed) == 1
        record = store.get("notes", "n1")
        assert record is not None
        assert record.sync_status == SyncStatus.PENDING

    def test_failure_bumps_retry(self, store: LocalStore, queue: SyncQueue) -> None:
        """A failed item should stay queued with one more retry."""
        item = queue.enqueue(QueueAction.UPDATE, "notes", {"id": "n1"})
        worker = SyncWorker(
            store, queue, MockDispatcher(fail_with=TransportError("timeout")), MockProbe()
        )

        result = worker.drain()

        assert result.failed == [item.id]
        stored = queue.get(item.id)
        assert stored is not None
        assert stored.retry_count == 1

    def test_failure_does_not_stop_drain(self, store: LocalStore, queue: SyncQueue) -> None:
        """Later items should still be attempted after a failure."""
        first = queue.enqueue(QueueAction.UPDATE, "notes", {"id": "n1"})
        second = queue.enqueue(QueueAction.UPDATE, "notes", {"id": "n2"})

        def fail_first(item: QueueItem) -> None:
            if item.id == first.id:
                raise APIError("Server error", 500)

        worker = SyncWorker(store, queue, MockDispatcher(on_dispatch=fail_first), MockProbe())

        result = worker.drain()

        assert result.failed == [first.id]
        assert result.succeeded == [second.id]
        assert [item.id for item in queue.items()] == [first.id]

    def test_unknown_entity_fails_closed(self, store: LocalStore, queue: SyncQueue) -> None:
        """Unroutable items count as failures and are eventually dropped."""
        from medsync.client.entities import UnknownEntityError

        queue.enqueue(QueueAction.CREATE, "invoices", {"id": "i1"})
        api = MockDispatcher(fail_with=UnknownEntityError("invoices"))
        worker = SyncWorker(store, queue, api, MockProbe())

        outcomes = [worker.drain() for _ in range(3)]

        assert [len(r.failed) for r in outcomes] == [1, 1, 0]
        assert len(outcomes[2].dropped) == 1
        assert queue.is_empty()

    def test_item_removed_mid_drain_is_skipped(
        self, store: LocalStore, queue: SyncQueue
    ) -> None:
        """Items dequeued by someone else during a drain are not re-sent."""
        first = queue.enqueue(QueueAction.UPDATE, "notes", {"id": "n1"})
        second = queue.enqueue(QueueAction.UPDATE, "notes", {"id": "n2"})

        def remove_second(item: QueueItem) -> None:
            if item.id == first.id:
                store.dequeue(second.id)

        api = MockDispatcher(on_dispatch=remove_second)
        worker = SyncWorker(store, queue, api, MockProbe())

        result = worker.drain()

        assert [item.id for item in api.dispatched] == [first.id]
        assert result.attempted == 1


class TestScenarios:
    """End-to-end drain scenarios."""

    def test_create_dropped_after_three_failures(
        self, store: LocalStore, queue: SyncQueue
    ) -> None:
        """CREATE medications failing with 500 three times is dropped.

        The dropped record is kept locally and flagged as failed.
        """
        store.put("medications", make_record("m1", name="Aspirin"))
        queue.enqueue(QueueAction.CREATE, "medications", {"id": "m1", "name": "Aspirin"})
        api = MockDispatcher(fail_with=APIError("Server error", 500))
        worker = SyncWorker(store, queue, api, MockProbe())

        retries = []
        for _ in range(3):
            worker.drain()
            items = queue.items()
            retries.append(items[0].retry_count if items else None)

        assert retries == [1, 2, None]
        assert queue.is_empty()
        record = store.get("medications", "m1")
        assert record is not None
        assert record.sync_status == SyncStatus.FAILED

    def test_offline_updates_replayed_on_reconnect(
        self, store: LocalStore, queue: SyncQueue
    ) -> None:
        """Two offline note updates should both be sent once online."""
        for note_id in ("n1", "n2"):
            store.put("notes", make_record(note_id, is_offline=False, title="edited"))
            queue.enqueue(QueueAction.UPDATE, "notes", {"id": note_id, "title": "edited"})

        probe = MockProbe(reachable=False)
        api = MockDispatcher()
        worker = SyncWorker(store, queue, api, probe)

        assert worker.drain().outcome == DrainOutcome.SKIPPED_OFFLINE
        probe.reachable = True
        result = worker.drain()

        assert len(result.succeeded) == 2
        assert queue.is_empty()
        for note_id in ("n1", "n2"):
            record = store.get("notes", note_id)
            assert record is not None
            assert record.sync_status == SyncStatus.SYNCED


class TestSingleFlight:
    """Tests for the single-flight guard."""

    def test_concurrent_drain_skipped(self, store: LocalStore, queue: SyncQueue) -> None:
        """A drain requested while one runs should be skipped."""
        queue.enqueue(QueueAction.UPDATE, "notes", {"id": "n1"})
        entered = threading.Event()
        release = threading.Event()

        def block(item: QueueItem) -> None:
            entered.set()
            release.wait(timeout=5.0)

        api = MockDispatcher(on_dispatch=block)
        worker = SyncWorker(store, queue, api, MockProbe())

        results: list[DrainResult] = []
        thread = threading.Thread(target=lambda: results.append(worker.drain()))
        thread.start()
        try:
            assert entered.wait(timeout=5.0)
            assert worker.in_flight is True

            second = worker.drain()
            assert second.outcome == DrainOutcome.SKIPPED_IN_FLIGHT
        finally:
            release.set()
            thread.join(timeout=5.0)

        assert results[0].outcome == DrainOutcome.COMPLETED
        assert len(api.dispatched) == 1
        assert worker.in_flight is False

    def test_callbacks(self, store: LocalStore, queue: SyncQueue) -> None:
        """Start and completion callbacks should fire around a drain."""
        events: list[str] = []
        worker = SyncWorker(store, queue, MockDispatcher(), MockProbe())
        worker.set_on_drain_start(lambda: events.append("start"))
        worker.set_on_drain_complete(lambda result: events.append(result.outcome.name))

        worker.drain()

        assert events == ["start", "COMPLETED"]

    def test_last_attempt_uses_clock(self, store: LocalStore, queue: SyncQueue) -> None:
        """The last attempt should be stamped with the injected clock."""
        worker = SyncWorker(store, queue, MockDispatcher(), MockProbe(), clock=lambda: 42.0)
        assert worker.last_attempt is None

        worker.drain()

        assert worker.last_attempt == 42.0
