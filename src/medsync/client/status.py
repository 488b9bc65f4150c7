"""Observable state for the UI layer.

This module provides:
- StateHolder: Thread-safe value holder with subscribe/unsubscribe
- EntityListState: Records shown for one entity (plus loading/error flags)
- SyncStatusSnapshot: Global sync status (state, online, pending count)
- StatusBoard: One holder per entity plus the global sync status holder

Architecture:
    Repository / SyncWorker ──set()──► StateHolder ──callback──► UI
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, Generic, TypeVar

from medsync.client.entities import stored_entities
from medsync.client.records import Record
from medsync.client.sync.types import DrainOutcome, DrainResult
from medsync.core.types import SyncState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StateHolder(Generic[T]):
    """Holds a value and notifies subscribers when it is replaced."""

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[T], None]] = []

    def snapshot(self) -> T:
        """Get the current value."""
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        """Replace the value and notify subscribers."""
        with self._lock:
            self._value = value
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(value)
            except Exception:
                logger.exception("State subscriber failed")

    def update(self, **changes: Any) -> T:
        """Replace fields of a dataclass value and notify subscribers."""
        with self._lock:
            value = replace(self._value, **changes)
        self.set(value)
        return value

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register a callback for value changes.

        Returns:
            A callable that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe


@dataclass(frozen=True)
class EntityListState:
    """Records of one entity as last loaded.

    Attributes:
        records: Records in display order.
        loading: A fetch is in progress.
        error: Message of the last failed operation, if any.
    """

    records: tuple[Record, ...] = ()
    loading: bool = False
    error: str | None = None


@dataclass(frozen=True)
class SyncStatusSnapshot:
    """Global sync status.

    Attributes:
        state: idle, syncing, error or offline.
        online: Last known connectivity.
        pending: Number of queued changes.
        last_sync_at: ISO timestamp of the last completed drain.
        last_error: Message of the last failure, if any.
    """

    state: SyncState = SyncState.IDLE
    online: bool = False
    pending: int = 0
    last_sync_at: str | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, str | int | bool | None]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "state": self.state.value,
            "online": self.online,
            "pending": self.pending,
            "last_sync_at": self.last_sync_at,
            "last_error": self.last_error,
        }


@dataclass
class StatusBoard:
    """All state holders exposed to the UI."""

    sync: StateHolder[SyncStatusSnapshot] = field(
        default_factory=lambda: StateHolder(SyncStatusSnapshot())
    )
    entities: dict[str, StateHolder[EntityListState]] = field(
        default_factory=lambda: {
            spec.name: StateHolder(EntityListState()) for spec in stored_entities()
        }
    )

    def entity(self, name: str) -> StateHolder[EntityListState]:
        """Get the holder of an entity's record list."""
        return self.entities[name]

    def publish_records(self, entity: str, records: list[Record]) -> None:
        """Publish a freshly loaded record list."""
        self.entity(entity).set(EntityListState(records=tuple(records)))

    def publish_loading(self, entity: str) -> None:
        """Flag an entity as loading."""
        self.entity(entity).update(loading=True, error=None)

    def publish_error(self, entity: str, error: BaseException | str) -> None:
        """Record a failed operation on an entity."""
        self.entity(entity).update(loading=False, error=str(error))

    def set_online(self, online: bool) -> None:
        """Update connectivity, switching between offline and idle."""
        current = self.sync.snapshot()
        if online:
            state = SyncState.IDLE if current.state == SyncState.OFFLINE else current.state
        else:
            state = SyncState.OFFLINE
        self.sync.update(online=online, state=state)

    def set_pending(self, pending: int) -> None:
        """Update the queued change count."""
        self.sync.update(pending=pending)

    def drain_started(self) -> None:
        """Flag a running drain."""
        self.sync.update(state=SyncState.SYNCING, last_error=None)

    def drain_finished(
        self,
        result: DrainResult,
        pending: int,
        last_sync_at: str | None,
    ) -> None:
        """Publish the outcome of a drain request."""
        if result.outcome == DrainOutcome.SKIPPED_IN_FLIGHT:
            return
        if result.outcome == DrainOutcome.SKIPPED_OFFLINE:
            self.sync.update(state=SyncState.OFFLINE, online=False, pending=pending)
            return
        if result.outcome == DrainOutcome.SKIPPED_NO_CREDENTIAL:
            self.sync.update(
                state=SyncState.IDLE, pending=pending, last_error="Not signed in"
            )
            return

        if result.failed or result.dropped:
            error = (
                f"{len(result.failed)} changes failed, "
                f"{len(result.dropped)} dropped"
            )
            state = SyncState.ERROR
        else:
            error = None
            state = SyncState.IDLE
        self.sync.update(
            state=state,
            online=True,
            pending=pending,
            last_sync_at=last_sync_at,
            last_error=error,
        )
