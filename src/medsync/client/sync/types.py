"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError: Base exception for sync-layer failures
- QueueItem: A durable pending mutation
- ItemState: Lifecycle state of a queue item during a drain
- DrainOutcome, DrainResult: Result of one pass of the sync worker
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass, field, replace
from enum import IntEnum, auto
from typing import Any

from medsync.client.records import now_iso
from medsync.core.types import QueueAction


class SyncError(Exception):
    """Base exception for sync errors."""


# =============================================================================
# Queue Types
# =============================================================================


class ItemState(IntEnum):
    """Lifecycle of a queue item.

    Pending -> InFlight -> {Done | Pending(retry+1) | Dropped}
    """

    PENDING = auto()
    IN_FLIGHT = auto()
    DONE = auto()
    DROPPED = auto()


@dataclass(frozen=True)
class QueueItem:
    """A pending mutation waiting to be confirmed by the server.

    Attributes:
        id: Unique queue item id (distinct from the record id).
        action: CREATE, UPDATE or DELETE.
        entity: Entity tag (e.g., "medications").
        payload: Record snapshot or partial patch.
        created_at: ISO-8601 timestamp of enqueueing.
        retry_count: Failed dispatch attempts so far.
    """

    id: str
    action: QueueAction
    entity: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    retry_count: int = 0

    @classmethod
    def create(
        cls,
        action: QueueAction,
        entity: str,
        payload: dict[str, Any],
    ) -> QueueItem:
        """Create a new QueueItem with auto-generated id and timestamp.

        Args:
            action: The mutation to replay
            entity: Entity tag
            payload: Data sent with the request

        Returns:
            A new QueueItem with retry_count 0
        """
        return cls(
            id=f"sync_{uuid.uuid4().hex}",
            action=QueueAction(action),
            entity=entity,
            payload=dict(payload),
            created_at=now_iso(),
            retry_count=0,
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> QueueItem:
        """Create QueueItem from database row."""
        return cls(
            id=row["id"],
            action=QueueAction(row["action"]),
            entity=row["entity"],
            payload=json.loads(row["data"]),
            created_at=row["createdAt"],
            retry_count=row["retryCount"],
        )

    @property
    def record_id(self) -> str | None:
        """Get the id of the record this item mutates, if any."""
        record_id = self.payload.get("id")
        return str(record_id) if record_id else None

    def with_retry(self, retry_count: int) -> QueueItem:
        """Return a copy with an updated retry counter."""
        return replace(self, retry_count=retry_count)

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"QueueItem({self.action.value} {self.entity}, "
            f"id={self.id!r}, retries={self.retry_count})"
        )


# =============================================================================
# Worker Types
# =============================================================================


class DrainOutcome(IntEnum):
    """How a drain request ended."""

    COMPLETED = auto()
    SKIPPED_IN_FLIGHT = auto()  # Another drain was running
    SKIPPED_OFFLINE = auto()  # Reachability probe failed
    SKIPPED_NO_CREDENTIAL = auto()  # No bearer token available


@dataclass
class DrainResult:
    """Result of one drain of the sync queue."""

    outcome: DrainOutcome = DrainOutcome.COMPLETED
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        """Check if the drain did not run at all."""
        return self.outcome != DrainOutcome.COMPLETED

    @property
    def attempted(self) -> int:
        """Number of items dispatched during this drain."""
        return len(self.succeeded) + len(self.failed) + len(self.dropped)
