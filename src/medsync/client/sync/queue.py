"""Pending-change queue.

This module provides:
- SyncQueue: Ordered, durable list of mutations waiting for the server

Items live in the LocalStore's sync_queue table; the queue object only adds
the retry bookkeeping on top:

    enqueue ──► Pending ──dispatch──► Done (dequeued)
                   ▲                    │
                   └── retry + 1 ◄──────┤ failure
                                        └─► Dropped once retryCount >= ceiling

Order is strict insertion order across all entity types. A failed item keeps
its position, so it is retried before anything queued after it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from medsync.client.sync.types import ItemState, QueueItem
from medsync.core.config import MAX_SYNC_RETRIES
from medsync.core.types import QueueAction

if TYPE_CHECKING:
    from medsync.client.state import LocalStore

logger = logging.getLogger(__name__)


class SyncQueue:
    """Durable FIFO of pending mutations with a retry ceiling."""

    def __init__(self, store: LocalStore, max_retries: int = MAX_SYNC_RETRIES) -> None:
        """Initialize the queue.

        Args:
            store: Local store holding the sync_queue table.
            max_retries: Failed attempts after which an item is dropped.
        """
        self._store = store
        self._max_retries = max_retries

    @property
    def max_retries(self) -> int:
        """Get the retry ceiling."""
        return self._max_retries

    def enqueue(
        self,
        action: QueueAction,
        entity: str,
        payload: dict[str, Any],
    ) -> QueueItem:
        """Append a mutation to the end of the queue.

        Returns:
            The persisted item.
        """
        item = QueueItem.create(action, entity, payload)
        self._store.enqueue(item)
        logger.info("Queued %s %s (%s)", item.action.value, entity, item.record_id)
        return item

    def items(self) -> list[QueueItem]:
        """Get all items in drain order."""
        return self._store.drainable()

    def get(self, item_id: str) -> QueueItem | None:
        """Get a queued item by id."""
        return self._store.get_queue_item(item_id)

    def __len__(self) -> int:
        return self._store.queue_length()

    def is_empty(self) -> bool:
        """Check if nothing is waiting to be sent."""
        return len(self) == 0

    def complete(self, item: QueueItem) -> ItemState:
        """Remove an item confirmed by the server."""
        self._store.dequeue(item.id)
        logger.debug("Completed %r", item)
        return ItemState.DONE

    def record_failure(self, item: QueueItem, error: BaseException | str) -> ItemState:
        """Count a failed attempt.

        The retry counter is incremented in place; once it reaches the
        ceiling the item is removed for good.

        Returns:
            ItemState.PENDING if the item stays queued, ItemState.DROPPED
            otherwise.
        """
        retry_count = item.retry_count + 1
        if retry_count >= self._max_retries:
            self._store.dequeue(item.id)
            logger.warning(
                "Dropping %s %s (%s) after %d failed attempts: %s",
                item.action.value,
                item.entity,
                item.record_id,
                retry_count,
                error,
            )
            return ItemState.DROPPED

        self._store.bump_retry(item.id, retry_count)
        logger.warning(
            "Attempt %d/%d of %s %s failed: %s",
            retry_count,
            self._max_retries,
            item.action.value,
            item.entity,
            error,
        )
        return ItemState.PENDING

    def clear(self) -> int:
        """Drop every queued item.

        Returns:
            Number of items removed.
        """
        return self._store.clear_queue()
