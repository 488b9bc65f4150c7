"""Offline queue draining.

Architecture:
    Repository ─enqueue─► SyncQueue ◄─drain─ SyncWorker ◄─ AutoSyncTrigger
                              │                  │               ▲
                         LocalStore          RemoteAPI     NetworkObserver

Components:
- **SyncQueue**: Durable FIFO of pending mutations with a retry ceiling
- **SyncWorker**: Single-flight drain against the remote API
- **AutoSyncTrigger**: Reconnect-edge and periodic drains
- **retry_with_delay**: Bounded fixed-delay retry used for refreshes
"""

from medsync.client.sync.queue import SyncQueue
from medsync.client.sync.retry import (
    DEFAULT_DELAY,
    DEFAULT_MAX_RETRIES,
    RetryAborted,
    retry_with_delay,
)
from medsync.client.sync.trigger import AutoSyncTrigger
from medsync.client.sync.types import (
    DrainOutcome,
    DrainResult,
    ItemState,
    QueueItem,
    SyncError,
)
from medsync.client.sync.worker import DispatcherProtocol, ProbeProtocol, SyncWorker

__all__ = [
    # Queue
    "SyncQueue",
    # Retry
    "DEFAULT_DELAY",
    "DEFAULT_MAX_RETRIES",
    "RetryAborted",
    "retry_with_delay",
    # Trigger
    "AutoSyncTrigger",
    # Types
    "DrainOutcome",
    "DrainResult",
    "ItemState",
    "QueueItem",
    "SyncError",
    # Worker
    "DispatcherProtocol",
    "ProbeProtocol",
    "SyncWorker",
]
