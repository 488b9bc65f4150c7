"""Shared types for medsync.

This module defines enums used across the store, the sync worker and the
state holders.
"""

from __future__ import annotations

from enum import Enum


class SyncState(str, Enum):
    """Overall state of the sync engine, as shown to the UI."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"


class SyncStatus(str, Enum):
    """Sync status of a single stored record."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class QueueAction(str, Enum):
    """Mutation carried by a queue item."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
