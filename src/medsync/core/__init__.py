"""Core module - Shared configuration and enums."""

from medsync.core.config import MAX_SYNC_RETRIES, ServerConfig, SyncSettings
from medsync.core.types import QueueAction, SyncState, SyncStatus

__all__ = [
    # Config
    "MAX_SYNC_RETRIES",
    "ServerConfig",
    "SyncSettings",
    # Types
    "QueueAction",
    "SyncState",
    "SyncStatus",
]
