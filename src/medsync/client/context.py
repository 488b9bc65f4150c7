"""Wiring of the sync engine.

This module provides:
- SyncContext: Builds every component once and owns their lifecycle

Usage:
    with SyncContext(server_config, data_dir, token_provider, scope_provider) as ctx:
        ctx.repository.create("medications", scope_id, {...})
        ctx.status.sync.subscribe(on_status)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from medsync.client.api import RemoteAPI
from medsync.client.network import NetworkObserver
from medsync.client.repository import RecordRepository
from medsync.client.state import LocalStore
from medsync.client.status import StatusBoard
from medsync.client.sync import AutoSyncTrigger, SyncQueue, SyncWorker
from medsync.core.config import SyncSettings

if TYPE_CHECKING:
    import httpx

    from medsync.client.api import TokenProvider
    from medsync.client.sync.types import DrainResult
    from medsync.core.config import ServerConfig

logger = logging.getLogger(__name__)

DB_FILENAME = "medsync.db"


class SyncContextError(RuntimeError):
    """Component accessed before start() or after shutdown()."""


class SyncContext:
    """Owns the store, API client, observer, queue, worker and trigger."""

    def __init__(
        self,
        server_config: ServerConfig,
        data_dir: Path | str,
        token_provider: TokenProvider | None = None,
        scope_provider: Callable[[], str | None] | None = None,
        settings: SyncSettings | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the context (nothing is opened yet).

        Args:
            server_config: API connection settings.
            data_dir: Directory holding the local database.
            token_provider: Callable returning the bearer token.
            scope_provider: Callable returning the current patient profile
                id, used by the refresh after reconnection.
            settings: Sync engine tuning.
            transport: Optional httpx transport (used by tests).
        """
        self._server_config = server_config
        self._data_dir = Path(data_dir)
        self._token_provider = token_provider
        self._scope_provider = scope_provider or (lambda: None)
        self._settings = settings or SyncSettings()
        self._transport = transport

        self._store: LocalStore | None = None
        self._api: RemoteAPI | None = None
        self._observer: NetworkObserver | None = None
        self._queue: SyncQueue | None = None
        self._worker: SyncWorker | None = None
        self._trigger: AutoSyncTrigger | None = None
        self._repository: RecordRepository | None = None
        self.status = StatusBoard()

    @property
    def db_path(self) -> Path:
        """Get the path of the local database."""
        return self._data_dir / DB_FILENAME

    @property
    def started(self) -> bool:
        """Check if start() has been called."""
        return self._store is not None

    @property
    def store(self) -> LocalStore:
        """Get the local store."""
        if self._store is None:
            raise SyncContextError("SyncContext not started")
        return self._store

    @property
    def api(self) -> RemoteAPI:
        """Get the API client."""
        if self._api is None:
            raise SyncContextError("SyncContext not started")
        return self._api

    @property
    def observer(self) -> NetworkObserver:
        """Get the network observer."""
        if self._observer is None:
            raise SyncContextError("SyncContext not started")
        return self._observer

    @property
    def queue(self) -> SyncQueue:
        """Get the sync queue."""
        if self._queue is None:
            raise SyncContextError("SyncContext not started")
        return self._queue

    @property
    def worker(self) -> SyncWorker:
        """Get the sync worker."""
        if self._worker is None:
            raise SyncContextError("SyncContext not started")
        return self._worker

    @property
    def trigger(self) -> AutoSyncTrigger:
        """Get the autosync trigger."""
        if self._trigger is None:
            raise SyncContextError("SyncContext not started")
        return self._trigger

    @property
    def repository(self) -> RecordRepository:
        """Get the record repository."""
        if self._repository is None:
            raise SyncContextError("SyncContext not started")
        return self._repository

    # === Lifecycle ===

    def start(
        self,
        autosync: bool = True,
        poll: bool = False,
        initial_drain: bool = True,
    ) -> None:
        """Open the store, probe connectivity and start the triggers.

        Args:
            autosync: Start the reconnect/periodic triggers.
            poll: Poll connectivity in a background thread.
            initial_drain: Drain pending changes right away.
        """
        if self.started:
            return

        store = LocalStore(self.db_path)
        api = RemoteAPI(self._server_config, self._token_provider, self._transport)
        observer = NetworkObserver(api, self._settings)
        queue = SyncQueue(store, self._settings.max_retries)
        worker = SyncWorker(store, queue, api, observer)
        repository = RecordRepository(store, queue, api, observer, self.status)
        trigger = AutoSyncTrigger(
            worker, queue, observer, self._settings, refresh=self._refresh_scope
        )

        self._store = store
        self._api = api
        self._observer = observer
        self._queue = queue
        self._worker = worker
        self._repository = repository
        self._trigger = trigger

        worker.set_on_drain_start(self.status.drain_started)
        worker.set_on_drain_complete(self._on_drain_complete)
        observer.subscribe(lambda status: self.status.set_online(status.online))
        self.status.sync.update(
            pending=len(queue), last_sync_at=store.get_last_sync_at()
        )

        # Initial probe, before the trigger subscribes: not a reconnect edge
        observer.refresh()
        self.status.set_online(observer.is_online())

        if autosync:
            trigger.start()
        if poll:
            observer.start_polling()

        logger.info(
            "Sync context started (%s, %d queued changes)",
            self._server_config.server_url,
            len(queue),
        )

        if initial_drain and not queue.is_empty():
            worker.drain()

    def shutdown(self) -> None:
        """Stop triggers and polling, then close the HTTP client and store."""
        if not self.started:
            return

        if self._trigger is not None:
            self._trigger.shutdown()
        if self._observer is not None:
            self._observer.stop()
        if self._api is not None:
            self._api.close()
        if self._store is not None:
            self._store.close()

        self._store = None
        self._api = None
        self._observer = None
        self._queue = None
        self._worker = None
        self._trigger = None
        self._repository = None
        logger.info("Sync context stopped")

    def __enter__(self) -> SyncContext:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.shutdown()

    # === Operations ===

    def sync_now(self) -> DrainResult:
        """Drain the queue immediately."""
        return self.worker.drain()

    def logout(self) -> None:
        """Wipe every local table."""
        self.store.clear_all()
        for name in self.status.entities:
            self.status.publish_records(name, [])
        self.status.sync.update(pending=0, last_sync_at=None, last_error=None)
        logger.info("Logged out, local data cleared")

    def _refresh_scope(self) -> None:
        scope_id = self._scope_provider()
        if not scope_id:
            logger.debug("No current scope, skipping refresh")
            return
        self.repository.refresh_all(scope_id)

    def _on_drain_complete(self, result: DrainResult) -> None:
        self.status.drain_finished(
            result,
            pending=len(self.queue),
            last_sync_at=self.store.get_last_sync_at(),
        )
