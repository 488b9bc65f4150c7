"""UI-facing record operations.

This module provides:
- RecordRepository: create/update/delete/fetch of records, offline-first
- RecordNotFoundError: Update of a record missing from the local store

Write path:
    | Operation | Online + token                        | Offline or no token     |
    |-----------|---------------------------------------|-------------------------|
    | create    | store pending, POST, store echo       | store offline, queue    |
    |           | (failure: queue CREATE, raise)        | CREATE                  |
    | update    | store, queue UPDATE, send it now      | store, queue UPDATE     |
    | delete    | delete, queue DELETE, send it now     | delete, queue DELETE    |

A queued change is only sent inline when nothing older is queued for the
same record, so replay order per record is always the queue order.

Read path (fetch):
    server records (upserted as synced) + local offline-only records,
    or the local contents unchanged when offline or on any failure.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from medsync.client.api import APIError
from medsync.client.entities import get_entity, get_stored_entity, stored_entities
from medsync.client.records import COMMON_KEYS, Record, new_record_id, now_iso
from medsync.client.sync.types import ItemState
from medsync.core.types import QueueAction, SyncStatus

if TYPE_CHECKING:
    from medsync.client.api import RemoteAPI
    from medsync.client.network import NetworkObserver
    from medsync.client.state import LocalStore
    from medsync.client.status import StatusBoard
    from medsync.client.sync.queue import SyncQueue
    from medsync.client.sync.types import QueueItem

logger = logging.getLogger(__name__)


class RecordNotFoundError(LookupError):
    """Record is not in the local store."""

    def __init__(self, entity: str, record_id: str) -> None:
        super().__init__(f"{entity} record not found: {record_id}")
        self.entity = entity
        self.record_id = record_id


class RecordRepository:
    """Offline-first CRUD over the local store, queue and remote API."""

    def __init__(
        self,
        store: LocalStore,
        queue: SyncQueue,
        api: RemoteAPI,
        observer: NetworkObserver,
        status: StatusBoard | None = None,
    ) -> None:
        """Initialize the repository.

        Args:
            store: Local durable store.
            queue: Pending-change queue.
            api: Remote API client.
            observer: Connectivity source for the online decision.
            status: Optional state holders to publish to.
        """
        self._store = store
        self._queue = queue
        self._api = api
        self._observer = observer
        self._status = status

    def can_reach_server(self) -> bool:
        """Check if remote calls should be attempted right now."""
        return self._observer.is_online() and self._api.has_token()

    # === Write path ===

    def create(self, entity: str, scope_id: str, fields: dict[str, Any]) -> Record:
        """Create a record.

        Args:
            entity: Stored entity tag.
            scope_id: Patient profile id owning the record.
            fields: Entity fields.

        Returns:
            The stored record (the server's copy when confirmed online).

        Raises:
            APIError: If the online create failed; the record stays stored
                and the create is queued.
        """
        get_stored_entity(entity)
        now = now_iso()
        online = self.can_reach_server()
        record = Record(
            id=new_record_id(),
            patient_profile_id=scope_id,
            created_at=now,
            updated_at=now,
            is_offline=not online,
            sync_status=SyncStatus.PENDING,
            fields=_entity_fields(fields),
        )
        self._store.put(entity, record)

        if not online:
            self._queue.enqueue(QueueAction.CREATE, entity, record.to_request_body())
            logger.info("Created %s %s offline", entity, record.id)
            self._publish(entity, scope_id)
            return record

        body = record.to_request_body()
        try:
            echo = self._api.create_record(entity, body)
        except APIError:
            # Unconfirmed: keep it in the offline-only part of fetch results
            self._store.put(entity, replace(record, is_offline=True))
            self._queue.enqueue(QueueAction.CREATE, entity, body)
            self._publish(entity, scope_id)
            raise

        confirmed = Record.from_payload(
            {**body, **echo},
            is_offline=False,
            sync_status=SyncStatus.SYNCED,
            default_scope=scope_id,
        )
        if confirmed.id != record.id:
            self._store.delete(entity, record.id)
        self._store.put(entity, confirmed)
        logger.info("Created %s %s", entity, confirmed.id)
        self._publish(entity, scope_id)
        return confirmed

    def update(self, entity: str, record_id: str, patch: dict[str, Any]) -> Record:
        """Apply a partial update to a record.

        Raises:
            RecordNotFoundError: If the record is not stored locally.
            APIError: If the inline send failed; the change stays queued.
        """
        get_stored_entity(entity)
        existing = self._store.get(entity, record_id)
        if existing is None:
            raise RecordNotFoundError(entity, record_id)

        updated = replace(
            existing,
            fields={**existing.fields, **_entity_fields(patch)},
            updated_at=now_iso(),
            is_offline=True,  # until the server confirms it
            sync_status=SyncStatus.PENDING,
        )
        self._store.put(entity, updated)
        item = self._queue.enqueue(QueueAction.UPDATE, entity, updated.to_request_body())

        try:
            if self._send_now(item):
                current = self._store.get(entity, record_id)
                if current is not None and not self._has_queued_changes(
                    entity, record_id
                ):
                    updated = current.mark_synced()
                    self._store.put(entity, updated)
        finally:
            self._publish(entity, existing.patient_profile_id)
        return updated

    def delete(self, entity: str, record_id: str) -> None:
        """Delete a record locally and on the server.

        Deleting a record that is not stored is not an error.

        Raises:
            APIError: If the inline send failed; the delete stays queued.
        """
        get_stored_entity(entity)
        existing = self._store.get(entity, record_id)
        self._store.delete(entity, record_id)
        item = self._queue.enqueue(QueueAction.DELETE, entity, {"id": record_id})

        try:
            self._send_now(item)
        finally:
            if existing is not None:
                self._publish(entity, existing.patient_profile_id)

    # === Notifications (queue-only) ===

    def update_notification(
        self,
        notification_id: str,
        operation: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> QueueItem:
        """Queue a change to a server-side notification.

        Args:
            notification_id: Notification id.
            operation: "READ", "ARCHIVE" or None for a plain patch.
            data: Patch body when operation is None.
        """
        get_entity("notifications")
        item = self._queue.enqueue(
            QueueAction.UPDATE,
            "notifications",
            {"id": notification_id, "operation": operation, "data": data},
        )
        try:
            self._send_now(item)
        finally:
            self._publish_pending()
        return item

    def mark_notification_read(self, notification_id: str) -> QueueItem:
        """Mark a notification as read."""
        return self.update_notification(notification_id, operation="READ")

    def archive_notification(self, notification_id: str) -> QueueItem:
        """Archive a notification."""
        return self.update_notification(notification_id, operation="ARCHIVE")

    # === Read path ===

    def list_local(self, entity: str, scope_id: str) -> list[Record]:
        """Get the locally stored records of a scope."""
        return self._store.list(entity, scope_id)

    def fetch(self, entity: str, scope_id: str) -> list[Record]:
        """Get the records of a scope, refreshed from the server when possible.

        Never raises for connectivity or server failures: the local
        contents are returned instead.
        """
        get_stored_entity(entity)
        if self._status:
            self._status.publish_loading(entity)

        if not self.can_reach_server():
            records = self._store.list(entity, scope_id)
        else:
            try:
                records = self.refresh(entity, scope_id)
            except (APIError, KeyError, ValueError) as e:
                logger.warning("Fetching %s failed, using local data: %s", entity, e)
                records = self._store.list(entity, scope_id)

        if self._status:
            self._status.publish_records(entity, records)
        return records

    def refresh(self, entity: str, scope_id: str) -> list[Record]:
        """Pull a scope from the server and merge it into the store.

        Returns:
            Server records followed by local offline-only records.

        Raises:
            APIError: If the server could not be read.
        """
        items = self._api.list_records(entity, scope_id)
        server_records = [
            Record.from_payload(
                item,
                is_offline=False,
                sync_status=SyncStatus.SYNCED,
                default_scope=scope_id,
            )
            for item in items
        ]
        self._store.put_many(entity, server_records)

        server_ids = {record.id for record in server_records}
        offline_only = [
            record
            for record in self._store.list(entity, scope_id)
            if record.is_offline and record.id not in server_ids
        ]
        logger.debug(
            "Refreshed %s: %d from server, %d offline",
            entity,
            len(server_records),
            len(offline_only),
        )
        return server_records + offline_only

    def refresh_all(self, scope_id: str) -> None:
        """Refresh every stored entity of a scope.

        Does nothing while offline or signed out.

        Raises:
            APIError: On the first entity that could not be read.
        """
        if not self.can_reach_server():
            logger.debug("Not refreshing %s: offline or signed out", scope_id)
            return
        for spec in stored_entities():
            records = self.refresh(spec.name, scope_id)
            if self._status:
                self._status.publish_records(spec.name, records)

    # === Helpers ===

    def _has_queued_changes(
        self, entity: str, record_id: str, before: QueueItem | None = None
    ) -> bool:
        """Check for queued items of a record (optionally only older ones)."""
        for other in self._queue.items():
            if before is not None and other.id == before.id:
                return False
            if other.entity == entity and other.record_id == record_id:
                return True
        return False

    def _send_now(self, item: QueueItem) -> bool:
        """Send a just-queued item if online and nothing older blocks it.

        Returns:
            True if the server confirmed it.

        Raises:
            APIError: If the server rejected it (the failure is counted).
        """
        if not self.can_reach_server():
            return False
        if item.record_id and self._has_queued_changes(
            item.entity, item.record_id, before=item
        ):
            logger.debug("Older changes queued for %s, deferring %r", item.record_id, item)
            return False

        try:
            self._api.dispatch(item)
        except APIError as e:
            if self._queue.record_failure(item, e) == ItemState.DROPPED:
                self._mark_failed(item)
            raise

        self._queue.complete(item)
        return True

    def _mark_failed(self, item: QueueItem) -> None:
        spec = get_entity(item.entity)
        if not spec.is_stored or not item.record_id:
            return
        record = self._store.get(item.entity, item.record_id)
        if record is not None:
            self._store.put(item.entity, record.mark_failed())

    def _publish(self, entity: str, scope_id: str) -> None:
        if self._status:
            self._status.publish_records(entity, self._store.list(entity, scope_id))
        self._publish_pending()

    def _publish_pending(self) -> None:
        if self._status:
            self._status.set_pending(len(self._queue))


def _entity_fields(values: dict[str, Any]) -> dict[str, Any]:
    """Strip the keys managed by the engine from caller-supplied fields."""
    return {k: v for k, v in values.items() if k not in COMMON_KEYS}
