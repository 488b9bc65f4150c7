"""Entity registry for synchronized record types.

This module provides:
- EntitySpec: Table, columns, list ordering and endpoint of an entity type
- ENTITIES: Registry of every known entity tag
- Route / route_for: (entity, action) -> HTTP method + path mapping

Dispatch mapping:
    | Action | Method | Path                    |
    |--------|--------|-------------------------|
    | CREATE | POST   | /{collection}           |
    | UPDATE | PUT    | /{collection}/{id}      |
    | DELETE | DELETE | /{collection}/{id}      |

Notifications are queue-only (no local table) and use PATCH sub-resources
for read/archive operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from medsync.core.types import QueueAction


class UnknownEntityError(ValueError):
    """Entity tag has no registered table or endpoint."""

    def __init__(self, entity: str) -> None:
        super().__init__(f"Unsupported entity: {entity}")
        self.entity = entity


class DispatchError(ValueError):
    """Queue payload cannot be turned into a request."""


@dataclass(frozen=True)
class EntitySpec:
    """Static description of an entity type.

    Attributes:
        name: Entity tag used in the queue and the public API.
        path: Collection endpoint, relative to the API base URL.
        table: Local table name, or None for queue-only entities.
        fields: Entity-specific columns (besides the common ones).
        order_by: SQL ORDER BY clause used by list().
    """

    name: str
    path: str
    table: str | None = None
    fields: tuple[str, ...] = ()
    order_by: str = "createdAt DESC"

    @property
    def is_stored(self) -> bool:
        """Check if records of this entity are cached locally."""
        return self.table is not None

    def item_path(self, record_id: str) -> str:
        """Get the item endpoint for a record id."""
        return f"{self.path}/{record_id}"


ENTITIES: dict[str, EntitySpec] = {
    spec.name: spec
    for spec in (
        EntitySpec(
            name="medications",
            path="/medications",
            table="medications",
            fields=(
                "name",
                "dosage",
                "type",
                "frequency",
                "startDate",
                "endDate",
                "notes",
                "time",
            ),
            order_by="createdAt DESC",
        ),
        EntitySpec(
            name="appointments",
            path="/appointments",
            table="appointments",
            fields=("title", "dateTime", "location", "description", "doctorName"),
            order_by="dateTime ASC",
        ),
        EntitySpec(
            name="treatments",
            path="/treatments",
            table="treatments",
            fields=("title", "description", "startDate", "endDate", "progress"),
            order_by="createdAt DESC",
        ),
        EntitySpec(
            name="notes",
            path="/notes",
            table="notes",
            fields=("title", "content", "date"),
            order_by="date DESC",
        ),
        EntitySpec(
            name="intakeEvents",
            path="/intake-events",
            table="intake_events",
            fields=("kind", "refId", "scheduledFor", "action", "at", "meta"),
            order_by="at DESC",
        ),
        EntitySpec(
            name="notifications",
            path="/notifications",
        ),
    )
}


def get_entity(name: str) -> EntitySpec:
    """Look up an entity spec by tag.

    Raises:
        UnknownEntityError: If the tag is not registered.
    """
    try:
        return ENTITIES[name]
    except KeyError:
        raise UnknownEntityError(name) from None


def get_stored_entity(name: str) -> EntitySpec:
    """Look up an entity that has a local table.

    Raises:
        UnknownEntityError: If the tag is unknown or queue-only.
    """
    spec = get_entity(name)
    if not spec.is_stored:
        raise UnknownEntityError(name)
    return spec


def stored_entities() -> list[EntitySpec]:
    """List the entities cached in the local store."""
    return [spec for spec in ENTITIES.values() if spec.is_stored]


@dataclass(frozen=True)
class Route:
    """HTTP request resolved for a queued mutation."""

    method: str
    path: str
    body: dict[str, Any] | None = None


def route_for(entity: str, action: QueueAction, payload: dict[str, Any]) -> Route:
    """Resolve the request for an (entity, action) pair.

    Args:
        entity: Entity tag of the queue item.
        action: Queued mutation.
        payload: Record snapshot or patch stored with the item.

    Returns:
        The request to send.

    Raises:
        UnknownEntityError: If the entity tag is not registered.
        DispatchError: If the payload lacks the id an item endpoint needs.
    """
    spec = get_entity(entity)
    action = QueueAction(action)

    if spec.name == "notifications":
        return _notification_route(spec, action, payload)

    if action == QueueAction.CREATE:
        return Route("POST", spec.path, payload)

    record_id = payload.get("id")
    if not record_id:
        raise DispatchError(f"{action.value} {entity} payload has no id")

    if action == QueueAction.UPDATE:
        return Route("PUT", spec.item_path(record_id), payload)
    return Route("DELETE", spec.item_path(record_id))


def _notification_route(
    spec: EntitySpec,
    action: QueueAction,
    payload: dict[str, Any],
) -> Route:
    """Resolve read/archive/patch/delete requests for notifications."""
    if action == QueueAction.CREATE:
        return Route("POST", spec.path, payload)

    record_id = payload.get("id")
    if not record_id:
        raise DispatchError(f"{action.value} notifications payload has no id")

    if action == QueueAction.DELETE:
        return Route("DELETE", spec.item_path(record_id))

    operation = payload.get("operation")
    if operation == "READ":
        return Route("PATCH", f"{spec.item_path(record_id)}/read")
    if operation == "ARCHIVE":
        return Route("PATCH", f"{spec.item_path(record_id)}/archive")
    return Route("PATCH", spec.item_path(record_id), payload.get("data") or {})
