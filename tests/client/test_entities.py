"""Tests for the entity registry and dispatch routes."""

from __future__ import annotations

import pytest

from medsync.client.entities import (
    ENTITIES,
    DispatchError,
    Route,
    UnknownEntityError,
    get_entity,
    get_stored_entity,
    route_for,
    stored_entities,
)
from medsync.core.types import QueueAction


class TestRegistry:
    """Tests for entity lookup."""

    def test_stored_entities(self) -> None:
        """Every record entity should have a table."""
        names = {spec.name for spec in stored_entities()}
        assert names == {"medications", "appointments", "treatments", "notes", "intakeEvents"}

    def test_intake_events_table_and_path(self) -> None:
        """intakeEvents should map to its own table and endpoint."""
        spec = get_entity("intakeEvents")
        assert spec.table == "intake_events"
        assert spec.path == "/intake-events"

    def test_appointments_include_doctor_name(self) -> None:
        """Appointments should carry the doctorName column."""
        assert "doctorName" in ENTITIES["appointments"].fields

    def test_unknown_entity(self) -> None:
        """Unknown tags should raise UnknownEntityError."""
        with pytest.raises(UnknownEntityError) as exc_info:
            get_entity("prescriptions")
        assert exc_info.value.entity == "prescriptions"

    def test_notifications_not_stored(self) -> None:
        """Notifications are queue-only."""
        assert get_entity("notifications").is_stored is False
        with pytest.raises(UnknownEntityError):
            get_stored_entity("notifications")


class TestRouteFor:
    """Tests for (entity, action) -> request mapping."""

    def test_create_posts_to_collection(self) -> None:
        """CREATE should POST the payload to the collection."""
        payload = {"id": "m1", "name": "Ibuprofen"}
        route = route_for("medications", QueueAction.CREATE, payload)
        assert route == Route("POST", "/medications", payload)

    def test_update_puts_item(self) -> None:
        """UPDATE should PUT to the item endpoint."""
        route = route_for("notes", QueueAction.UPDATE, {"id": "n1", "title": "x"})
        assert route.method == "PUT"
        assert route.path == "/notes/n1"

    def test_delete_item(self) -> None:
        """DELETE should target the item endpoint without a body."""
        route = route_for("appointments", QueueAction.DELETE, {"id": "a1"})
        assert route == Route("DELETE", "/appointments/a1")

    def test_accepts_action_strings(self) -> None:
        """Actions read back from storage may be plain strings."""
        route = route_for("treatments", "DELETE", {"id": "t1"})  # type: ignore[arg-type]
        assert route.path == "/treatments/t1"

    def test_missing_id_fails(self) -> None:
        """Item routes need an id."""
        with pytest.raises(DispatchError):
            route_for("notes", QueueAction.UPDATE, {"title": "x"})

    def test_unknown_entity_fails(self) -> None:
        """Unknown entity tags should fail closed."""
        with pytest.raises(UnknownEntityError):
            route_for("invoices", QueueAction.CREATE, {"id": "i1"})

    def test_notification_read(self) -> None:
        """READ should PATCH the read sub-resource."""
        route = route_for(
            "notifications", QueueAction.UPDATE, {"id": "x1", "operation": "READ"}
        )
        assert route == Route("PATCH", "/notifications/x1/read")

    def test_notification_archive(self) -> None:
        """ARCHIVE should PATCH the archive sub-resource."""
        route = route_for(
            "notifications", QueueAction.UPDATE, {"id": "x1", "operation": "ARCHIVE"}
        )
        assert route == Route("PATCH", "/notifications/x1/archive")

    def test_notification_patch(self) -> None:
        """Other updates should PATCH the item with the data."""
        route = route_for(
            "notifications",
            QueueAction.UPDATE,
            {"id": "x1", "operation": None, "data": {"priority": "high"}},
        )
        assert route == Route("PATCH", "/notifications/x1", {"priority": "high"})
