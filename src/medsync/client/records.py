"""Domain record model shared by the store, the API client and the repository.

This module provides:
- Record: A cached domain record with its sync flags
- now_iso: ISO-8601 UTC timestamp in the server's format
- new_record_id: Locally generated record id
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from medsync.core.types import SyncStatus

if TYPE_CHECKING:
    from medsync.client.entities import EntitySpec

# Keys handled by Record itself; everything else is an entity field.
COMMON_KEYS = (
    "id",
    "patientProfileId",
    "createdAt",
    "updatedAt",
    "isOffline",
    "syncStatus",
)


def now_iso() -> str:
    """Get the current UTC time as ISO-8601 with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def new_record_id() -> str:
    """Generate an id for a record created on this device."""
    return str(uuid.uuid4())


def _column_value(value: Any) -> Any:
    """Convert a field value to something SQLite can store."""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        return int(value)
    return value


@dataclass
class Record:
    """A cached domain record.

    Attributes:
        id: Globally unique record id.
        patient_profile_id: Owner scope of the record.
        created_at: ISO-8601 creation timestamp.
        updated_at: ISO-8601 last-modification timestamp.
        is_offline: True while created/modified offline and unconfirmed.
        sync_status: pending, synced or failed.
        fields: Entity-specific fields, keyed by their API names.
    """

    id: str
    patient_profile_id: str
    created_at: str
    updated_at: str
    is_offline: bool = False
    sync_status: SyncStatus = SyncStatus.PENDING
    fields: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.sync_status = SyncStatus(self.sync_status)
        self.is_offline = bool(self.is_offline)
        if self.sync_status == SyncStatus.SYNCED and self.is_offline:
            raise ValueError(f"Record {self.id} cannot be synced and offline")

    @classmethod
    def from_row(cls, row: sqlite3.Row, spec: EntitySpec) -> Record:
        """Create a Record from a database row."""
        return cls(
            id=row["id"],
            patient_profile_id=row["patientProfileId"],
            created_at=row["createdAt"],
            updated_at=row["updatedAt"],
            is_offline=bool(row["isOffline"]),
            sync_status=SyncStatus(row["syncStatus"]),
            fields={name: row[name] for name in spec.fields},
        )

    @classmethod
    def from_payload(
        cls,
        data: dict[str, Any],
        *,
        is_offline: bool = False,
        sync_status: SyncStatus = SyncStatus.SYNCED,
        default_scope: str | None = None,
    ) -> Record:
        """Create a Record from an API response item.

        Missing timestamps are backfilled from the other timestamp, or
        "now" when both are absent.

        Args:
            data: Record dictionary as returned by the server.
            is_offline: Offline flag to store.
            sync_status: Sync status to store.
            default_scope: Scope used when the payload carries none.
        """
        created_at = data.get("createdAt") or data.get("updatedAt") or now_iso()
        updated_at = data.get("updatedAt") or created_at
        scope = data.get("patientProfileId") or default_scope
        if not scope:
            raise ValueError(f"Record {data.get('id')!r} has no patientProfileId")
        return cls(
            id=str(data["id"]),
            patient_profile_id=str(scope),
            created_at=created_at,
            updated_at=updated_at,
            is_offline=is_offline,
            sync_status=sync_status,
            fields={k: v for k, v in data.items() if k not in COMMON_KEYS},
        )

    def to_row(self, spec: EntitySpec) -> dict[str, Any]:
        """Convert to column values for the entity's table.

        Fields not declared by the entity are not persisted.
        """
        row: dict[str, Any] = {
            "id": self.id,
            "patientProfileId": self.patient_profile_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "isOffline": 1 if self.is_offline else 0,
            "syncStatus": self.sync_status.value,
        }
        for name in spec.fields:
            row[name] = _column_value(self.fields.get(name))
        return row

    def to_payload(self) -> dict[str, Any]:
        """Convert to the dictionary shape shown to the UI."""
        return {
            **self.fields,
            "id": self.id,
            "patientProfileId": self.patient_profile_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "isOffline": self.is_offline,
            "syncStatus": self.sync_status.value,
        }

    def to_request_body(self) -> dict[str, Any]:
        """Convert to the body sent to the server (no local sync flags)."""
        body = self.to_payload()
        body.pop("isOffline")
        body.pop("syncStatus")
        return body

    def mark_synced(self) -> Record:
        """Return a copy confirmed by the server."""
        return replace(self, is_offline=False, sync_status=SyncStatus.SYNCED)

    def mark_failed(self) -> Record:
        """Return a copy whose last sync attempt was abandoned."""
        return replace(self, sync_status=SyncStatus.FAILED)
