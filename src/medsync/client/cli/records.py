"""Record commands for medsync CLI.

Commands:
- fetch: Refresh and print the records of an entity
"""

from __future__ import annotations

import json
import sys

import click

from medsync.client.cli.config import build_context, get_patient_profile_id
from medsync.client.entities import stored_entities


@click.command()
@click.argument(
    "entity",
    type=click.Choice([spec.name for spec in stored_entities()]),
)
@click.option("--patient", "patient_profile_id", help="Patient profile id (default: configured).")
@click.option("--json", "as_json", is_flag=True, help="Print records as JSON lines.")
def fetch(entity: str, patient_profile_id: str | None, as_json: bool) -> None:
    """Refresh the records of ENTITY and print them.

    Falls back to the local copy when the server cannot be reached.
    """
    scope_id = patient_profile_id or get_patient_profile_id()
    if not scope_id:
        click.echo(
            "Error: No patient profile. Use --patient or 'medsync configure "
            "--patient-profile-id'.",
            err=True,
        )
        sys.exit(1)

    ctx = build_context()
    ctx.start(autosync=False, initial_drain=False)
    try:
        records = ctx.repository.fetch(entity, scope_id)
    finally:
        ctx.shutdown()

    if not records:
        click.echo(f"No {entity}.")
        return

    for record in records:
        if as_json:
            click.echo(json.dumps(record.to_payload()))
            continue
        label = (
            record.fields.get("name")
            or record.fields.get("title")
            or record.fields.get("kind")
            or ""
        )
        flag = " (offline)" if record.is_offline else ""
        click.echo(f"{record.id}  {record.sync_status.value:<7}  {label}{flag}")
