"""Sync commands for medsync CLI.

Commands:
- configure: Save server URL, token and patient profile
- status: Show connectivity and queue state
- sync: Drain the pending-change queue now
- watch: Keep syncing in the foreground
- prune: Drop old confirmed records from the local store
"""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING

import click

from medsync.client.cli.config import (
    build_context,
    get_data_dir,
    get_patient_profile_id,
    load_config,
    save_config,
)
from medsync.client.sync.types import DrainOutcome, DrainResult

if TYPE_CHECKING:
    from medsync.client.status import SyncStatusSnapshot

SKIP_MESSAGES = {
    DrainOutcome.SKIPPED_IN_FLIGHT: "Another sync is already running.",
    DrainOutcome.SKIPPED_OFFLINE: "Server unreachable, nothing sent.",
    DrainOutcome.SKIPPED_NO_CREDENTIAL: "Not signed in, nothing sent.",
}


def echo_drain_result(result: DrainResult) -> None:
    """Print a one-line summary of a drain."""
    if result.skipped:
        click.echo(SKIP_MESSAGES[result.outcome])
        return
    click.echo(
        f"Synced: {len(result.succeeded)} sent, "
        f"{len(result.failed)} failed, {len(result.dropped)} dropped"
    )


@click.command()
@click.option("--server-url", help="API base URL (e.g., https://example.org/api).")
@click.option("--token", help="Bearer token.")
@click.option("--patient-profile-id", help="Patient profile whose records are synced.")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    help="Directory of the local database.",
)
def configure(
    server_url: str | None,
    token: str | None,
    patient_profile_id: str | None,
    data_dir: str | None,
) -> None:
    """Save connection settings."""
    config = load_config()
    updates = {
        "server_url": server_url.rstrip("/") if server_url else None,
        "auth_token": token,
        "patient_profile_id": patient_profile_id,
        "data_dir": data_dir,
    }
    changed = {k: v for k, v in updates.items() if v is not None}
    if not changed:
        click.echo("Nothing to change. See 'medsync configure --help'.")
        return

    config.update(changed)
    save_config(config)
    for key in changed:
        shown = "********" if key == "auth_token" else config[key]
        click.echo(f"{key}: {shown}")


@click.command()
def status() -> None:
    """Show connectivity and queue state."""
    config = load_config()
    ctx = build_context()
    ctx.start(autosync=False, initial_drain=False)
    try:
        online = ctx.observer.is_online()
        click.echo(f"Server:        {config['server_url']}")
        click.echo(f"Online:        {'yes' if online else 'no'}")
        click.echo(f"Signed in:     {'yes' if ctx.api.has_token() else 'no'}")
        click.echo(f"Patient:       {get_patient_profile_id() or '-'}")
        click.echo(f"Pending:       {len(ctx.queue)}")
        click.echo(f"Last sync:     {ctx.store.get_last_sync_at() or 'never'}")
        click.echo(f"Database:      {ctx.db_path}")
    finally:
        ctx.shutdown()


@click.command()
def sync() -> None:
    """Send pending changes to the server now."""
    ctx = build_context()
    ctx.start(autosync=False, initial_drain=False)
    try:
        result = ctx.sync_now()
        echo_drain_result(result)
        remaining = len(ctx.queue)
        if remaining:
            click.echo(f"{remaining} changes still pending.")
    finally:
        ctx.shutdown()

    if result.outcome == DrainOutcome.SKIPPED_NO_CREDENTIAL:
        sys.exit(1)


@click.command()
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between connectivity checks.",
)
def watch(interval: float | None) -> None:
    """Keep syncing in the foreground until interrupted.

    Polls connectivity and drains the queue when the server comes back
    and periodically.
    """
    ctx = build_context()
    ctx.start(autosync=True, poll=False)
    ctx.observer.start_polling(interval)

    def on_status(snapshot: SyncStatusSnapshot) -> None:
        click.echo(f"[{snapshot.state.value}] pending={snapshot.pending}")

    unsubscribe = ctx.status.sync.subscribe(on_status)
    click.echo("Watching for changes. Press Ctrl+C to stop.")
    stop = threading.Event()
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        unsubscribe()
        ctx.shutdown()


@click.command()
@click.option("--days", type=int, default=30, show_default=True, help="Age cutoff in days.")
def prune(days: int) -> None:
    """Drop confirmed records older than the cutoff.

    Records created offline are always kept.
    """
    from medsync.client.context import DB_FILENAME
    from medsync.client.state import LocalStore

    store = LocalStore(get_data_dir() / DB_FILENAME)
    try:
        removed = store.clear_old_data(days)
    finally:
        store.close()
    click.echo(f"Removed {removed} records older than {days} days.")
