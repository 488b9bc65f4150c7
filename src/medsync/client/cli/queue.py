"""Queue inspection commands for medsync CLI.

Commands:
- queue list: Show pending changes in drain order
- queue clear: Drop every pending change
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager

import click

from medsync.client.cli.config import get_data_dir
from medsync.client.state import LocalStore
from medsync.client.sync.queue import SyncQueue


@contextmanager
def open_queue() -> Iterator[SyncQueue]:
    """Open the queue of the configured local store."""
    from medsync.client.context import DB_FILENAME

    store = LocalStore(get_data_dir() / DB_FILENAME)
    try:
        yield SyncQueue(store)
    finally:
        store.close()


@click.group()
def queue() -> None:
    """Inspect the pending-change queue."""


@queue.command("list")
@click.option("--json", "as_json", is_flag=True, help="Print items as JSON lines.")
def list_cmd(as_json: bool) -> None:
    """Show pending changes in the order they will be sent."""
    with open_queue() as sync_queue:
        items = sync_queue.items()

    if not items:
        click.echo("Queue is empty.")
        return

    for item in items:
        if as_json:
            click.echo(
                json.dumps(
                    {
                        "id": item.id,
                        "action": item.action.value,
                        "entity": item.entity,
                        "data": item.payload,
                        "createdAt": item.created_at,
                        "retryCount": item.retry_count,
                    }
                )
            )
        else:
            click.echo(
                f"{item.created_at}  {item.action.value:<6}  {item.entity:<13}  "
                f"{item.record_id or '-'}  retries={item.retry_count}"
            )


@queue.command("clear")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def clear_cmd(yes: bool) -> None:
    """Drop every pending change (they will never reach the server)."""
    with open_queue() as sync_queue:
        count = len(sync_queue)
        if count == 0:
            click.echo("Queue is empty.")
            return
        if not yes:
            click.confirm(f"Drop {count} pending changes?", abort=True)
        removed = sync_queue.clear()
    click.echo(f"Dropped {removed} pending changes.")
