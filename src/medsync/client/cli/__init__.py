"""Command-line interface for medsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Save server URL, token and patient profile
- status: Show connectivity and queue state
- sync: Send pending changes to the server now
- watch: Keep syncing in the foreground
- prune: Drop old confirmed records
- fetch: Refresh and print the records of an entity
- queue list / queue clear: Inspect the pending-change queue
"""

from __future__ import annotations

import logging

import click

from medsync.client.cli.config import (
    build_context,
    get_config_dir,
    get_config_file,
    get_data_dir,
    get_patient_profile_id,
    load_config,
    save_config,
)
from medsync.client.cli.queue import queue
from medsync.client.cli.records import fetch
from medsync.client.cli.sync import configure, prune, status, sync, watch


@click.group()
@click.version_option(package_name="medsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """medsync - Offline-first sync for patient-care records."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Setup commands
cli.add_command(configure)
cli.add_command(status)

# Sync commands
cli.add_command(sync)
cli.add_command(watch)
cli.add_command(prune)

# Record commands
cli.add_command(fetch)
cli.add_command(queue)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "build_context",
    "get_config_dir",
    "get_config_file",
    "get_data_dir",
    "get_patient_profile_id",
    "load_config",
    "save_config",
]
