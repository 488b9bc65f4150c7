"""Configuration utilities for medsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from medsync.core.config import ServerConfig, SyncSettings

if TYPE_CHECKING:
    from medsync.client.context import SyncContext


def get_config_dir() -> Path:
    """Get the configuration directory for medsync.

    Returns:
        Path to ~/.medsync or equivalent.
    """
    return Path.home() / ".medsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_data_dir() -> Path:
    """Get the directory of the local database.

    Returns:
        Path to the data directory (configured or the config directory).
    """
    config = load_config()
    if config.get("data_dir"):
        return Path(config["data_dir"]).expanduser().resolve()
    return get_config_dir()


def require_server_config() -> ServerConfig:
    """Build the server config, exiting if medsync is not configured."""
    config = load_config()
    if not config.get("server_url"):
        click.echo("Error: Not configured. Run 'medsync configure' first.", err=True)
        sys.exit(1)
    return ServerConfig(
        server_url=config["server_url"],
        token=config.get("auth_token"),
        timeout=float(config.get("timeout", 10.0)),
        verify_ssl=bool(config.get("verify_ssl", True)),
    )


def get_sync_settings() -> SyncSettings:
    """Get the sync engine settings (the optional "sync" config section)."""
    return SyncSettings.from_dict(load_config().get("sync", {}))


def get_patient_profile_id() -> str | None:
    """Get the configured patient profile id.

    Returns:
        Patient profile id if configured, None otherwise.
    """
    return load_config().get("patient_profile_id")


def build_context() -> SyncContext:
    """Create a SyncContext from the CLI configuration (not started)."""
    from medsync.client.context import SyncContext

    server_config = require_server_config()
    return SyncContext(
        server_config,
        get_data_dir(),
        token_provider=lambda: load_config().get("auth_token"),
        scope_provider=get_patient_profile_id,
        settings=get_sync_settings(),
    )
