"""Shared configuration classes for medsync.

This module defines the server connection settings and the tuning knobs of
the sync engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

# Queue items are dropped after this many failed attempts.
MAX_SYNC_RETRIES = 3


@dataclass
class ServerConfig:
    """Configuration for connecting to the remote API.

    Attributes:
        server_url: Base URL of the API (e.g., "https://api.example.org/api").
        token: Static bearer token, used when no token provider is given.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str | None = None
    timeout: float = 10.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def health_url(self) -> str:
        """Get the API health endpoint URL."""
        return f"{self.server_url}/health"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")


@dataclass
class SyncSettings:
    """Timing and retry settings for the sync engine.

    Attributes:
        max_retries: Failed attempts after which a queue item is dropped.
        settle_delay: Seconds to wait after reconnecting before draining.
        refresh_retries: Extra attempts for the post-reconnect refresh.
        refresh_retry_delay: Fixed delay between refresh attempts.
        periodic_interval: Seconds between periodic drain checks.
        min_sync_spacing: Minimum seconds between two drain attempts
            started by the triggers.
        probe_timeout: Timeout of a single reachability request.
        probe_urls: Extra URLs tried when the API health check fails.
        poll_interval: Seconds between connectivity polls when the
            observer polls instead of receiving platform events.
    """

    max_retries: int = MAX_SYNC_RETRIES
    settle_delay: float = 1.0
    refresh_retries: int = 2
    refresh_retry_delay: float = 2.0
    periodic_interval: float = 600.0
    min_sync_spacing: float = 300.0
    probe_timeout: float = 10.0
    probe_urls: tuple[str, ...] = field(default_factory=tuple)
    poll_interval: float = 30.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSettings:
        """Create settings from a config mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "probe_urls" in values:
            values["probe_urls"] = tuple(values["probe_urls"])
        return cls(**values)
