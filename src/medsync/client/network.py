"""Connectivity tracking for the sync engine.

This module provides:
- NetworkStatus: Point-in-time link/reachability status
- NetworkObserver: Holds the current status, notifies subscribers of
  changes and actively probes reachability

Architecture:
    Platform adapter ──report()──► NetworkObserver ──callback──► AutoSyncTrigger
                                        │
                          probe_reachability() (API /health, ping URLs)

Without a platform adapter, start_polling() runs a daemon thread that
calls refresh() every poll interval.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from medsync.core.config import SyncSettings

if TYPE_CHECKING:
    from medsync.client.api import RemoteAPI

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkStatus:
    """Connectivity status.

    Attributes:
        connected: The device has a network link.
        reachable: The internet (or the API) answered a probe.
    """

    connected: bool = False
    reachable: bool = False

    @property
    def online(self) -> bool:
        """Check if remote calls are worth attempting."""
        return self.connected and self.reachable


StatusCallback = Callable[[NetworkStatus], None]


class NetworkObserver:
    """Tracks connectivity and notifies subscribers on change.

    Usage:
        observer = NetworkObserver(api, settings)
        unsubscribe = observer.subscribe(on_change)
        observer.refresh()        # probe and report
        ...
        unsubscribe()
    """

    def __init__(
        self,
        api: RemoteAPI | None = None,
        settings: SyncSettings | None = None,
        initial: NetworkStatus | None = None,
    ) -> None:
        """Initialize the observer.

        Args:
            api: API client whose health endpoint is probed first.
            settings: Probe timeout, fallback ping URLs and poll interval.
            initial: Status assumed before the first report.
        """
        self._api = api
        self._settings = settings or SyncSettings()
        self._status = initial or NetworkStatus()
        self._lock = threading.Lock()
        self._subscribers: list[StatusCallback] = []

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def current_status(self) -> NetworkStatus:
        """Get the last reported status."""
        with self._lock:
            return self._status

    def is_online(self) -> bool:
        """Check if the last reported status is online."""
        return self.current_status().online

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a callback invoked with the new status on each change.

        Returns:
            A callable that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def report(self, connected: bool, reachable: bool | None = None) -> NetworkStatus:
        """Record a connectivity event.

        Subscribers are notified only if the status actually changed.

        Args:
            connected: Link state reported by the platform.
            reachable: Internet reachability; defaults to ``connected``.

        Returns:
            The new status.
        """
        if reachable is None:
            reachable = connected
        new = NetworkStatus(connected=connected, reachable=connected and reachable)

        with self._lock:
            if new == self._status:
                return new
            old = self._status
            self._status = new
            subscribers = list(self._subscribers)

        logger.info(
            "Network status changed: online=%s -> online=%s", old.online, new.online
        )
        for callback in subscribers:
            try:
                callback(new)
            except Exception:
                logger.exception("Network status subscriber failed")
        return new

    # === Active probe ===

    def probe_reachability(self) -> bool:
        """Actively check that the server side can be reached.

        Tries the API health endpoint, then each configured ping URL.
        """
        timeout = self._settings.probe_timeout
        if self._api is not None and self._api.health_check(timeout=timeout):
            return True

        for url in self._settings.probe_urls:
            try:
                response = httpx.head(url, timeout=timeout, follow_redirects=True)
            except httpx.HTTPError as e:
                logger.debug("Probe %s failed: %s", url, e)
                continue
            if response.status_code < 500:
                return True

        return False

    def refresh(self) -> NetworkStatus:
        """Probe reachability and report the result."""
        reachable = self.probe_reachability()
        return self.report(connected=reachable, reachable=reachable)

    # === Polling ===

    def start_polling(self, interval: float | None = None) -> None:
        """Start a background thread calling refresh() periodically."""
        if self._thread and self._thread.is_alive():
            logger.warning("NetworkObserver already polling")
            return

        poll_interval = interval if interval is not None else self._settings.poll_interval
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            args=(poll_interval,),
            name="NetworkObserver",
            daemon=True,
        )
        self._thread.start()
        logger.info("Network polling started (every %.0fs)", poll_interval)

    def stop(self) -> None:
        """Stop the polling thread."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
            logger.info("Network polling stopped")

    def _poll_loop(self, interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                self.refresh()
            except Exception:
                logger.exception("Connectivity poll failed")
            self._stop_event.wait(interval)
