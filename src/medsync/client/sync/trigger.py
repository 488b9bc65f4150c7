"""Automatic sync triggers.

This module provides:
- AutoSyncTrigger: Starts drains on reconnection and on a periodic timer

Triggers:
    | Trigger            | Condition                          | Action                      |
    |--------------------|------------------------------------|-----------------------------|
    | offline -> online  | queue not empty                    | settle delay, drain,        |
    |                    |                                    | then refresh (bounded retry)|
    | periodic interval  | queue not empty, no drain running, | drain                       |
    |                    | min spacing since last attempt     |                             |

The trigger owns its timers: shutdown() cancels a pending settle timer,
interrupts refresh back-off waits and stops the scheduler.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from medsync.client.sync.retry import RetryAborted, retry_with_delay
from medsync.client.sync.types import DrainOutcome
from medsync.core.config import SyncSettings

if TYPE_CHECKING:
    from collections.abc import Callable

    from medsync.client.network import NetworkObserver, NetworkStatus
    from medsync.client.sync.queue import SyncQueue
    from medsync.client.sync.types import DrainResult
    from medsync.client.sync.worker import SyncWorker

logger = logging.getLogger(__name__)


class AutoSyncTrigger:
    """Invokes the SyncWorker when connectivity returns and periodically.

    Usage:
        trigger = AutoSyncTrigger(worker, queue, observer, settings, refresh=...)
        trigger.start()      # subscribe to the observer, start the scheduler
        ...
        trigger.shutdown()
    """

    def __init__(
        self,
        worker: SyncWorker,
        queue: SyncQueue,
        observer: NetworkObserver,
        settings: SyncSettings | None = None,
        refresh: Callable[[], Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the trigger.

        Args:
            worker: Worker to invoke.
            queue: Queue checked before each drain.
            observer: Connectivity source.
            settings: Delays, retry bounds and intervals.
            refresh: Read-refresh run after a reconnect drain; should raise
                on failure so that it is retried.
            clock: Monotonic clock used for the minimum spacing.
        """
        self._worker = worker
        self._queue = queue
        self._observer = observer
        self._settings = settings or SyncSettings()
        self._refresh = refresh
        self._clock = clock

        self._lock = threading.Lock()
        self._was_online = observer.current_status().online
        self._last_attempt: float | None = None

        self._settle_timer: threading.Timer | None = None
        self._stop_event = threading.Event()
        self._unsubscribe: Callable[[], None] | None = None
        self._scheduler: BackgroundScheduler | None = None

    @property
    def last_attempt(self) -> float | None:
        """Clock value of the last drain started by this trigger."""
        return self._last_attempt

    # === Lifecycle ===

    def attach(self) -> None:
        """Subscribe to connectivity changes."""
        if self._unsubscribe is None:
            self._was_online = self._observer.current_status().online
            self._unsubscribe = self._observer.subscribe(self.on_status_change)

    def start(self) -> None:
        """Subscribe to the observer and start the periodic scheduler."""
        self._stop_event.clear()
        self.attach()

        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._periodic_job,
            trigger=IntervalTrigger(seconds=self._settings.periodic_interval),
            id="periodic_sync",
            name="Periodic sync check",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            "Autosync started (periodic check every %.0fs)",
            self._settings.periodic_interval,
        )

    def shutdown(self) -> None:
        """Cancel pending timers and stop the scheduler.

        Returns once any drain started by the settle timer or the periodic
        job has finished, so the store can be closed afterwards.
        """
        self._stop_event.set()

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        with self._lock:
            timer = self._settle_timer
            self._settle_timer = None
        if timer is not None:
            timer.cancel()
            if timer is not threading.current_thread():
                timer.join()

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=True)
            self._scheduler = None
            logger.info("Autosync stopped")

    def wait(self, timeout: float | None = None) -> None:
        """Wait for a scheduled reconnect sync to finish."""
        with self._lock:
            timer = self._settle_timer
        if timer is not None:
            timer.join(timeout)

    # === Reconnect edge ===

    def on_status_change(self, status: NetworkStatus) -> None:
        """Handle a connectivity change reported by the observer."""
        with self._lock:
            came_online = status.online and not self._was_online
            self._was_online = status.online

        if not came_online:
            return
        if self._queue.is_empty():
            logger.debug("Back online with an empty queue, nothing to sync")
            return

        logger.info(
            "Back online, syncing in %.1fs", self._settings.settle_delay
        )
        timer = threading.Timer(self._settings.settle_delay, self._on_settled)
        timer.daemon = True
        with self._lock:
            if self._stop_event.is_set():
                return
            if self._settle_timer is not None:
                self._settle_timer.cancel()
            self._settle_timer = timer
            timer.start()

    def _on_settled(self) -> None:
        try:
            self.run_reconnect_sync()
        except Exception:
            logger.exception("Reconnect sync failed")

    def run_reconnect_sync(self) -> DrainResult:
        """Drain the queue, then refresh records with a bounded retry."""
        result = self._drain()
        if result.outcome in (
            DrainOutcome.SKIPPED_OFFLINE,
            DrainOutcome.SKIPPED_NO_CREDENTIAL,
        ):
            logger.info("Skipping refresh: server unreachable or signed out")
            return result
        if self._refresh is not None and not self._stop_event.is_set():
            try:
                retry_with_delay(
                    self._refresh,
                    max_retries=self._settings.refresh_retries,
                    delay=self._settings.refresh_retry_delay,
                    sleep=self._stop_event.wait,
                )
            except RetryAborted:
                logger.info("Refresh interrupted by shutdown")
            except Exception as e:
                logger.warning("Refresh after reconnect failed: %s", e)
        return result

    # === Periodic ===

    def _periodic_job(self) -> None:
        """Job function for the scheduled drain check."""
        try:
            self.run_periodic()
        except Exception:
            logger.exception("Error during periodic sync")

    def run_periodic(self) -> DrainResult | None:
        """Drain if there is work and the last attempt is old enough.

        Returns:
            The drain result, or None if the check decided not to drain.
        """
        if self._queue.is_empty():
            logger.debug("Periodic check: queue empty")
            return None
        if self._worker.in_flight:
            logger.debug("Periodic check: drain in flight")
            return None
        if (
            self._last_attempt is not None
            and self._clock() - self._last_attempt < self._settings.min_sync_spacing
        ):
            logger.debug("Periodic check: last attempt too recent")
            return None

        logger.info("Periodic sync: %d queued changes", len(self._queue))
        return self._drain()

    def _drain(self) -> DrainResult:
        self._last_attempt = self._clock()
        return self._worker.drain()
