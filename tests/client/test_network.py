"""Tests for connectivity tracking."""

from __future__ import annotations

import threading

import httpx

from medsync.client.network import NetworkObserver, NetworkStatus
from medsync.core.config import SyncSettings


class FakeHealthAPI:
    """Stand-in for RemoteAPI.health_check."""

    def __init__(self, healthy: bool = True) -> None:
        self.healthy = healthy
        self.timeouts: list[float | None] = []

    def health_check(self, timeout: float | None = None) -> bool:
        self.timeouts.append(timeout)
        return self.healthy


class TestNetworkStatus:
    """Tests for NetworkStatus."""

    def test_online_requires_both(self) -> None:
        """Online means linked and reachable."""
        assert NetworkStatus(True, True).online is True
        assert NetworkStatus(True, False).online is False
        assert NetworkStatus(False, False).online is False


class TestReport:
    """Tests for report() and subscriptions."""

    def test_initially_offline(self) -> None:
        """Nothing is assumed reachable before the first report."""
        assert NetworkObserver().is_online() is False

    def test_notifies_on_change(self) -> None:
        """Subscribers should get the new status."""
        observer = NetworkObserver()
        seen: list[NetworkStatus] = []
        observer.subscribe(seen.append)

        observer.report(connected=True)

        assert seen == [NetworkStatus(True, True)]
        assert observer.is_online() is True

    def test_no_duplicate_notifications(self) -> None:
        """Repeated identical reports should notify once."""
        observer = NetworkObserver()
        seen: list[NetworkStatus] = []
        observer.subscribe(seen.append)

        observer.report(connected=True)
        observer.report(connected=True)
        observer.report(connected=False)

        assert [s.online for s in seen] == [True, False]

    def test_unreachable_when_disconnected(self) -> None:
        """A missing link can never be reachable."""
        observer = NetworkObserver()
        status = observer.report(connected=False, reachable=True)
        assert status == NetworkStatus(False, False)

    def test_unsubscribe(self) -> None:
        """Unsubscribed callbacks should not be called."""
        observer = NetworkObserver()
        seen: list[NetworkStatus] = []
        unsubscribe = observer.subscribe(seen.append)

        unsubscribe()
        unsubscribe()  # idempotent
        observer.report(connected=True)

        assert seen == []

    def test_failing_subscriber_does_not_block_others(self) -> None:
        """An exception in one callback should not stop delivery."""
        observer = NetworkObserver()
        seen: list[NetworkStatus] = []

        def broken(status: NetworkStatus) -> None:
            raise RuntimeError("boom")

        observer.subscribe(broken)
        observer.subscribe(seen.append)
        observer.report(connected=True)

        assert len(seen) == 1


class TestProbe:
    """Tests for the active reachability probe."""

    def test_api_health(self) -> None:
        """A healthy API means reachable."""
        api = FakeHealthAPI(healthy=True)
        observer = NetworkObserver(api, SyncSettings(probe_timeout=3.0))  # type: ignore[arg-type]

        assert observer.probe_reachability() is True
        assert api.timeouts == [3.0]

    def test_falls_back_to_probe_urls(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Ping URLs should be tried when the API is down."""
        httpx_mock.add_response(url="https://ping.example/", method="HEAD", status_code=204)
        settings = SyncSettings(probe_urls=("https://ping.example/",))
        observer = NetworkObserver(FakeHealthAPI(healthy=False), settings)  # type: ignore[arg-type]

        assert observer.probe_reachability() is True

    def test_all_probes_fail(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Unreachable everywhere means offline."""
        httpx_mock.add_exception(httpx.ConnectError("down"))
        settings = SyncSettings(probe_urls=("https://ping.example/",))
        observer = NetworkObserver(FakeHealthAPI(healthy=False), settings)  # type: ignore[arg-type]

        assert observer.probe_reachability() is False

    def test_refresh_reports_probe_result(self) -> None:
        """refresh() should probe then notify on change."""
        api = FakeHealthAPI(healthy=True)
        observer = NetworkObserver(api)  # type: ignore[arg-type]
        seen: list[NetworkStatus] = []
        observer.subscribe(seen.append)

        observer.refresh()
        api.healthy = False
        observer.refresh()

        assert [s.online for s in seen] == [True, False]


class TestPolling:
    """Tests for the polling thread."""

    def test_polls_until_stopped(self) -> None:
        """The poller should refresh in the background."""
        api = FakeHealthAPI(healthy=True)
        observer = NetworkObserver(api)  # type: ignore[arg-type]
        came_online = threading.Event()
        observer.subscribe(lambda status: came_online.set())

        observer.start_polling(interval=0.01)
        try:
            assert came_online.wait(timeout=2.0)
        finally:
            observer.stop()

        assert observer.is_online() is True
