"""Tests for health_monitor.py passive tracking."""

import pytest

from health_monitor import HealthMonitor, MONITORED_SERVICES


@pytest.fixture
def monitor():
    return HealthMonitor()


class TestPassiveTracking:
    def test_unknown_without_calls(self, monitor):
        result = monitor.compute_status("sheet")
        assert result.status == "unknown"
        assert result.sample_size == 0

    def test_all_success_healthy(self, monitor):
        for _ in range(10):
            monitor.record_call("sheet", True, 100)
        result = monitor.compute_status("sheet")
        assert result.status == "healthy"
        assert result.success_rate == 1.0
        assert result.latency_ms == 100

    def test_degraded(self, monitor):
        for _ in range(8):
            monitor.record_call("refuge_api", True, 50)
        for _ in range(2):
            monitor.record_call("refuge_api", False, 50, "HTTP 503")
        result = monitor.compute_status("refuge_api")
        assert result.status == "degraded"
        assert result.error == "HTTP 503"

    def test_down(self, monitor):
        for _ in range(5):
            monitor.record_call("blocklist", False, 10, "timeout")
        assert monitor.compute_status("blocklist").status == "down"

    def test_window_rolls(self, monitor):
        for _ in range(50):
            monitor.record_call("sheet", False, 10, "timeout")
        for _ in range(50):
            monitor.record_call("sheet", True, 10)
        assert monitor.compute_status("sheet").status == "healthy"

    def test_unlisted_service_tracked(self, monitor):
        monitor.record_call("other", True, 5)
        assert "other" in monitor.get_all_status()


class TestStatusDict:
    def test_all_monitored_services_present(self, monitor):
        assert set(monitor.get_all_status()) == set(MONITORED_SERVICES)

    def test_error_only_when_present(self, monitor):
        monitor.record_call("sheet", True, 5)
        d = monitor.get_all_status()["sheet"]
        assert "error" not in d
        assert d["success_rate"] == 1.0

    def test_reset(self, monitor):
        monitor.record_call("sheet", True, 5)
        monitor.reset()
        assert monitor.get_all_status()["sheet"]["status"] == "unknown"
