"""Tests for worker.py background refresh loop."""

from unittest.mock import patch

import worker
from data_service import LoadStatus


class TestRunRefresh:
    @patch("worker.refresh")
    def test_success(self, mock_refresh):
        mock_refresh.return_value = LoadStatus(state="fresh", message="Updated: Jan 1, 12:00 AM")
        assert worker._run_refresh() is True

    @patch("worker.refresh", side_effect=RuntimeError("boom"))
    def test_crash_is_contained(self, mock_refresh):
        assert worker._run_refresh() is False


class TestWorkerLoop:
    @patch("worker._run_refresh")
    def test_stops_on_event(self, mock_run):
        def run_once():
            worker._stop_event.set()
            return True

        mock_run.side_effect = run_once
        worker._stop_event.clear()
        worker._worker_loop(interval=60)
        mock_run.assert_called_once()
        worker._stop_event.clear()

    @patch("worker.threading.Thread")
    def test_start_worker_spawns_daemon_thread(self, mock_thread, service):
        worker._worker_thread = None
        try:
            worker.start_worker()
            mock_thread.assert_called_once()
            assert mock_thread.call_args[1]["daemon"] is True
            assert mock_thread.call_args[1]["args"] == (service.settings.refresh_interval,)
            mock_thread.return_value.start.assert_called_once()
        finally:
            worker._worker_thread = None
