"""Tests for gunicorn_config.py deploy hooks."""

from unittest.mock import MagicMock, patch

import gunicorn_config


class TestWhenReady:
    @patch("gunicorn_config.threading.Thread")
    def test_runs_smoke_checks_against_local_port(self, mock_thread, monkeypatch):
        monkeypatch.setenv("PORT", "8123")
        gunicorn_config.when_ready(MagicMock())

        assert mock_thread.call_args[1]["daemon"] is True
        target = mock_thread.call_args[1]["target"]
        with patch("time.sleep"), patch("smoke_test.run_tests", return_value=True) as mock_run:
            target()
        mock_run.assert_called_once_with("http://127.0.0.1:8123")

    @patch("gunicorn_config.threading.Thread")
    def test_smoke_crash_is_contained(self, mock_thread):
        gunicorn_config.when_ready(MagicMock())
        target = mock_thread.call_args[1]["target"]
        with patch("time.sleep"), patch("smoke_test.run_tests", side_effect=RuntimeError("boom")):
            target()


class TestPostFork:
    @patch("worker.start_worker")
    def test_starts_refresh_worker(self, mock_start):
        gunicorn_config.post_fork(MagicMock(), MagicMock())
        mock_start.assert_called_once()
