"""
Background refresh worker.

Runs in a dedicated daemon thread per gunicorn worker process. Calls
data_service.refresh() once at startup and then every
EA_REFRESH_INTERVAL seconds, so API requests are served from memory
while the cache layer keeps the upstream call volume down. Supports
graceful shutdown via a stop event.
"""

import os
import logging
import threading

from data_service import get_service, refresh
from models import init_db

logger = logging.getLogger(__name__)

# Stop event: set by the main process to signal the worker thread to exit
_stop_event = threading.Event()
_worker_thread = None


def _run_refresh() -> bool:
    """One refresh pass. Returns False if it crashed."""
    try:
        status = refresh()
        logger.info("[worker] Refresh done: %s (%s)", status.state, status.message)
        return True
    except Exception as e:
        logger.exception("[worker] Unhandled error during refresh")
        if os.environ.get("SENTRY_DSN"):
            try:
                import sentry_sdk
                sentry_sdk.capture_exception(e)
            except Exception:
                pass
        return False


def _worker_loop(interval: float) -> None:
    """Loop: refresh, wait, repeat until stop event is set."""
    logger.info("[worker] Refresh worker thread started (interval=%ds)", interval)
    while not _stop_event.is_set():
        _run_refresh()
        _stop_event.wait(timeout=interval)
    logger.info("[worker] Refresh worker thread stopped")


def start_worker() -> None:
    """
    Start the background refresh thread. Safe to call from the main process
    or from a gunicorn post_fork hook. Only one thread is started per process.
    """
    global _worker_thread
    if _worker_thread is not None and _worker_thread.is_alive():
        return
    # Ensure DB tables exist in this process before the thread starts.
    init_db()
    interval = get_service().settings.refresh_interval
    _stop_event.clear()
    _worker_thread = threading.Thread(target=_worker_loop, args=(interval,), daemon=True)
    _worker_thread.start()


def stop_worker() -> None:
    """Signal the worker thread to stop (for tests or graceful shutdown)."""
    _stop_event.set()
