"""
Gunicorn config. Ensures the refresh worker thread is started in each
worker process (post_fork). With --workers 2, two processes each keep
their own in-memory display set; the SQLite cache is shared.

when_ready runs smoke_test.run_tests() against localhost once the server
is accepting connections: /healthz answers, /api/locations serves at least
MIN_LOCATIONS parsed records with the expected keys, and a food filter with
visible_only=1 returns only visible records. A failure is logged and, when
SMOKE_ALERT_WEBHOOK is set, posted to that webhook.
"""

import logging
import os
import threading


def when_ready(server):
    """Run smoke test in a background thread once gunicorn is listening."""
    port = os.environ.get("PORT", "8000")
    base_url = f"http://127.0.0.1:{port}"

    def _run_smoke():
        import time
        time.sleep(2)  # brief grace period for workers to finish forking
        logger = logging.getLogger("gunicorn.error")
        try:
            from smoke_test import run_tests
            logger.info("Post-deploy smoke test starting against %s", base_url)
            ok = run_tests(base_url)
            if ok:
                logger.info("Post-deploy smoke test PASSED")
            else:
                logger.error("Post-deploy smoke test FAILED")
        except Exception:
            logger.exception("Post-deploy smoke test crashed")

    t = threading.Thread(target=_run_smoke, daemon=True)
    t.start()


def post_fork(server, worker):
    """Start the background refresh worker in this gunicorn worker process."""
    try:
        from worker import start_worker
        start_worker()
    except Exception as e:
        logging.getLogger(__name__).exception("Failed to start refresh worker: %s", e)
