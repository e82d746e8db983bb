"""
Passive health tracking for the Eugene Access upstream sources.

Records the outcome of every real upstream call (sheet CSV, Refuge
Restrooms API, blocklist CSV) in a rolling window per service and derives
a healthy / degraded / down status from the success rate. Served by
/healthz so an operator can tell which source is behind a stale map.

Module-level singleton: all callers in this process share one HealthMonitor.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Rolling window size for passive call tracking per service.
_PASSIVE_WINDOW_SIZE = 50

# Passive health thresholds (success rate).
_HEALTHY_THRESHOLD = 0.95
_DEGRADED_THRESHOLD = 0.70

MONITORED_SERVICES = ("sheet", "refuge_api", "blocklist")


@dataclass
class HealthCheckResult:
    """Health status for a single upstream source."""
    service: str
    status: str          # "healthy" | "degraded" | "down" | "unknown"
    latency_ms: int
    last_checked: Optional[str]  # ISO-8601 timestamp
    error: Optional[str] = None
    success_rate: Optional[float] = None
    sample_size: int = 0


@dataclass
class _CallRecord:
    timestamp: float
    success: bool
    latency_ms: int
    error: Optional[str] = None


class HealthMonitor:
    """Thread-safe health status tracker for upstream sources."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._passive: Dict[str, deque] = {
            svc: deque(maxlen=_PASSIVE_WINDOW_SIZE) for svc in MONITORED_SERVICES
        }
        self._prev_status: Dict[str, str] = {}

    def record_call(
        self,
        service: str,
        success: bool,
        latency_ms: int,
        error: Optional[str] = None,
    ) -> None:
        record = _CallRecord(
            timestamp=time.time(),
            success=success,
            latency_ms=latency_ms,
            error=error,
        )
        with self._lock:
            if service not in self._passive:
                self._passive[service] = deque(maxlen=_PASSIVE_WINDOW_SIZE)
            self._passive[service].append(record)

    def compute_status(self, service: str) -> HealthCheckResult:
        """Derive health status from the rolling window of real calls."""
        with self._lock:
            window = list(self._passive.get(service, []))

        if not window:
            return HealthCheckResult(
                service=service,
                status="unknown",
                latency_ms=0,
                last_checked=None,
            )

        total = len(window)
        rate = sum(1 for r in window if r.success) / total
        avg_latency = int(sum(r.latency_ms for r in window) / total)
        last_ts = max(r.timestamp for r in window)
        last_error = None
        for r in reversed(window):
            if not r.success and r.error:
                last_error = r.error
                break

        if rate >= _HEALTHY_THRESHOLD:
            status = "healthy"
        elif rate >= _DEGRADED_THRESHOLD:
            status = "degraded"
        else:
            status = "down"

        with self._lock:
            prev = self._prev_status.get(service)
            self._prev_status[service] = status
        if prev and prev != status:
            logger.warning(
                "[health] %s status changed: %s -> %s (error=%s)",
                service, prev, status, last_error,
            )

        return HealthCheckResult(
            service=service,
            status=status,
            latency_ms=avg_latency,
            last_checked=datetime.fromtimestamp(last_ts, tz=timezone.utc).isoformat(),
            error=last_error,
            success_rate=round(rate, 3),
            sample_size=total,
        )

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            services = list(self._passive)
        return {svc: self._result_to_dict(self.compute_status(svc)) for svc in services}

    def reset(self) -> None:
        with self._lock:
            for window in self._passive.values():
                window.clear()
            self._prev_status.clear()

    @staticmethod
    def _result_to_dict(result: HealthCheckResult) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "status": result.status,
            "latency_ms": result.latency_ms,
            "last_checked": result.last_checked,
            "sample_size": result.sample_size,
        }
        if result.success_rate is not None:
            d["success_rate"] = result.success_rate
        if result.error:
            d["error"] = result.error
        return d


# ---------------------------------------------------------------------------
# Module-level singleton and public API
# ---------------------------------------------------------------------------

_monitor = HealthMonitor()


def record_call(
    service: str,
    success: bool,
    latency_ms: int,
    error: Optional[str] = None,
) -> None:
    """Record an upstream call outcome for passive health tracking.

    Failures in health tracking never propagate — callers wrap in try/except.
    """
    _monitor.record_call(service, success, latency_ms, error)


def get_status() -> Dict[str, Dict[str, Any]]:
    """Get current health status for all monitored sources."""
    return _monitor.get_all_status()


def reset() -> None:
    _monitor.reset()
