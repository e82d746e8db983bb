"""
Load-scoped tracing for Eugene Access data refreshes.

Provides a thread-local TraceContext that records:
  - Per-stage timing (blocklist, sheet, api, aggregate)
  - Per-outbound-call timing (service, elapsed_ms, status, cache origin)
  - End-of-load summary (total_elapsed, total_api_calls, outcome)

Usage:
    from ea_trace import TraceContext, get_trace, set_trace, clear_trace

    ctx = TraceContext(trace_id=load_id)
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

    # In source adapters:
    trace = get_trace()
    if trace:
        trace.record_api_call(...)
"""

import time
import threading
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any

logger = logging.getLogger(__name__)


# =============================================================================
# Data classes for trace records
# =============================================================================

@dataclass
class APICallRecord:
    """One outbound HTTP call (sheet, refuge_api, blocklist)."""
    service: str
    elapsed_ms: int
    status_code: int
    provider_status: str = ""   # "OK", "HTTP_ERROR", "TIMEOUT", ...
    retried: bool = False
    stage: str = ""


@dataclass
class StageRecord:
    stage_name: str
    elapsed_ms: int = 0
    origin: str = ""            # cache origin: cache/fresh/stale/default
    record_count: int = 0
    error_class: str = ""
    error_message: str = ""


# =============================================================================
# Trace context
# =============================================================================

@dataclass
class TraceContext:
    """Accumulates timing data for a single load_all() run."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    api_calls: List[APICallRecord] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_stage(
        self,
        stage_name: str,
        elapsed_ms: int,
        origin: str = "",
        record_count: int = 0,
        error_class: str = "",
        error_message: str = "",
    ):
        rec = StageRecord(
            stage_name=stage_name,
            elapsed_ms=elapsed_ms,
            origin=origin,
            record_count=record_count,
            error_class=error_class,
            error_message=error_message,
        )
        with self._lock:
            self.stages.append(rec)

        status = "ERR" if error_class else "OK"
        err_info = f" err={error_class}: {error_message}" if error_class else ""
        logger.info(
            "  [stage] trace=%s %s %s %dms origin=%s records=%d%s",
            self.trace_id,
            stage_name,
            status,
            elapsed_ms,
            origin or "-",
            record_count,
            err_info,
        )

    def record_api_call(
        self,
        service: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
        retried: bool = False,
        stage: str = "",
    ):
        rec = APICallRecord(
            service=service,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
            retried=retried,
            stage=stage or service,
        )
        with self._lock:
            self.api_calls.append(rec)
        logger.info(
            "  [api] trace=%s svc=%s ms=%d http=%d provider=%s",
            self.trace_id,
            service,
            elapsed_ms,
            status_code,
            provider_status,
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary_dict(self) -> Dict[str, Any]:
        total_elapsed = int((time.time() - self.request_start) * 1000)
        errored = [s for s in self.stages if s.error_class]
        degraded = [s for s in self.stages if s.origin in ("stale", "default")]

        if errored and len(errored) == len(self.stages):
            outcome = "error"
        elif not self.stages:
            outcome = "empty"
        elif errored or degraded:
            outcome = "partial"
        else:
            outcome = "success"

        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": total_elapsed,
            "total_api_calls": len(self.api_calls),
            "stages_completed": len(self.stages) - len(errored),
            "stages_degraded": len(degraded),
            "stages_errored": len(errored),
            "final_outcome": outcome,
            "stages": [
                {
                    "stage": s.stage_name,
                    "elapsed_ms": s.elapsed_ms,
                    "origin": s.origin,
                    "records": s.record_count,
                    "error": (
                        f"{s.error_class}: {s.error_message}"
                        if s.error_class else None
                    ),
                }
                for s in self.stages
            ],
        }

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d "
            "completed=%d degraded=%d errored=%d outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            s["stages_completed"],
            s["stages_degraded"],
            s["stages_errored"],
            s["final_outcome"],
        )


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current thread's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    """Set the trace context for the current thread."""
    _trace_local.ctx = ctx


def clear_trace():
    """Clear the current trace context."""
    _trace_local.ctx = None
