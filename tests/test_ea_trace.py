"""Tests for ea_trace.py."""

import threading

from ea_trace import TraceContext, clear_trace, get_trace, set_trace


class TestSummary:
    def test_empty(self):
        assert TraceContext(trace_id="t").summary_dict()["final_outcome"] == "empty"

    def test_success(self):
        trace = TraceContext(trace_id="t")
        trace.record_stage("sheet", 10, origin="fresh", record_count=3)
        trace.record_stage("api", 10, origin="cache", record_count=2)
        s = trace.summary_dict()
        assert s["final_outcome"] == "success"
        assert s["stages_completed"] == 2
        assert [st["stage"] for st in s["stages"]] == ["sheet", "api"]

    def test_stale_is_partial(self):
        trace = TraceContext(trace_id="t")
        trace.record_stage("sheet", 10, origin="stale")
        trace.record_stage("api", 10, origin="fresh")
        s = trace.summary_dict()
        assert s["final_outcome"] == "partial"
        assert s["stages_degraded"] == 1

    def test_all_errored(self):
        trace = TraceContext(trace_id="t")
        trace.record_stage("sheet", 10, error_class="RuntimeError", error_message="boom")
        s = trace.summary_dict()
        assert s["final_outcome"] == "error"
        assert s["stages"][0]["error"] == "RuntimeError: boom"

    def test_api_calls_counted(self):
        trace = TraceContext(trace_id="t")
        trace.record_api_call("sheet", 120, 200, provider_status="OK")
        assert trace.summary_dict()["total_api_calls"] == 1
        assert trace.api_calls[0].stage == "sheet"
        trace.log_summary()


class TestThreadLocal:
    def test_set_get_clear(self):
        trace = TraceContext(trace_id="t")
        set_trace(trace)
        assert get_trace() is trace
        clear_trace()
        assert get_trace() is None

    def test_not_shared_across_threads(self):
        set_trace(TraceContext(trace_id="main"))
        seen = []
        t = threading.Thread(target=lambda: seen.append(get_trace()))
        t.start()
        t.join()
        clear_trace()
        assert seen == [None]
