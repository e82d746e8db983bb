import os
import logging
import uuid

from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

from aggregator import (
    FilterSet, KNOWN_FILTERS, marker_category, merge_locations, visible_locations,
)
from data_service import get_service, get_state, refresh
from ea_trace import TraceContext, set_trace, clear_trace
from models import init_db, list_cache_keys
from health_monitor import get_status as get_health_status

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking, gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    import requests.exceptions
    from sources import TransportFailure

    def _sentry_before_send(event, hint):
        """Demote expected upstream failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            if exc_type is not None and issubclass(
                exc_type, (requests.exceptions.RequestException, TransportFailure)
            ):
                sentry_sdk.add_breadcrumb(
                    category="upstream",
                    message=msg,
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        environment=os.environ.get("EA_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting. Refresh hits three upstreams, so it gets a tight limit.
# In-memory storage is per-process.
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "120/minute")
RATE_LIMIT_REFRESH = os.environ.get("RATE_LIMIT_REFRESH", "6/hour")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)


@app.before_request
def _set_request_context():
    g.request_id = uuid.uuid4().hex[:10]


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------

def _parse_bool(value, default):
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_filters(raw):
    """``food,wifi`` -> FilterSet. Missing or blank means {"all"}."""
    if not raw:
        return FilterSet.default()
    return FilterSet.from_names(raw.split(","))


def _ensure_loaded():
    """First request in a process without a refresh worker loads synchronously."""
    state = get_state()
    if state.status.loaded_at is None:
        refresh()
    return state


def location_to_dict(record, filters):
    d = record.to_dict()
    coords = record.coordinates()
    d["visible"] = filters.matches(record)
    d["mappable"] = coords is not None
    d["coordinates"] = list(coords) if coords else None
    d["category"] = marker_category(record)
    d["hours"] = record.hours_entries()
    return d


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.route("/api/locations")
def api_locations():
    """Deduplicated display set with per-record visibility for the given filters.

    Query params:
      filters       comma-separated filter names (default "all")
      show_api      include Refuge Restrooms records (default 1)
      visible_only  drop records hidden by the filters (default 0)
    """
    state = _ensure_loaded()
    filters = _parse_filters(request.args.get("filters"))
    show_api = _parse_bool(request.args.get("show_api"), state.show_api_locations)

    records = merge_locations(state.sheet_locations, state.api_locations, show_api)
    if _parse_bool(request.args.get("visible_only"), False):
        records = visible_locations(records, filters)

    unknown = [n for n in filters.names if n not in KNOWN_FILTERS]
    return jsonify({
        "locations": [location_to_dict(r, filters) for r in records],
        "count": len(records),
        "filters": filters.to_list(),
        "unknown_filters": sorted(unknown),
        "show_api": show_api,
        "status": state.status.to_dict(),
    })


@app.route("/api/status")
def api_status():
    state = get_state()
    return jsonify({
        "status": state.status.to_dict(),
        "sheet_count": len(state.sheet_locations),
        "api_count": len(state.api_locations),
        "displayed_count": len(state.locations),
    })


@app.route("/api/refresh", methods=["POST"])
@limiter.limit(RATE_LIMIT_REFRESH)
def api_refresh():
    trace = TraceContext(trace_id=g.request_id)
    set_trace(trace)
    try:
        status = get_service().load_all(get_state())
    finally:
        trace.log_summary()
        clear_trace()
    code = 503 if status.state == "unavailable" else 200
    return jsonify({
        "status": status.to_dict(),
        "trace": trace.summary_dict(),
    }), code


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    state = get_state()
    try:
        cache = list_cache_keys()
    except Exception:
        logger.warning("Cache listing failed", exc_info=True)
        cache = []
    degraded = state.status.state == "unavailable"
    return jsonify({
        "status": "degraded" if degraded else "ok",
        "data_state": state.status.state,
        "sources": get_health_status(),
        "cache": cache,
    }), 503 if degraded else 200


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({
        "error": "Too many requests. Please wait and try again.",
    }), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(500)
def internal_error(e):
    return jsonify({"error": "Internal server error"}), 500


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

# Initialize database on import (safe to call repeatedly)
init_db()

if __name__ == "__main__":
    # Development: start the refresh thread in this process
    from worker import start_worker
    start_worker()
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
elif os.environ.get("START_WORKER") == "1":
    try:
        from worker import start_worker
        start_worker()
    except Exception:
        logger.exception("Failed to start background worker via START_WORKER=1")
