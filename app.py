import os
import sys
import logging
import threading
import uuid
from collections import OrderedDict

from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

from provider_backends import build_providers
from search_config import DEFAULT_LOCATION_LABEL, DEFAULT_RADIUS_MILES, SEARCH_POLICY
from venue_types import DEFAULT_FILTERS, NormalizedVenue, SearchState, parse_filters
from workspace_search import SORT_KEYS, WorkspaceFinder, sort_venues

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking, gated on SENTRY_DSN (unset in local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    import requests.exceptions
    from provider_backends import ProviderError

    def _sentry_before_send(event, hint):
        """Demote expected failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            # Provider rate limits, outages and rejected keys are handled upstream
            if exc_type is not None and issubclass(exc_type, ProviderError):
                sentry_sdk.add_breadcrumb(
                    category=f"provider.{getattr(exc_value, 'provider', '') or 'unknown'}",
                    message=msg,
                    level="warning",
                )
                return None
            if exc_type is not None and issubclass(exc_type, requests.exceptions.RequestException):
                sentry_sdk.add_breadcrumb(
                    category="http",
                    message=msg,
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("RAILWAY_GIT_COMMIT_SHA"),
        environment=os.environ.get("RAILWAY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'remoterover-dev-key')
app.config['JSON_AS_ASCII'] = False
if (not app.config['SECRET_KEY'] or app.config['SECRET_KEY'] == 'remoterover-dev-key') and os.environ.get('FLASK_DEBUG') != '1':
    print("FATAL: SECRET_KEY is not set. Refusing to start with insecure default.", file=sys.stderr)
    print("Set SECRET_KEY in your environment or .env file.", file=sys.stderr)
    sys.exit(1)

# Proxy fix: the PaaS router sets X-Forwarded-For.  ProxyFix rewrites
# request.remote_addr to the real client IP so both Flask-Limiter and
# logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting: every search fans out to dozens of paid provider calls.
# In-memory storage is per-process (with 2 gunicorn workers the effective
# limit is ~2x nominal).
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")
RATE_LIMIT_SEARCH = os.environ.get("RATE_LIMIT_SEARCH", "20/minute")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

# ---------------------------------------------------------------------------
# Startup: warn immediately if required config is missing
# ---------------------------------------------------------------------------
if not os.environ.get("GOOGLE_MAPS_API_KEY"):
    logger.warning(
        "GOOGLE_MAPS_API_KEY is not set. "
        "Searches will fail until it is configured. "
        "For local development, copy .env.example to .env and add your key."
    )


# ---------------------------------------------------------------------------
# Per-session finders
# ---------------------------------------------------------------------------
# A new search from the same session supersedes the one still in flight,
# so each session keeps its own WorkspaceFinder (and generation counter).
MAX_SESSIONS = int(os.environ.get("MAX_SEARCH_SESSIONS", "500"))

_finders: "OrderedDict[str, WorkspaceFinder]" = OrderedDict()
_finders_lock = threading.Lock()


def _build_finder() -> WorkspaceFinder:
    """Construct a finder for the configured providers."""
    return WorkspaceFinder(build_providers())


def _session_key() -> str:
    return (
        request.headers.get("X-Session-Id")
        or request.args.get("session")
        or get_remote_address()
        or "anonymous"
    )


def _finder_for(session_key: str) -> WorkspaceFinder:
    with _finders_lock:
        finder = _finders.get(session_key)
        if finder is None:
            finder = _build_finder()
            _finders[session_key] = finder
            while len(_finders) > MAX_SESSIONS:
                _finders.popitem(last=False)
        else:
            _finders.move_to_end(session_key)
        return finder


def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()


@app.after_request
def _after_request(response):
    response.headers["X-Request-Id"] = getattr(g, "request_id", "")
    return response


def _check_service_config():
    """
    Validate required service configuration.
    Returns (is_ok, missing_keys) tuple.
    """
    missing = []
    if not os.environ.get("GOOGLE_MAPS_API_KEY"):
        missing.append("GOOGLE_MAPS_API_KEY")
    return (len(missing) == 0, missing)


def _bad_request(message: str):
    return jsonify({"error": message, "request_id": g.request_id}), 400


def _parse_filter_args():
    """Filters from ?filters=wifi,quiet and/or repeated ?filter= params."""
    raw = []
    for value in request.args.getlist("filters") + request.args.getlist("filter"):
        raw.extend(part for part in value.split(",") if part.strip())
    if "filters" not in request.args and "filter" not in request.args:
        return DEFAULT_FILTERS
    return parse_filters(raw)


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

@app.route("/api/search")
@limiter.limit(RATE_LIMIT_SEARCH)
def api_search():
    """Search for work-friendly venues.

    Query params: location, radius (miles), filters (comma-separated),
    sort (distance|rating).  Provider failures still return 200 with an
    empty venue list; the report's state says what happened.
    """
    request_id = g.request_id
    config_ok, missing_keys = _check_service_config()
    if not config_ok:
        logger.error("[%s] Missing required env vars: %s", request_id, missing_keys)
        return jsonify({
            "error": "Search is unavailable: required API keys are not configured.",
            "missing_keys": missing_keys,
            "request_id": request_id,
        }), 503

    location = (request.args.get("location") or "").strip() or DEFAULT_LOCATION_LABEL
    sort_by = (request.args.get("sort") or "distance").strip().lower()
    if sort_by not in SORT_KEYS:
        return _bad_request(f"sort must be one of: {', '.join(SORT_KEYS)}")
    try:
        radius = float(request.args.get("radius", DEFAULT_RADIUS_MILES))
    except ValueError:
        return _bad_request("radius must be a number of miles")
    if radius <= 0:
        return _bad_request("radius must be positive")
    try:
        filters = _parse_filter_args()
    except ValueError as e:
        return _bad_request(str(e))

    finder = _finder_for(_session_key())
    report = finder.run(location, radius, filters, sort_by)
    logger.info(
        "[%s] search trace=%s gen=%d state=%s venues=%d",
        request_id, report.trace_id, report.generation, report.state.value, len(report.venues),
    )

    body = report.to_dict()
    body["request_id"] = request_id
    if report.superseded:
        body["error"] = "Superseded by a newer search from this session."
        return jsonify(body), 409
    if report.state == SearchState.FAILED:
        logger.warning("[%s] search failed: %s", request_id, report.failure_reason)
    return jsonify(body)


@app.route("/api/sort", methods=["POST"])
def api_sort():
    """Re-sort venues the client already has, without querying providers."""
    data = request.get_json(silent=True) or {}
    sort_by = str(data.get("sort", "distance")).strip().lower()
    venues = data.get("venues")
    if not isinstance(venues, list):
        return _bad_request("venues must be a list")
    try:
        parsed = [NormalizedVenue.from_dict(v) for v in venues]
        ordered = sort_venues(parsed, sort_by)
    except (KeyError, TypeError, ValueError) as e:
        return _bad_request(f"invalid sort request: {e}")
    return jsonify({
        "sort": sort_by,
        "venues": [v.to_dict() for v in ordered],
        "request_id": g.request_id,
    })


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    config_ok, missing = _check_service_config()
    return jsonify({
        "status": "ok" if config_ok else "degraded",
        "missing_keys": missing,
        "yelp_enabled": bool(os.environ.get("YELP_API_KEY")),
        "policy_version": SEARCH_POLICY.version,
    }), 200 if config_ok else 503


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


@app.errorhandler(405)
def method_not_allowed(e):
    return jsonify({"error": "Method not allowed"}), 405


@app.errorhandler(500)
def internal_error(e):
    return jsonify({
        "error": "Internal server error",
        "request_id": getattr(g, "request_id", None),
    }), 500


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
