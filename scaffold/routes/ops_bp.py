"""
Operational routes: health, readiness, metrics, version, error dashboard.

Endpoints:
    GET /health, /healthz  : liveness, always 200 while the process answers
    GET /ready, /readyz    : readiness, 503 until the service can take traffic
    GET <metrics_path>     : Prometheus exposition format (registered by the server)
    GET /metrics/json      : JSON metrics snapshot
    GET /version           : service name, version and environment
    GET /errors/recent     : recently captured errors
    GET /errors/summary    : error dedup summary
"""

from flask import Blueprint, Response, current_app, jsonify, request

from ..observability.errors import ErrorTracker
from ..observability.metrics import MetricsCollector

ops_bp = Blueprint("ops", __name__)


def _server():
    return current_app.config["server"]


# ── Health ───────────────────────────────────────────────────────


@ops_bp.route("/health")
@ops_bp.route("/healthz")
def health():
    return jsonify(_server().health.get_health())


@ops_bp.route("/ready")
@ops_bp.route("/readyz")
def ready():
    """Readiness probe: 200 when ready, 503 otherwise."""
    srv = _server()
    report = srv.health.get_readiness(server_ready=srv.is_ready)
    report["status"] = "ready" if report["ready"] else "not_ready"
    return jsonify(report), 200 if report["ready"] else 503


@ops_bp.route("/version")
def version():
    service = _server().config.get("service", {})
    return jsonify(
        {
            "service": service.get("name", ""),
            "version": service.get("version", ""),
            "environment": service.get("environment", ""),
        }
    )


# ── Metrics ──────────────────────────────────────────────────────


def metrics_prometheus():
    """Prometheus text exposition format."""
    mc = MetricsCollector()
    return Response(mc.prometheus_exposition(), content_type="text/plain; version=0.0.4; charset=utf-8")


@ops_bp.route("/metrics/json")
def metrics_json():
    """JSON metrics snapshot for custom dashboards."""
    if not _server().metrics_enabled:
        return jsonify({"error": "metrics_disabled"}), 404
    return jsonify(MetricsCollector().snapshot())


# ── Errors ───────────────────────────────────────────────────────


@ops_bp.route("/errors/recent")
def errors_recent():
    """Return the most recent captured errors."""
    limit = request.args.get("limit", 50, type=int)
    return jsonify(ErrorTracker().recent_errors(max(1, limit)))


@ops_bp.route("/errors/summary")
def errors_summary():
    """Return deduplicated error counts."""
    return jsonify(ErrorTracker().error_summary())
