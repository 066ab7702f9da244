"""
HTTP server for the service scaffold.

Builds the Flask app, wires the observability middleware (request tracing,
metrics, error tracking), registers the ops and API blueprints and manages
the readiness flag across start-up and shutdown.
"""

import threading
import time
from typing import Any, Dict, Optional

from flask import Flask
from werkzeug.serving import BaseWSGIServer, make_server

from .config import default_config, redact_options_from_config
from .constants import (
    DEFAULT_SHUTDOWN_SECONDS,
    SIMULATED_LATENCY_SECONDS,
    STARTUP_GRACE_SECONDS,
)
from .middleware import ClientIpResolver, CorsPolicy
from .observability.errors import ErrorTracker
from .observability.logging import StructuredLogger, setup_structured_logger
from .observability.metrics import MetricsCollector
from .observability.redaction import RedactOptions
from .observability.tracing import RequestTracer
from .routes import ops_bp, users_bp
from .routes.ops_bp import metrics_prometheus
from .services.health_service import HealthService


def build_service_logger(
    config: Dict[str, Any], redact_options: Optional[RedactOptions] = None
) -> StructuredLogger:
    """The service's root ``StructuredLogger`` as described by *config*."""
    service = config.get("service", {})
    obs = config.get("observability", {})
    return setup_structured_logger(
        service.get("name", "scaffold"),
        level=service.get("log_level", "info"),
        fmt=obs.get("log_format", "json"),
        log_file=obs.get("log_file") or None,
        redact_options=redact_options or redact_options_from_config(config),
        static_fields={
            "service": service.get("name", ""),
            "version": service.get("version", ""),
            "env": service.get("environment", ""),
        },
    )


class ServiceServer:
    """Flask application plus the werkzeug server that hosts it."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        logger: Optional[StructuredLogger] = None,
        *,
        startup_grace: float = STARTUP_GRACE_SECONDS,
        simulated_latency: float = SIMULATED_LATENCY_SECONDS,
    ):
        """Initialise the Flask app.

        Args:
            config: Loaded configuration dict; defaults to ``default_config()``.
            logger: Root logger handle; built from *config* when omitted.
            startup_grace: Seconds readiness stays "starting" after boot.
            simulated_latency: Delay injected by the stub API handlers.
        """
        self.config = config if config is not None else default_config()
        self.redact_options = redact_options_from_config(self.config)
        self.logger = logger or build_service_logger(self.config, self.redact_options)
        self.simulated_latency = simulated_latency

        obs = self.config.get("observability", {})
        mw = self.config.get("middleware", {})
        sample_rate = float(obs.get("tracing_sample_rate", 1.0)) if obs.get("tracing_enabled", True) else 0.0
        self.metrics_enabled = bool(obs.get("metrics_enabled", True))
        self.metrics = MetricsCollector() if self.metrics_enabled else None
        self.health = HealthService(self.config, startup_grace=startup_grace)
        self.shutdown_timeout = float(
            self.config.get("server", {}).get("graceful_shutdown_seconds", DEFAULT_SHUTDOWN_SECONDS)
        )

        self._ready = False
        self._ready_lock = threading.Lock()
        self._httpd: Optional[BaseWSGIServer] = None

        self.app = Flask(__name__)
        self.app.json.sort_keys = False

        self.client_ips = ClientIpResolver(
            mw.get("trusted_proxies", ()), trust_all=bool(mw.get("trust_all_proxies", False))
        )
        self.tracer = RequestTracer(
            self.app,
            logger=self.logger,
            metrics=self.metrics,
            skip_paths=mw.get("log_skip_paths", ()),
            log_request_body=bool(mw.get("log_request_body", False)),
            max_body_bytes=int(mw.get("max_body_bytes", 0)),
            slow_threshold_ms=float(mw.get("slow_threshold_ms", 1000.0)),
            sample_rate=sample_rate,
            request_id_header=mw.get("request_id_header", "X-Request-ID"),
            redact_options=self.redact_options,
            client_ip=self.client_ips.client_ip,
        )
        self.cors = CorsPolicy.from_config(self.config)
        if self.cors is not None:
            self.cors.install(self.app)
        self.errors = ErrorTracker(self.logger, self.redact_options)
        self.errors.install_flask(self.app)

        self._register_blueprints()

        self.logger.info(
            "ServiceServer initialized",
            metrics_enabled=self.metrics_enabled,
            cors_enabled=self.cors is not None,
            environment=self.config.get("service", {}).get("environment", ""),
        )

    def _register_blueprints(self):
        """Register Blueprints and expose server on app."""
        self.app.config["server"] = self
        for bp in (ops_bp, users_bp):
            self.app.register_blueprint(bp)
        if self.metrics_enabled:
            path = self.config.get("observability", {}).get("metrics_path", "/metrics")
            self.app.add_url_rule(path, "metrics", metrics_prometheus)

    # ── Readiness ────────────────────────────────────────────────

    @property
    def is_ready(self) -> bool:
        with self._ready_lock:
            return self._ready

    def set_ready(self, ready: bool) -> None:
        with self._ready_lock:
            self._ready = ready

    # ── Lifecycle ────────────────────────────────────────────────

    def run(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Serve until ``shutdown`` is called (blocking)."""
        host = host if host is not None else self.config["server"]["host"]
        port = port if port is not None else self.config["server"]["port"]

        self._httpd = make_server(host, int(port), self.app, threaded=True)
        self.logger.info(
            "Starting HTTP server",
            address=f"{host}:{port}",
            environment=self.config["service"]["environment"],
        )
        self.set_ready(True)
        self.logger.info("HTTP server ready to accept requests")
        try:
            self._httpd.serve_forever()
        finally:
            self._httpd.server_close()
            self._httpd = None

    def shutdown(self, drain_seconds: float = 0.0) -> bool:
        """Stop accepting traffic and stop the server.

        Readiness drops first so load balancers can notice; after
        *drain_seconds* the serve loop is stopped, waiting at most
        ``graceful_shutdown_seconds``.  Must not be called from the thread
        running ``run``.

        Returns:
            ``True`` if the server stopped within the timeout.
        """
        self.set_ready(False)
        self.logger.info("Shutting down HTTP server")
        if drain_seconds > 0:
            time.sleep(drain_seconds)

        httpd = self._httpd
        if httpd is None:
            return True

        stopper = threading.Thread(target=httpd.shutdown, name="http-shutdown", daemon=True)
        stopper.start()
        stopper.join(self.shutdown_timeout)
        if stopper.is_alive():
            self.logger.warning("HTTP server shutdown timed out", timeout_seconds=self.shutdown_timeout)
            return False
        self.logger.info("HTTP server shutdown complete")
        return True
