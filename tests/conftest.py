"""
Test fixtures and configuration for pytest
"""

import io
import json
import logging
import uuid

import pytest


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch):
    """Fresh metrics and error tracker per test; never talk to Sentry."""
    from scaffold.observability.errors import ErrorTracker
    from scaffold.observability.metrics import MetricsCollector
    from scaffold.observability.tracing import clear_trace_context

    monkeypatch.delenv("SENTRY_DSN", raising=False)
    MetricsCollector.reset()
    ErrorTracker.reset()
    clear_trace_context()
    yield
    MetricsCollector.reset()
    ErrorTracker.reset()
    clear_trace_context()


@pytest.fixture
def json_log():
    """A debug-level ``StructuredLogger`` plus a reader for its JSON lines.

    Yields ``(logger, lines)`` where ``lines()`` returns every emitted record
    parsed into a dict.
    """
    from scaffold.observability.logging import _JsonFormatter, setup_structured_logger
    from scaffold.observability.pii import PiiScrubber

    log = setup_structured_logger(f"test-{uuid.uuid4().hex[:8]}", level="debug")
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        _JsonFormatter({"service": "scaffold-test", "version": "9.9.9", "env": "development"})
    )
    handler.addFilter(PiiScrubber())
    log.logger.addHandler(handler)

    def lines():
        return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]

    yield log, lines
    for h in list(log.logger.handlers):
        log.logger.removeHandler(h)


@pytest.fixture
def service_config():
    """Default configuration with a test service name."""
    from scaffold.config import default_config

    config = default_config()
    config["service"]["name"] = "scaffold-test"
    return config


@pytest.fixture
def server(service_config, json_log):
    """A ready ``ServiceServer`` with no startup grace and no simulated latency."""
    from scaffold.web_server import ServiceServer

    log, _ = json_log
    srv = ServiceServer(service_config, log, startup_grace=0, simulated_latency=0)
    srv.set_ready(True)
    return srv


@pytest.fixture
def client(server):
    return server.app.test_client()
