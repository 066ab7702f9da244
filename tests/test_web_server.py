"""Tests for ServiceServer wiring: request tracing, access logs and lifecycle."""

import threading
import urllib.request


def _access(lines, message="HTTP request completed"):
    return [e for e in lines() if e["message"] == message]


class TestCorrelationHeaders:
    def test_generates_request_and_correlation_ids(self, client):
        resp = client.get("/api/v1/users")
        request_id = resp.headers["X-Request-ID"]
        assert len(request_id) == 36
        assert resp.headers["X-Correlation-ID"] == request_id
        assert len(resp.headers["X-Trace-ID"]) == 32
        assert resp.headers["traceparent"].startswith(f"00-{resp.headers['X-Trace-ID']}-")

    def test_propagates_incoming_ids(self, client):
        resp = client.get(
            "/api/v1/users",
            headers={
                "X-Request-ID": "req-123",
                "X-Correlation-ID": "corr-456",
                "traceparent": "00-4bf92f3577b34da6a3ce929d0e0e4736-00f067aa0ba902b7-01",
            },
        )
        assert resp.headers["X-Request-ID"] == "req-123"
        assert resp.headers["X-Correlation-ID"] == "corr-456"
        assert resp.headers["X-Trace-ID"] == "4bf92f3577b34da6a3ce929d0e0e4736"
        assert resp.headers["traceparent"].endswith("-01")

    def test_user_and_tenant_in_access_log(self, client, json_log):
        _, lines = json_log
        client.get("/api/v1/users", headers={"X-User-ID": "u-1", "X-Tenant-ID": "t-1"})
        (entry,) = _access(lines)
        assert entry["user_id"] == "u-1"
        assert entry["tenant_id"] == "t-1"

    def test_custom_request_id_header(self, service_config, json_log):
        from scaffold.web_server import ServiceServer

        service_config["middleware"]["request_id_header"] = "X-Amzn-Trace-Id"
        log, _ = json_log
        srv = ServiceServer(service_config, log, startup_grace=0, simulated_latency=0)
        resp = srv.app.test_client().get("/version", headers={"X-Amzn-Trace-Id": "amzn-1"})
        assert resp.headers["X-Amzn-Trace-Id"] == "amzn-1"

    def test_tracing_disabled_marks_new_traces_unsampled(self, service_config, json_log):
        from scaffold.web_server import ServiceServer

        service_config["observability"]["tracing_enabled"] = False
        log, _ = json_log
        srv = ServiceServer(service_config, log, startup_grace=0, simulated_latency=0)
        resp = srv.app.test_client().get("/version")
        assert resp.headers["traceparent"].endswith("-00")


class TestAccessLog:
    def test_completed_request_fields(self, client, json_log):
        _, lines = json_log
        client.get("/api/v1/users?page=2", headers={"User-Agent": "pytest-agent"})
        (entry,) = _access(lines)
        assert entry["level"] == "info"
        assert entry["method"] == "GET"
        assert entry["path"] == "/api/v1/users"
        assert entry["route"] == "/api/v1/users"
        assert entry["status"] == 200
        assert entry["query"] == "page=2"
        assert entry["user_agent"] == "pytest-agent"
        assert entry["latency_ms"] >= 0
        assert entry["request_id"]
        assert entry["trace_id"]

    def test_skip_paths_are_not_logged(self, client, json_log):
        _, lines = json_log
        client.get("/health")
        client.get("/readyz")
        client.get("/metrics")
        assert _access(lines) == []

    def test_client_error_logged_as_warning(self, client, json_log):
        _, lines = json_log
        client.get("/nope")
        (entry,) = _access(lines, "HTTP request client error")
        assert entry["level"] == "warning"
        assert entry["status"] == 404

    def test_server_error_logged_as_error(self, server, json_log):
        @server.app.route("/explode")
        def explode():
            raise ValueError("bad")

        _, lines = json_log
        server.app.test_client().get("/explode")
        (entry,) = _access(lines, "HTTP request failed")
        assert entry["level"] == "error"
        assert entry["status"] == 500

    def test_request_body_logged_redacted(self, service_config, json_log):
        from scaffold.web_server import ServiceServer

        service_config["middleware"]["log_request_body"] = True
        log, lines = json_log
        srv = ServiceServer(service_config, log, startup_grace=0, simulated_latency=0)
        srv.app.test_client().post(
            "/api/v1/users",
            json={"username": "bob", "email": "bob@example.com", "password": "hunter2"},
        )
        (entry,) = _access(lines)
        assert entry["request_body"] == '{"username":"bob","email":"[REDACTED]","password":"[REDACTED]"}'
        assert "hunter2" not in "\n".join(str(e) for e in lines())

    def test_form_body_and_query_are_redacted(self, service_config, json_log):
        from scaffold.web_server import ServiceServer

        service_config["middleware"]["log_request_body"] = True
        log, lines = json_log
        srv = ServiceServer(service_config, log, startup_grace=0, simulated_latency=0)
        srv.app.test_client().post(
            "/api/v1/users?password=qsecret&page=1",
            data="username=bob&password=hunter2",
            content_type="application/x-www-form-urlencoded",
        )
        (entry,) = _access(lines, "HTTP request client error")
        assert entry["query"] == "password=[REDACTED_PASSWORD]&page=1"
        assert entry["request_body"] == "username=bob&password=[REDACTED_PASSWORD]"
        dumped = "\n".join(str(e) for e in lines())
        assert "qsecret" not in dumped
        assert "hunter2" not in dumped

    def test_pii_under_innocuous_json_key_is_redacted(self, service_config, json_log):
        from scaffold.web_server import ServiceServer

        service_config["middleware"]["log_request_body"] = True
        log, lines = json_log
        srv = ServiceServer(service_config, log, startup_grace=0, simulated_latency=0)
        srv.app.test_client().post(
            "/api/v1/users", json={"username": "bob", "note": "reach me at bob@example.com"}
        )
        (entry,) = _access(lines, "HTTP request client error")
        assert "bob@example.com" not in entry["request_body"]
        assert "[REDACTED_EMAIL]" in entry["request_body"]

    def test_unhandled_errors_go_to_service_logger(self, server, json_log):
        @server.app.route("/explode-secret")
        def explode_secret():
            raise RuntimeError("db login failed password=hunter2")

        _, lines = json_log
        resp = server.app.test_client().get("/explode-secret", headers={"X-Request-ID": "req-err"})
        assert resp.status_code == 500
        (captured,) = [e for e in lines() if e["message"].startswith("Captured RuntimeError")]
        assert captured["request_id"] == "req-err"
        assert "hunter2" not in str(captured)

    def test_request_body_over_cap_not_logged(self, service_config, json_log):
        from scaffold.web_server import ServiceServer

        service_config["middleware"]["log_request_body"] = True
        service_config["middleware"]["max_body_bytes"] = 10
        log, lines = json_log
        srv = ServiceServer(service_config, log, startup_grace=0, simulated_latency=0)
        srv.app.test_client().post("/api/v1/users", json={"username": "bob", "email": "bob@example.com"})
        (entry,) = _access(lines)
        assert "request_body" not in entry

    def test_request_body_not_logged_by_default(self, client, json_log):
        _, lines = json_log
        client.post("/api/v1/users", json={"username": "bob", "email": "bob@example.com"})
        (entry,) = _access(lines)
        assert "request_body" not in entry

    def test_headers_logged_redacted_at_debug(self, client, json_log):
        _, lines = json_log
        client.get("/api/v1/users", headers={"Authorization": "Bearer abcdefgh12345", "X-Custom": "ok"})
        (entry,) = _access(lines)
        assert "Authorization" in entry["headers"]
        assert "abcdefgh12345" not in str(entry["headers"])
        assert entry["headers"]["X-Custom"] == ["ok"]

    def test_headers_not_logged_above_debug(self, client, json_log):
        import logging

        log, lines = json_log
        log.logger.setLevel(logging.INFO)
        client.get("/api/v1/users", headers={"Authorization": "Bearer abcdefgh12345"})
        (entry,) = _access(lines)
        assert "headers" not in entry

    def test_slow_request_warning(self, service_config, json_log):
        from scaffold.web_server import ServiceServer

        service_config["middleware"]["slow_threshold_ms"] = 1.0
        log, lines = json_log
        srv = ServiceServer(service_config, log, startup_grace=0, simulated_latency=0.01)
        srv.app.test_client().get("/api/v1/users")
        (slow,) = _access(lines, "Slow HTTP request detected")
        assert slow["level"] == "warning"
        assert slow["threshold_ms"] == 1.0

    def test_audit_for_state_changing_methods(self, client, json_log):
        _, lines = json_log
        client.get("/api/v1/users")
        client.delete("/api/v1/users/user_1")
        client.post("/api/v1/users", json={})
        audits = _access(lines, "audit_event")
        assert [(a["action"], a["result"], a["status_code"]) for a in audits] == [
            ("DELETE", "success", 204),
            ("POST", "failure", 400),
        ]
        assert all(a["resource"].startswith("/api/v1/users") for a in audits)

    def test_in_flight_gauge_returns_to_zero(self, client):
        from scaffold.observability.metrics import MetricsCollector

        client.get("/api/v1/users")
        client.get("/nope")
        assert MetricsCollector().snapshot()["gauges"]["http_requests_in_flight"] == 0


class TestLifecycle:
    def test_not_ready_until_run(self, service_config, json_log):
        from scaffold.web_server import ServiceServer

        log, _ = json_log
        srv = ServiceServer(service_config, log, startup_grace=0)
        assert srv.is_ready is False
        assert srv.shutdown() is True

    def test_run_and_shutdown(self, service_config, json_log):
        from scaffold.web_server import ServiceServer

        log, lines = json_log
        srv = ServiceServer(service_config, log, startup_grace=0, simulated_latency=0)
        thread = threading.Thread(target=srv.run, kwargs={"host": "127.0.0.1", "port": 0}, daemon=True)
        thread.start()
        for _ in range(200):
            if srv.is_ready:
                break
            threading.Event().wait(0.01)
        assert srv.is_ready

        port = srv._httpd.server_port
        with urllib.request.urlopen(f"http://127.0.0.1:{port}/healthz", timeout=5) as resp:
            assert resp.status == 200

        assert srv.shutdown() is True
        thread.join(5)
        assert not thread.is_alive()
        assert srv.is_ready is False
        messages = [e["message"] for e in lines()]
        assert "HTTP server ready to accept requests" in messages
        assert "HTTP server shutdown complete" in messages
