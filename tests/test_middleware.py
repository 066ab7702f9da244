"""Tests for client IP resolution and the CORS policy."""

import pytest


def _server(config, json_log):
    from scaffold.web_server import ServiceServer

    log, _ = json_log
    return ServiceServer(config, log, startup_grace=0, simulated_latency=0)


# ── Client IP ────────────────────────────────────────────────────


class TestClientIpResolver:
    def test_untrusted_peer_headers_ignored(self):
        from scaffold.middleware import ClientIpResolver

        resolver = ClientIpResolver()
        headers = {"X-Forwarded-For": "203.0.113.9", "X-Real-IP": "203.0.113.8"}
        assert resolver.resolve(headers, "10.0.0.5") == "10.0.0.5"

    @pytest.mark.parametrize(
        "headers,expected",
        [
            (
                {"CF-Connecting-IP": "198.51.100.1", "X-Real-IP": "198.51.100.2", "X-Forwarded-For": "198.51.100.3"},
                "198.51.100.1",
            ),
            ({"X-Real-IP": "198.51.100.2", "X-Forwarded-For": "198.51.100.3"}, "198.51.100.2"),
            ({"X-Forwarded-For": " 198.51.100.3 , 10.0.0.1"}, "198.51.100.3"),
            ({"X-Forwarded-For": " "}, "10.0.0.5"),
            ({}, "10.0.0.5"),
        ],
    )
    def test_trusted_proxy_header_precedence(self, headers, expected):
        from scaffold.middleware import ClientIpResolver

        resolver = ClientIpResolver(["10.0.0.0/8"])
        assert resolver.resolve(headers, "10.0.0.5") == expected

    def test_trust_all(self):
        from scaffold.middleware import ClientIpResolver

        resolver = ClientIpResolver(trust_all=True)
        assert resolver.resolve({"X-Real-IP": "198.51.100.2"}, "192.0.2.1") == "198.51.100.2"

    def test_single_address_and_ipv6(self):
        from scaffold.middleware import ClientIpResolver

        resolver = ClientIpResolver(["192.0.2.1", "2001:db8::/32"])
        assert resolver.is_trusted("192.0.2.1")
        assert not resolver.is_trusted("192.0.2.2")
        assert resolver.is_trusted("2001:db8::7")
        assert not resolver.is_trusted("not-an-ip")
        assert not resolver.is_trusted(None)

    def test_invalid_entry_raises(self):
        from scaffold.middleware import ClientIpResolver

        with pytest.raises(ValueError):
            ClientIpResolver(["proxy.internal"])


class TestClientIpInLogs:
    def test_forwarded_header_ignored_by_default(self, client, json_log):
        _, lines = json_log
        client.get("/api/v1/users", headers={"X-Forwarded-For": "203.0.113.9"})
        (entry,) = [e for e in lines() if e["message"] == "HTTP request completed"]
        assert entry["ip"] == "127.0.0.1"

    def test_trusted_proxy_sets_access_and_audit_ip(self, service_config, json_log):
        service_config["middleware"]["trusted_proxies"] = ["127.0.0.1"]
        srv = _server(service_config, json_log)
        _, lines = json_log
        srv.app.test_client().delete(
            "/api/v1/users/user_1", headers={"X-Forwarded-For": "203.0.113.9, 127.0.0.1"}
        )
        entries = {e["message"]: e for e in lines()}
        assert entries["HTTP request completed"]["ip"] == "203.0.113.9"
        assert entries["audit_event"]["client_ip"] == "203.0.113.9"


# ── CORS ─────────────────────────────────────────────────────────


@pytest.fixture
def cors_config(service_config):
    service_config["cors"].update(
        {
            "enabled": True,
            "allow_origins": ["https://app.example.com", "https://*.example.org"],
            "allow_credentials": True,
            "max_age_seconds": 600,
        }
    )
    return service_config


class TestCorsPolicy:
    def test_disabled_by_default(self, client):
        resp = client.get("/api/v1/users", headers={"Origin": "https://app.example.com"})
        assert "Access-Control-Allow-Origin" not in resp.headers

    def test_allowed_origin(self, cors_config, json_log):
        client = _server(cors_config, json_log).app.test_client()
        resp = client.get("/api/v1/users", headers={"Origin": "https://app.example.com"})
        assert resp.status_code == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "https://app.example.com"
        assert resp.headers["Access-Control-Allow-Credentials"] == "true"
        assert "X-Request-ID" in resp.headers["Access-Control-Expose-Headers"]
        assert "Origin" in resp.headers["Vary"]

    def test_disallowed_origin(self, cors_config, json_log):
        client = _server(cors_config, json_log).app.test_client()
        resp = client.get("/api/v1/users", headers={"Origin": "https://evil.example.net"})
        assert resp.status_code == 200
        assert "Access-Control-Allow-Origin" not in resp.headers

    def test_no_origin_header(self, cors_config, json_log):
        client = _server(cors_config, json_log).app.test_client()
        resp = client.get("/api/v1/users")
        assert "Access-Control-Allow-Origin" not in resp.headers

    def test_preflight(self, cors_config, json_log):
        client = _server(cors_config, json_log).app.test_client()
        resp = client.options(
            "/api/v1/users",
            headers={"Origin": "https://api.example.org", "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code == 204
        assert resp.headers["Access-Control-Allow-Origin"] == "https://api.example.org"
        assert resp.headers["Access-Control-Allow-Methods"] == "GET, POST, PUT, DELETE, OPTIONS"
        assert resp.headers["Access-Control-Max-Age"] == "600"
        assert resp.headers["X-Request-ID"]

    def test_preflight_from_disallowed_origin(self, cors_config, json_log):
        client = _server(cors_config, json_log).app.test_client()
        resp = client.options("/api/v1/users", headers={"Origin": "https://evil.example.net"})
        assert resp.status_code == 204
        assert "Access-Control-Allow-Methods" not in resp.headers

    @pytest.mark.parametrize(
        "origin,allowed",
        [
            ("https://api.example.org", True),
            ("https://a.b.example.org", True),
            ("https://example.org", False),
            ("http://api.example.org", False),
            ("https://api.example.org.evil.net", False),
        ],
    )
    def test_wildcard_subdomain(self, origin, allowed):
        from scaffold.middleware import CorsPolicy

        assert CorsPolicy(["https://*.example.org"]).is_allowed(origin) is allowed

    def test_star_allows_any_origin(self):
        from scaffold.middleware import CorsPolicy

        assert CorsPolicy(["*"]).is_allowed("https://anything.test")

    def test_development_defaults_to_localhost(self, service_config):
        from scaffold.middleware import CorsPolicy

        service_config["cors"]["enabled"] = True
        policy = CorsPolicy.from_config(service_config)
        assert policy.is_allowed("http://localhost:3000")
        assert policy.is_allowed("http://127.0.0.1:5173")
        assert not policy.is_allowed("https://app.example.com")

    def test_production_without_origins_allows_none(self, service_config):
        from scaffold.middleware import CorsPolicy

        service_config["cors"]["enabled"] = True
        service_config["service"]["environment"] = "production"
        assert not CorsPolicy.from_config(service_config).is_allowed("http://localhost:3000")

    def test_from_config_disabled(self, service_config):
        from scaffold.middleware import CorsPolicy

        assert CorsPolicy.from_config(service_config) is None
