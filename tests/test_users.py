"""Tests for the example user routes (/api/v1/users)."""

import pytest


class TestUserRoutes:
    def test_list_users(self, client):
        resp = client.get("/api/v1/users")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["total"] == 2
        assert [u["username"] for u in data["users"]] == ["john_doe", "jane_doe"]

    def test_get_user(self, client):
        resp = client.get("/api/v1/users/user_42")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["id"] == "user_42"
        assert data["username"] == "john_doe"
        assert isinstance(data["created_at"], int)

    def test_create_user(self, client):
        resp = client.post("/api/v1/users", json={"username": "bob", "email": "bob@example.com"})
        assert resp.status_code == 201
        assert resp.get_json() == {"id": "user_123", "username": "bob", "email": "bob@example.com"}

    @pytest.mark.parametrize(
        "payload",
        [
            {"email": "bob@example.com"},
            {"username": "", "email": "bob@example.com"},
            {"username": "bob"},
            {"username": "bob", "email": "not-an-email"},
            {"username": "bob", "email": 7},
            ["bob", "bob@example.com"],
        ],
    )
    def test_create_user_rejects_invalid(self, client, payload):
        resp = client.post("/api/v1/users", json=payload)
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "invalid_request"}

    def test_create_user_rejects_non_json(self, client):
        resp = client.post("/api/v1/users", data="username=bob", content_type="text/plain")
        assert resp.status_code == 400

    def test_update_user(self, client):
        resp = client.put("/api/v1/users/user_7", json={"username": "new"})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["id"] == "user_7"
        assert isinstance(data["updated_at"], int)

    def test_delete_user(self, client):
        resp = client.delete("/api/v1/users/user_7")
        assert resp.status_code == 204
        assert resp.get_data() == b""

    def test_handlers_log_with_request_context(self, server, json_log):
        _, lines = json_log
        server.app.test_client().get("/api/v1/users/user_9", headers={"X-Request-ID": "req-9"})
        fetch = [e for e in lines() if e["message"] == "Fetching user"]
        assert len(fetch) == 1
        assert fetch[0]["request_id"] == "req-9"
        assert fetch[0]["target_user_id"] == "user_9"

    def test_simulated_latency(self, service_config, json_log):
        from scaffold.web_server import ServiceServer

        log, lines = json_log
        srv = ServiceServer(service_config, log, startup_grace=0, simulated_latency=0.02)
        srv.app.test_client().get("/api/v1/users")
        (access,) = [e for e in lines() if e["message"] == "HTTP request completed"]
        assert access["latency_ms"] >= 20
