"""
API tests for health and monitoring endpoints, plus the cross-cutting
response headers every route carries.
"""
import pytest


class TestHealthEndpoints:
    def test_healthcheck(self, test_client):
        response = test_client.get("/healthcheck")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "Portfolio Live API"
        assert "timestamp" in data

    def test_ping(self, test_client):
        assert test_client.get("/monitoring/ping").json()["message"] == "pong"

    def test_detailed_health(self, test_client, register_user):
        register_user("alice")

        with test_client.websocket_connect("/ws/portfolio") as ws:
            ws.receive_json()
            ws.send_json({"event": "joinPortfolioRoom", "data": "alice"})
            ws.receive_json()

            data = test_client.get("/monitoring/detailed").json()

        assert data["status"] == "healthy"
        assert data["components"]["database"]["status"] == "healthy"
        assert data["components"]["database"]["portfolios"] == 1
        assert data["components"]["cache"]["status"] == "healthy"
        realtime = data["components"]["realtime"]["stats"]
        assert realtime["total_connections"] == 1
        assert realtime["room_sizes"] == {"alice": 1}

    def test_cache_stats(self, test_client, register_user, auth_headers):
        account = register_user("bob")
        test_client.get("/auth/me", headers=auth_headers(account["token"]))
        test_client.get("/auth/me", headers=auth_headers(account["token"]))

        stats = test_client.get("/monitoring/cache/stats").json()["cache_stats"]

        assert stats["backend"] == "memory"
        assert stats["hits"] >= 1
        assert stats["total_keys"] == 1


class TestResponseHeaders:
    def test_security_and_tracing_headers(self, test_client):
        response = test_client.get("/healthcheck")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Correlation-ID"]
        assert float(response.headers["X-Process-Time"]) >= 0

    def test_correlation_id_echoed_in_errors(self, test_client):
        response = test_client.get(
            "/portfolio/nobody", headers={"X-Correlation-ID": "trace-123"}
        )

        assert response.status_code == 404
        assert response.headers["X-Correlation-ID"] == "trace-123"
        assert response.json()["error"]["correlation_id"] == "trace-123"

    def test_unknown_route_has_error_shape(self, test_client):
        response = test_client.get("/no/such/route")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "HTTP_404"

    def test_cors_preflight(self, test_client):
        response = test_client.options(
            "/auth/login",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
        assert response.headers["access-control-allow-credentials"] == "true"
