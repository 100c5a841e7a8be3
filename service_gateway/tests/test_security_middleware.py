"""
Tests for SecurityMiddleware mounted on a minimal application.
"""

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from service_gateway.app.domain import SecurityMiddleware, security_headers
from service_gateway.app.security import AbuseTracker, TokenBucketRateLimiter
from shared.test_helpers import FakeClock

ATTACKER = {"X-Forwarded-For": "203.0.113.5"}


class TestSecurityMiddleware:
    """Test cases for SecurityMiddleware."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def tracker(self, clock):
        return AbuseTracker(threshold=2, window_ms=60_000, block_seconds=600, clock=clock)

    @pytest.fixture
    def metrics(self):
        return MagicMock()

    @pytest.fixture
    def client(self, tracker, metrics):
        app = FastAPI()
        middleware = SecurityMiddleware(tracker, csp_directives="default-src 'none'", metrics=metrics)
        app.middleware("http")(middleware.dispatch)

        @app.get("/echo")
        async def echo(request: Request):
            return {"client_ip": request.state.client_ip}

        @app.post("/echo")
        async def echo_post(request: Request):
            return {"body": (await request.body()).decode()}

        return TestClient(app)

    def test_clean_request_gets_security_headers(self, client):
        response = client.get("/echo", headers=ATTACKER)

        assert response.status_code == 200
        assert response.json() == {"client_ip": "203.0.113.5"}
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Content-Security-Policy"] == "default-src 'none'"

    def test_body_still_reaches_handler(self, client):
        response = client.post(
            "/echo",
            content='{"message": "hello"}',
            headers={**ATTACKER, "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"body": '{"message": "hello"}'}

    def test_scanner_agent_refused(self, client, tracker):
        response = client.get("/echo", headers={**ATTACKER, "User-Agent": "sqlmap/1.7"})

        assert response.status_code == 403
        assert response.json()["code"] == "ACCESS_DENIED"
        assert response.json()["details"] == {"trigger": "suspicious_agent"}
        assert response.headers["X-Frame-Options"] == "DENY"
        assert tracker.attempt_count("203.0.113.5") == 1

    def test_attack_pattern_refused(self, client):
        response = client.get("/echo", params={"q": "1 UNION SELECT password"}, headers=ATTACKER)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert response.json()["details"] == {"trigger": "attack_pattern"}

    def test_form_encoded_attack_is_decoded(self, client):
        response = client.post(
            "/echo",
            content="name=%3Cscript%3Ealert(1)%3C%2Fscript%3E",
            headers={**ATTACKER, "Content-Type": "application/x-www-form-urlencoded"},
        )

        assert response.status_code == 400
        assert response.json()["details"] == {"trigger": "attack_pattern"}

    def test_unsupported_content_type_refused(self, client):
        response = client.post(
            "/echo", content="hello", headers={**ATTACKER, "Content-Type": "text/plain"}
        )

        assert response.status_code == 400
        assert response.json()["details"] == {"trigger": "invalid_content_type"}

    def test_repeat_offender_is_blocked(self, client, tracker, metrics):
        for _ in range(3):
            client.get("/echo", headers={**ATTACKER, "User-Agent": "nikto"})

        response = client.get("/echo", headers=ATTACKER)

        assert tracker.is_blocked("203.0.113.5") is True
        assert response.status_code == 403
        assert response.json()["code"] == "ACCESS_DENIED"
        metrics.increment_counter.assert_any_call("blocked_requests_total")

    def test_block_is_per_address(self, client):
        for _ in range(3):
            client.get("/echo", headers={**ATTACKER, "User-Agent": "nikto"})

        response = client.get("/echo", headers={"X-Forwarded-For": "198.51.100.7"})

        assert response.status_code == 200

    def test_block_lapses(self, client, clock):
        for _ in range(3):
            client.get("/echo", headers={**ATTACKER, "User-Agent": "nikto"})
        clock.advance(600)

        assert client.get("/echo", headers=ATTACKER).status_code == 200


def test_security_headers_carry_csp():
    headers = security_headers("default-src 'self'")

    assert headers["Content-Security-Policy"] == "default-src 'self'"
    assert "max-age=31536000" in headers["Strict-Transport-Security"]


class TestSecurityMiddlewareLimits:
    """Body size and rate limits enforced by SecurityMiddleware."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def tracker(self, clock):
        return AbuseTracker(threshold=5, window_ms=60_000, block_seconds=600, clock=clock)

    @pytest.fixture
    def metrics(self):
        return MagicMock()

    @pytest.fixture
    def client(self, tracker, clock, metrics):
        app = FastAPI()
        rate_limiter = TokenBucketRateLimiter({"api": (2, 60.0)}, clock=clock)
        middleware = SecurityMiddleware(tracker, rate_limiter=rate_limiter, max_body_bytes=64, metrics=metrics)
        app.middleware("http")(middleware.dispatch)

        @app.get("/echo")
        async def echo(request: Request):
            return {"client_ip": request.state.client_ip}

        @app.post("/echo")
        async def echo_post(request: Request):
            return {"size": len(await request.body())}

        @app.get("/health")
        async def health():
            return {"status": "ok"}

        return TestClient(app)

    def test_body_within_limit_is_accepted(self, client):
        response = client.post(
            "/echo", content='{"a": "' + "x" * 40 + '"}', headers={**ATTACKER, "Content-Type": "application/json"}
        )

        assert response.status_code == 200

    def test_declared_length_over_limit_refused(self, client, tracker):
        response = client.post(
            "/echo", content='{"a": "' + "x" * 100 + '"}', headers={**ATTACKER, "Content-Type": "application/json"}
        )

        assert response.status_code == 413
        assert response.json()["code"] == "PAYLOAD_TOO_LARGE"
        assert response.json()["details"] == {"max_body_bytes": 64}
        assert response.headers["X-Frame-Options"] == "DENY"
        assert tracker.attempt_count("203.0.113.5") == 1

    def test_streamed_body_over_limit_refused(self, client, tracker):
        def chunks():
            for _ in range(4):
                yield b'{"a": "' + b"x" * 20 + b'"}'

        response = client.post(
            "/echo", content=chunks(), headers={**ATTACKER, "Content-Type": "application/json"}
        )

        assert response.status_code == 413
        assert tracker.attempt_count("203.0.113.5") == 1

    def test_rate_limit_exceeded(self, client, tracker, metrics):
        assert client.get("/echo", headers=ATTACKER).status_code == 200
        assert client.get("/echo", headers=ATTACKER).status_code == 200

        response = client.get("/echo", headers=ATTACKER)

        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMIT_ERROR"
        assert response.json()["details"] == {"limit": 2, "retry_after": 30}
        assert response.headers["Retry-After"] == "30"
        assert tracker.attempt_count("203.0.113.5") == 1
        metrics.increment_counter.assert_any_call("rate_limited_requests_total", limit_type="api")

    def test_rate_limit_is_per_address(self, client):
        for _ in range(3):
            client.get("/echo", headers=ATTACKER)

        assert client.get("/echo", headers={"X-Forwarded-For": "198.51.100.7"}).status_code == 200

    def test_rate_limit_recovers(self, client, clock):
        for _ in range(3):
            client.get("/echo", headers=ATTACKER)
        clock.advance(30)

        assert client.get("/echo", headers=ATTACKER).status_code == 200

    def test_health_is_not_rate_limited(self, client, tracker):
        for _ in range(5):
            assert client.get("/health", headers=ATTACKER).status_code == 200

        assert tracker.attempt_count("203.0.113.5") == 0

    def test_rejected_screening_does_not_spend_tokens(self, client):
        for _ in range(3):
            client.get("/echo", headers={**ATTACKER, "User-Agent": "sqlmap/1.7"})

        assert client.get("/echo", headers=ATTACKER).status_code == 200
