"""Tests for the per-caller admission middleware."""

import hashlib
from datetime import datetime, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from armory.app.middleware.rate_limit import RateLimitMiddleware
from armory.app.services.quota import QuotaCoordinator, QuotaLimits

NOW = datetime(2024, 3, 15, 12, 0, 30, tzinfo=timezone.utc)


@pytest.fixture
def coordinator(mock_redis):
    mock_redis.clock = NOW.timestamp
    return QuotaCoordinator(
        redis_client=mock_redis,
        limits=QuotaLimits(caller_per_minute=2, caller_per_hour=100),
        clock=lambda: NOW,
    )


@pytest.fixture
def client(coordinator):
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, quota=coordinator)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/items/{item_id}")
    async def item(item_id: int):
        return {"id": item_id}

    return TestClient(app)


def make_request(headers=None, client=("10.0.0.1", 1234)) -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "headers": raw_headers, "client": client, "path": "/"})


class TestCallerIdentity:

    def test_bearer_token_is_hashed(self):
        caller = RateLimitMiddleware.get_caller_id(
            make_request({"Authorization": "Bearer secret-token"})
        )
        expected = hashlib.sha256(b"secret-token").hexdigest()[:32]
        assert caller == f"token:{expected}"
        assert "secret-token" not in caller

    def test_forwarded_for_first_address(self):
        caller = RateLimitMiddleware.get_caller_id(
            make_request({"X-Forwarded-For": "203.0.113.5, 10.0.0.2"})
        )
        assert caller == "ip:203.0.113.5"

    def test_client_host_fallback(self):
        assert RateLimitMiddleware.get_caller_id(make_request()) == "ip:10.0.0.1"

    def test_unknown_client(self):
        assert RateLimitMiddleware.get_caller_id(make_request(client=None)) == "ip:unknown"


class TestRateLimitMiddleware:

    def test_admitted_request_has_headers(self, client):
        response = client.get("/items/1", headers={"Authorization": "Bearer abc"})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit-Minute"] == "2"
        assert response.headers["X-RateLimit-Limit-Hour"] == "100"
        assert response.headers["X-RateLimit-Used-Minute"] == "1"
        assert response.headers["X-RateLimit-Used-Hour"] == "1"

    def test_over_budget_returns_problem_json(self, client):
        headers = {"Authorization": "Bearer abc"}
        assert client.get("/items/1", headers=headers).status_code == 200
        assert client.get("/items/1", headers=headers).status_code == 200

        response = client.get("/items/1", headers=headers)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.headers["content-type"].startswith("application/problem+json")
        body = response.json()
        assert body["status"] == 429
        assert body["title"] == "Too Many Requests"

    def test_callers_have_separate_budgets(self, client):
        for _ in range(2):
            client.get("/items/1", headers={"Authorization": "Bearer abc"})

        response = client.get("/items/1", headers={"Authorization": "Bearer other"})

        assert response.status_code == 200

    def test_health_is_exempt(self, client, mock_redis):
        for _ in range(5):
            assert client.get("/health").status_code == 200
        assert mock_redis.data == {}

    def test_lookalike_paths_are_not_exempt(self, client):
        headers = {"Authorization": "Bearer abc"}
        for _ in range(2):
            client.get("/healthz-admin", headers=headers)

        response = client.get("/health-anything", headers=headers)

        assert response.status_code == 429

    def test_store_outage_lets_requests_through(self, client, mock_redis):
        mock_redis.fail = True

        for _ in range(5):
            response = client.get("/items/1")
            assert response.status_code == 200
        assert response.headers["X-RateLimit-Used-Minute"] == "0"
