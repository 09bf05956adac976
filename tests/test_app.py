"""Tests for app wiring: health, readiness, metrics, and the OAuth callback."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.sfmirror.api.v1 import oauth
from src.sfmirror.config import Settings
from src.sfmirror.salesforce.auth import CredentialProvider
from tests.conftest import InMemoryTokenStore


@pytest.fixture
def full_app() -> FastAPI:
    from src.sfmirror.main import create_app

    return create_app()


async def _get(app: FastAPI, path: str, **params):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.get(path, params=params or None)


class TestHealth:
    """Liveness and readiness."""

    @pytest.mark.asyncio
    async def test_liveness(self, full_app):
        response = await _get(full_app, "/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "salesforce-mirror-connector"
        assert "timestamp" in data
        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_caller_request_id_is_echoed(self, full_app):
        async with AsyncClient(transport=ASGITransport(app=full_app), base_url="http://test") as client:
            response = await client.get("/health", headers={"X-Request-ID": "trace-123"})

        assert response.headers["X-Request-ID"] == "trace-123"

    @pytest.mark.asyncio
    async def test_ready_when_dependencies_respond(self, full_app, sqlite_engine):
        redis = AsyncMock()
        redis.ping = AsyncMock(return_value=True)

        with patch("src.sfmirror.api.v1.health.get_engine", return_value=sqlite_engine), \
                patch("src.sfmirror.api.v1.health.get_redis_pool", return_value=redis):
            response = await _get(full_app, "/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready", "checks": {"database": "ok", "redis": "ok"}}

    @pytest.mark.asyncio
    async def test_degraded_when_redis_down(self, full_app, sqlite_engine):
        redis = AsyncMock()
        redis.ping = AsyncMock(side_effect=ConnectionError("connection refused"))

        with patch("src.sfmirror.api.v1.health.get_engine", return_value=sqlite_engine), \
                patch("src.sfmirror.api.v1.health.get_redis_pool", return_value=redis):
            response = await _get(full_app, "/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["checks"]["database"] == "ok"
        assert data["checks"]["redis"] == "error"
        assert data["checks"]["redis_error"] == "connection refused"


class TestMetrics:
    """Prometheus exposition."""

    @pytest.mark.asyncio
    async def test_metrics_exposes_connector_counters(self, full_app):
        await _get(full_app, "/health")
        response = await _get(full_app, "/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "http_requests_total" in response.text
        assert "cdc_events_processed_total" in response.text


# ── OAuth Callback ────────────────────────────────────────────────────────


def _oauth_app(handler, **settings_overrides) -> tuple[FastAPI, InMemoryTokenStore]:
    values = {
        "SALESFORCE_CLIENT_ID": "client-id",
        "SALESFORCE_CLIENT_SECRET": "client-secret",
    }
    values.update(settings_overrides)
    store = InMemoryTokenStore()
    app = FastAPI()
    app.include_router(oauth.router)
    app.state.credential_provider = CredentialProvider(
        store, Settings(**values), transport=httpx.MockTransport(handler),
    )
    return app, store


def _token_endpoint(seen: list[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "instance_url": "https://acme.my.salesforce.com",
        })

    return handler


class TestOAuthCallback:
    """GET /oauth/salesforce/callback."""

    @pytest.mark.asyncio
    async def test_code_is_exchanged_and_stored(self):
        seen: list[httpx.Request] = []
        app, store = _oauth_app(_token_endpoint(seen))

        response = await _get(app, "/oauth/salesforce/callback", code="auth-code")

        assert response.status_code == 200
        assert "Connected to https://acme.my.salesforce.com" in response.text
        assert store.token.refresh_token == "refresh-1"
        form = parse_qs(seen[0].content.decode())
        assert form["code"] == ["auth-code"]
        assert form["redirect_uri"] == ["http://test/oauth/salesforce/callback"]

    @pytest.mark.asyncio
    async def test_authorization_denied(self):
        seen: list[httpx.Request] = []
        app, store = _oauth_app(_token_endpoint(seen))

        response = await _get(
            app,
            "/oauth/salesforce/callback",
            error="access_denied",
            error_description="end-user denied <authorization>",
        )

        assert response.status_code == 400
        assert "end-user denied &lt;authorization&gt;" in response.text
        assert seen == []
        assert store.token is None

    @pytest.mark.asyncio
    async def test_missing_code(self):
        app, _store = _oauth_app(_token_endpoint([]))

        response = await _get(app, "/oauth/salesforce/callback")

        assert response.status_code == 400
        assert "Missing authorization code" in response.text

    @pytest.mark.asyncio
    async def test_rejected_exchange_returns_502(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, text="invalid_grant")

        app, store = _oauth_app(handler)

        response = await _get(app, "/oauth/salesforce/callback", code="stale")

        assert response.status_code == 502
        assert "OAuth failed" in response.text
        assert store.token is None

    @pytest.mark.asyncio
    async def test_non_json_exchange_returns_502(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        app, store = _oauth_app(handler)

        response = await _get(app, "/oauth/salesforce/callback", code="auth-code")

        assert response.status_code == 502
        assert "not a JSON object" in response.text
        assert store.token is None
