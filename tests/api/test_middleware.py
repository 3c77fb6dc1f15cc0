"""Tests for RequestIDMiddleware and UserContextMiddleware."""

import pytest
from uuid import UUID
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.testclient import TestClient

from api.middleware import RequestIDMiddleware, UserContextMiddleware
from utils.user_context import get_current_user_id, peek_current_user_id


@pytest.fixture
def app():
    """Minimal FastAPI app with both middlewares."""
    app = FastAPI()
    app.add_middleware(UserContextMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/test")
    async def test_endpoint(request: Request):
        return JSONResponse({
            "request_id": request.state.request_id,
            "user_id": str(get_current_user_id()),
            "state_user_id": str(request.state.user_id),
        })

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


@pytest.fixture
def client(app, test_user_id):
    return TestClient(app, headers={"X-User-ID": str(test_user_id)})


class TestRequestIDMiddleware:

    def test_mints_uuid_and_exposes_it_on_state(self, client):
        response = client.get("/test")

        UUID(response.headers["X-Request-ID"])
        assert response.json()["request_id"] == response.headers["X-Request-ID"]

    def test_ids_differ_between_requests(self, client):
        assert client.get("/test").headers["X-Request-ID"] != client.get("/test").headers["X-Request-ID"]

    def test_keeps_gateway_request_id(self, client):
        response = client.get("/test", headers={"X-Request-ID": "gw-checkout-42"})

        assert response.headers["X-Request-ID"] == "gw-checkout-42"
        assert response.json()["request_id"] == "gw-checkout-42"

    def test_replaces_oversized_gateway_request_id(self, client):
        response = client.get("/test", headers={"X-Request-ID": "x" * 129})

        UUID(response.headers["X-Request-ID"])


class TestUserContextMiddleware:
    """Tests for UserContextMiddleware."""

    def test_sets_user_from_header(self, client, test_user_id):
        response = client.get("/test")

        assert response.status_code == 200
        assert response.json()["user_id"] == str(test_user_id)
        assert response.json()["state_user_id"] == str(test_user_id)

    def test_missing_header_returns_401(self, app):
        response = TestClient(app).get("/test")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_AUTHENTICATED"

    def test_malformed_header_returns_401(self, app):
        response = TestClient(app, headers={"X-User-ID": "not-a-uuid"}).get("/test")

        assert response.status_code == 401

    def test_public_path_needs_no_user(self, app):
        response = TestClient(app).get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_context_cleared_after_request(self, client):
        """Nothing leaks into the test thread once the request completes."""
        client.get("/test")

        assert peek_current_user_id() is None


class TestEnvelopeRequestID:

    def test_envelope_echoes_header_request_id(self, app):
        """A 401 envelope built downstream carries the same id as the header."""
        response = TestClient(app).get("/test")

        assert response.json()["meta"]["request_id"] == response.headers["X-Request-ID"]
