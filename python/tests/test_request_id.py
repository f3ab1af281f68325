"""Tests for X-Request-ID middleware.

Tests cover:
- Request ID generation when missing
- Request ID preservation when valid
- Request ID normalization (UUID lowercase)
- Request ID replacement when invalid
- Request ID presence on auth failures and in error bodies
"""

from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from onechat.app import add_request_id_middleware
from onechat.middleware.request_id import resolve_request_id


@pytest.fixture
def rid_client(app) -> TestClient:
    # Added last so it runs first, outside auth
    add_request_id_middleware(app, log_requests=False)
    return TestClient(app)


class TestResolveRequestId:
    def test_missing_id_is_minted(self):
        UUID(resolve_request_id(None))

    def test_token_kept(self):
        assert resolve_request_id("abc_def-1.2") == "abc_def-1.2"

    def test_uuid_lowercased(self):
        assert (
            resolve_request_id("550E8400-E29B-41D4-A716-446655440000")
            == "550e8400-e29b-41d4-a716-446655440000"
        )

    @pytest.mark.parametrize("bad", ["bad id", "a" * 200, "semi;colon", "x" * 36])
    def test_invalid_replaced(self, bad):
        new_id = resolve_request_id(bad)
        assert new_id != bad
        UUID(new_id)


class TestRequestIdMiddleware:
    def test_request_id_generated_when_missing(self, rid_client):
        response = rid_client.get("/health")

        assert response.status_code == 200
        UUID(response.headers["X-Request-ID"])

    def test_request_id_preserved_when_valid(self, rid_client):
        response = rid_client.get("/health", headers={"X-Request-ID": "abc_def-123"})
        assert response.headers["X-Request-ID"] == "abc_def-123"

    def test_request_id_on_auth_failure(self, rid_client):
        response = rid_client.get("/threads", headers={"X-Request-ID": "req-auth-1"})

        assert response.status_code == 401
        assert response.headers["X-Request-ID"] == "req-auth-1"
        assert response.json()["error"]["request_id"] == "req-auth-1"
