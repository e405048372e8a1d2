"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from groupify.main import app
from groupify.core.errors import AppError, UpstreamFetchError, app_error_handler
from groupify.core.middleware.request_id import RequestIdMiddleware


def test_validation_error_has_standard_shape():
    client = TestClient(app)
    resp = client.get("/api/v1/analytics/g1/activity", params={"mode": "invalid"})
    assert resp.status_code == 400
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]
    assert "shares, engagement" in body["detail"]


def test_not_found_normalized():
    client = TestClient(app)
    resp = client.get("/api/v1/analytics/missing/vibes")
    assert resp.status_code == 404
    body = resp.json()
    assert body["error"]["code"] == "not_found"
    assert body["error"]["request_id"] == resp.headers.get("x-request-id")


def test_unknown_route_normalized():
    client = TestClient(app)
    resp = client.get("/api/v1/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_upstream_error_code():
    test_app = FastAPI()
    test_app.add_middleware(RequestIdMiddleware)
    test_app.add_exception_handler(AppError, app_error_handler)

    @test_app.get("/boom")
    async def boom():
        raise UpstreamFetchError("Failed to fetch shares for group g1")

    client = TestClient(test_app)
    resp = client.get("/boom", headers={"x-request-id": "rid-123"})
    assert resp.status_code == 502
    body = resp.json()
    assert body["error"]["code"] == "upstream_fetch_failed"
    assert body["error"]["request_id"] == "rid-123"
    assert resp.headers["x-request-id"] == "rid-123"
