"""Unit tests for health, readiness and metrics endpoints."""

import pytest


@pytest.mark.asyncio
async def test_health_endpoint(test_client):
    response = await test_client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"
    assert "checks" not in data


@pytest.mark.asyncio
async def test_health_ping(test_client):
    response = await test_client.post("/v1/health/ping")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_ready_checks_database(test_client):
    response = await test_client.get("/ready")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"] == {"database": "ok"}


@pytest.mark.asyncio
async def test_metrics_endpoint(test_client, sample_enroll_data):
    from conftest import auth_headers

    await test_client.post("/v1/waitlist/enroll", json=sample_enroll_data, headers=auth_headers("client-a"))

    response = await test_client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "waitlist_entries_enrolled_total" in response.text
    assert "http_requests_total" in response.text
