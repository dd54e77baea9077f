# mypy: ignore-errors
# tests/test_health.py
"""Tests for health, public config and the HTTP shield."""

from __future__ import annotations

from fastapi import status


def test_health_endpoint(client) -> None:
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok"}


def test_security_headers_are_set(client) -> None:
    response = client.get("/health")

    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "frame-ancestors 'none'" in response.headers["Content-Security-Policy"]
    assert "Strict-Transport-Security" not in response.headers


def test_public_config_hides_secrets(client) -> None:
    response = client.get("/api/v1/system/config")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["challenge"]["difficulty"] >= 1
    assert data["providers"] == ["linkshortify", "arolinks", "vplink", "inshorturl"]
    assert "test-challenge-secret" not in response.text
    assert "secret" not in response.text.lower()


def test_system_health_reports_components(client) -> None:
    response = client.get("/api/v1/system/health")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert data["components"]["database"] == "healthy"
    assert data["replay"] == {"tokens": 0, "requests": 0}


def test_automation_user_agent_is_blocked(client) -> None:
    response = client.get(
        "/api/v1/system/config", headers={"User-Agent": "python-requests/2.32.3"}
    )

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json() == {"error": "automated traffic detected", "code": "BOT_DETECTED"}
    assert response.headers["X-Frame-Options"] == "DENY"


def test_empty_user_agent_is_blocked_on_api(client) -> None:
    response = client.get("/api/v1/system/config", headers={"User-Agent": ""})
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_automation_user_agent_allowed_outside_api(client) -> None:
    response = client.get("/health", headers={"User-Agent": "curl/8.5.0"})
    assert response.status_code == status.HTTP_200_OK
