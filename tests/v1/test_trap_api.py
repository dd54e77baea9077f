# mypy: ignore-errors
# tests/v1/test_trap_api.py
"""Tests for the trap pixel and honeypot endpoints."""

from __future__ import annotations

from fastapi import status
from sqlalchemy import select

from linkgate.core.settings import settings
from linkgate.models import SuspiciousIP
from linkgate.services.trap import TRAP_PIXEL, ResourceTrap


def test_trap_image_sets_signed_cookie(client, clock) -> None:
    response = client.get("/api/v1/trap/image")

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"] == "image/gif"
    assert response.content == TRAP_PIXEL
    assert "no-store" in response.headers["Cache-Control"]
    token = response.cookies.get(settings.trap_cookie_name)
    assert ResourceTrap(settings.effective_trap_secret).validate(token, clock.now_ms()).valid


def test_trap_image_without_secret_sets_no_cookie(client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "trap_secret", None)
    monkeypatch.setattr(settings, "challenge_secret", None)

    response = client.get("/api/v1/trap/image")

    assert response.status_code == status.HTTP_200_OK
    assert settings.trap_cookie_name not in response.cookies


def test_honeypot_flags_client(client, db_session) -> None:
    response = client.get("/api/v1/trap/bot")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok"}
    assert response.cookies.get(settings.bot_flag_cookie_name) == "1"
    assert "max-age=31536000" in response.headers["set-cookie"].lower()
    assert list(db_session.scalars(select(SuspiciousIP.ip_address))) == ["testclient"]
