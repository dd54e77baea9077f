"""System and transparency endpoints for the LinkGate API."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from linkgate.api.v1.dependencies import ClockDep, SessionDep, StoreDep
from linkgate.core.settings import settings
from linkgate.services.replay import ReplayGuard
from linkgate.services.rotation import PROVIDER_ORDER

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes secrets, connection strings and the thresholds an automated
    client could calibrate against.
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.app_env,
        },
        "challenge": {
            "difficulty": settings.challenge_difficulty,
            "ttl_seconds": settings.challenge_ttl_seconds,
        },
        "captcha": {"mode": settings.captcha_mode},
        "security_profile": settings.security_profile,
        "providers": list(PROVIDER_ORDER),
    }


@router.get("/health")
async def get_system_health(db: SessionDep, store: StoreDep, clock: ClockDep) -> dict[str, object]:
    """Report database reachability and replay-guard occupancy."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError as exc:
        logger.error("Database health check failed: %s", exc)
        db_status = "unhealthy"

    return {
        "status": "healthy" if db_status == "healthy" else "unhealthy",
        "timestamp": clock.now_ms(),
        "components": {
            "database": db_status,
            "store": settings.store_backend,
        },
        "replay": ReplayGuard(store, clock).stats(),
        "version": settings.app_version,
    }
