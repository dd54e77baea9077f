# src/linkgate/main.py
"""Main entry point for the LinkGate application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from linkgate.api.middleware import BotShieldMiddleware
from linkgate.api.v1 import api_v1
from linkgate.core.errors import install_exception_handlers
from linkgate.core.settings import settings
from linkgate.db.session import SessionLocal
from linkgate.services.maintenance import MaintenanceWorker

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="LinkGate API",
    description="Verification gate for monetized short links",
    version=settings.app_version,
)

install_exception_handlers(app)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Reject automation clients and add security headers
app.add_middleware(BotShieldMiddleware)

app.include_router(api_v1, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if not settings.challenge_secret:
        logger.error("CHALLENGE_SECRET is not configured; challenge issuance will fail closed")
    if settings.maintenance_enabled:
        worker = MaintenanceWorker(SessionLocal)
        await worker.start()
        app.state.maintenance_worker = worker
    else:
        app.state.maintenance_worker = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: MaintenanceWorker | None = getattr(app.state, "maintenance_worker", None)
    if worker:
        await worker.stop()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("linkgate.main:app", host="0.0.0.0", port=8000)
