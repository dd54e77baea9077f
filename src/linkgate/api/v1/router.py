"""Versioned API router wiring for v1.

Composes the version 1 API surface from the endpoint modules. Contains no
endpoint definitions of its own.
"""
from __future__ import annotations

from typing import Final

from fastapi import APIRouter

from .endpoints import (
    challenge_router,
    links_router,
    owners_router,
    redirect_router,
    session_router,
    system_router,
    trap_router,
)

api_v1: Final[APIRouter] = APIRouter()
api_v1.include_router(challenge_router)
api_v1.include_router(redirect_router)
api_v1.include_router(trap_router)
api_v1.include_router(session_router)
api_v1.include_router(links_router)
api_v1.include_router(owners_router)
api_v1.include_router(system_router)

__all__ = ["api_v1"]
