"""API endpoint modules for version 1."""

from .challenge import router as challenge_router
from .links import router as links_router
from .owners import router as owners_router
from .redirect import router as redirect_router
from .session import router as session_router
from .system import router as system_router
from .trap import router as trap_router

__all__ = [
    "challenge_router",
    "links_router",
    "owners_router",
    "redirect_router",
    "session_router",
    "system_router",
    "trap_router",
]
