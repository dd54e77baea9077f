"""SQLAlchemy models for the LinkGate service."""

from .challenge import Challenge
from .link import ProtectedLink
from .owner import Owner
from .redirect_session import RedirectSession
from .suspicious_ip import SuspiciousIP

__all__ = [
    "Challenge",
    "Owner",
    "ProtectedLink",
    "RedirectSession",
    "SuspiciousIP",
]
