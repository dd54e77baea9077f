"""Link owners and their upstream provider credentials."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from linkgate.db.session import Base

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class Owner(Base):
    """Account that creates protected links.

    Identity is established by an external authentication provider; this
    table only keeps what the gate needs: role, subscription expiry and the
    API keys used to shorten callback URLs with each provider.
    """

    __tablename__ = "owners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_USER)
    valid_until: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    provider_keys: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    links_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    links = relationship("ProtectedLink", back_populates="owner")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def configured_providers(self) -> set[str]:
        """Return provider names for which a non-empty key is stored."""
        return {name for name, key in (self.provider_keys or {}).items() if key}

    def subscription_active(self, now_ms: int) -> bool:
        if self.is_admin:
            return True
        return self.valid_until is not None and self.valid_until > now_ms
