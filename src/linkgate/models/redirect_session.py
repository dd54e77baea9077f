"""Usage- and time-bounded redirect sessions."""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from linkgate.db.session import Base

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"


class RedirectSession(Base):
    """One visit through a protected link.

    ``pending`` sessions point the visitor at an intermediate short link;
    ``active`` sessions resolve to the target until ``usage_count`` reaches
    ``max_uses`` or the TTL elapses.
    """

    __tablename__ = "redirect_sessions"
    __table_args__ = (Index("ix_redirect_sessions_ip_link", "ip_address", "link_id", "status"),)

    token: Mapped[str] = mapped_column(String(48), primary_key=True)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    link_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("protected_links.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("owners.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING)
    short_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    max_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
