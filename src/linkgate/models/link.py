"""Protected links created by owners."""

from __future__ import annotations

from sqlalchemy import BigInteger, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from linkgate.db.session import Base


class ProtectedLink(Base):
    """Public slug mapped to the destination a visitor ultimately wants."""

    __tablename__ = "protected_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    visit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_visited_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    owner = relationship("Owner", back_populates="links")
