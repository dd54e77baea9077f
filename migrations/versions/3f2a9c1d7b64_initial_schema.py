"""initial schema

Revision ID: 3f2a9c1d7b64
Revises:
Create Date: 2026-10-19 09:12:44.318207

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1d7b64"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create owners, links, sessions, challenges and reputation tables."""
    op.create_table(
        "owners",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("valid_until", sa.BigInteger(), nullable=True),
        sa.Column("provider_keys", sa.JSON(), nullable=False),
        sa.Column("links_created", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "protected_links",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("slug", sa.String(length=32), nullable=False),
        sa.Column("target_url", sa.Text(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("visit_count", sa.Integer(), nullable=False),
        sa.Column("last_visited_at", sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["owners.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_protected_links_slug", "protected_links", ["slug"], unique=True)
    op.create_table(
        "redirect_sessions",
        sa.Column("token", sa.String(length=48), nullable=False),
        sa.Column("target_url", sa.Text(), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=False),
        sa.Column("link_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("short_link", sa.Text(), nullable=True),
        sa.Column("provider", sa.String(length=32), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["link_id"], ["protected_links.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["owners.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("token"),
    )
    op.create_index("ix_redirect_sessions_created_at", "redirect_sessions", ["created_at"])
    op.create_index(
        "ix_redirect_sessions_ip_link", "redirect_sessions", ["ip_address", "link_id", "status"]
    )
    op.create_table(
        "challenges",
        sa.Column("challenge_id", sa.String(length=32), nullable=False),
        sa.Column("nonce", sa.String(length=32), nullable=False),
        sa.Column("difficulty", sa.Integer(), nullable=False),
        sa.Column("signature", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.BigInteger(), nullable=False),
        sa.Column("ip", sa.String(length=64), nullable=False),
        sa.Column("ua_hash", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("challenge_id"),
    )
    op.create_index("ix_challenges_expires_at", "challenges", ["expires_at"])
    op.create_index("ix_challenges_created_at", "challenges", ["created_at"])
    op.create_table(
        "suspicious_ips",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_suspicious_ips_ip_address", "suspicious_ips", ["ip_address"])
    op.create_index("ix_suspicious_ips_created_at", "suspicious_ips", ["created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index("ix_suspicious_ips_created_at", table_name="suspicious_ips")
    op.drop_index("ix_suspicious_ips_ip_address", table_name="suspicious_ips")
    op.drop_table("suspicious_ips")
    op.drop_index("ix_challenges_created_at", table_name="challenges")
    op.drop_index("ix_challenges_expires_at", table_name="challenges")
    op.drop_table("challenges")
    op.drop_index("ix_redirect_sessions_ip_link", table_name="redirect_sessions")
    op.drop_index("ix_redirect_sessions_created_at", table_name="redirect_sessions")
    op.drop_table("redirect_sessions")
    op.drop_index("ix_protected_links_slug", table_name="protected_links")
    op.drop_table("protected_links")
    op.drop_table("owners")
