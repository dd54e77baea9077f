"""Short-term IP reputation built from abuse signals."""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from linkgate.core.clock import MILLISECONDS_PER_SECOND, Clock
from linkgate.core.settings import Settings, settings
from linkgate.models import SuspiciousIP

logger = logging.getLogger(__name__)

# Abuse signal reasons
REASON_TRAP = "resource_trap"
REASON_HONEYPOT = "honeypot"
REASON_TAMPERED = "tampered_request"
REASON_TOKEN_REPLAY = "token_replay"
REASON_DUPLICATE_REQUEST = "duplicate_request"
REASON_CAPTCHA = "captcha_failed"
REASON_TOO_FAST = "too_fast_round_trip"


class ReputationService:
    """Append abuse signals and decide whether an IP is temporarily blocked."""

    def __init__(self, db: Session, clock: Clock, config: Settings = settings) -> None:
        self.db = db
        self.clock = clock
        self.threshold = config.suspicious_ip_threshold
        self.window_ms = config.suspicious_ip_window_seconds * MILLISECONDS_PER_SECOND
        self.retention_ms = config.suspicious_ip_retention_seconds * MILLISECONDS_PER_SECOND

    def record(self, ip: str, reason: str) -> None:
        logger.warning("Suspicious activity from %s: %s", ip, reason)
        self.db.add(SuspiciousIP(ip_address=ip, reason=reason, created_at=self.clock.now_ms()))
        self.db.commit()

    def recent_count(self, ip: str) -> int:
        since = self.clock.now_ms() - self.window_ms
        count = self.db.scalar(
            select(func.count())
            .select_from(SuspiciousIP)
            .where(SuspiciousIP.ip_address == ip, SuspiciousIP.created_at >= since)
        )
        return int(count or 0)

    def is_blocked(self, ip: str) -> bool:
        return self.recent_count(ip) >= self.threshold

    def purge_expired(self) -> int:
        """Delete entries older than the retention period."""
        cutoff = self.clock.now_ms() - self.retention_ms
        result = self.db.execute(delete(SuspiciousIP).where(SuspiciousIP.created_at < cutoff))
        self.db.commit()
        return int(result.rowcount or 0)
