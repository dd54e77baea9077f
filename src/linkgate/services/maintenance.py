"""Periodic cleanup of expired verification state.

The worker runs on the event loop but performs its database work in a
thread so that sweeping never adds latency to request handling.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from linkgate.core.clock import Clock, get_clock
from linkgate.core.settings import Settings, settings
from linkgate.services.challenge import ChallengeService
from linkgate.services.redirect_session import RedirectSessionManager
from linkgate.services.reputation import ReputationService
from linkgate.services.shortener import get_shortener
from linkgate.services.store import EphemeralStore, get_store

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceReport:
    """Number of records removed by one sweep."""

    challenges: int = 0
    sessions: int = 0
    suspicious_ips: int = 0
    ephemeral_keys: int = 0

    @property
    def total(self) -> int:
        return self.challenges + self.sessions + self.suspicious_ips + self.ephemeral_keys


class MaintenanceWorker:
    """Reap expired challenges, sessions, reputation entries and store keys."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        store: EphemeralStore | None = None,
        clock: Clock | None = None,
        config: Settings = settings,
    ) -> None:
        self.session_factory = session_factory
        self.store = store or get_store()
        self.clock = clock or get_clock()
        self.config = config
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        interval = max(1.0, float(self.config.maintenance_interval_seconds))
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except SQLAlchemyError as exc:
                logger.warning("Maintenance sweep failed: %s", exc)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                continue

    async def run_once(self) -> MaintenanceReport:
        """Perform one sweep and return what was removed."""
        report = await asyncio.to_thread(self._sweep)
        if report.total:
            logger.info(
                "Maintenance removed %d challenges, %d sessions, %d suspicious IPs, %d keys",
                report.challenges,
                report.sessions,
                report.suspicious_ips,
                report.ephemeral_keys,
            )
        return report

    def _sweep(self) -> MaintenanceReport:
        db = self.session_factory()
        try:
            report = MaintenanceReport(
                challenges=ChallengeService(db, self.store, self.clock, self.config).purge_expired(),
                sessions=RedirectSessionManager(
                    db, get_shortener(), self.clock, config=self.config
                ).purge_expired(),
                suspicious_ips=ReputationService(db, self.clock, self.config).purge_expired(),
            )
        finally:
            db.close()
        report.ephemeral_keys = self.store.purge_expired(self.clock.now_ms())
        return report
