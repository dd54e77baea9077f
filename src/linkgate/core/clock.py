"""Injectable wall clock.

Every policy decision (expiry, minimum solve time, session TTL, reaping)
reads time through a ``Clock`` so tests can move time deterministically.
"""

from __future__ import annotations

import time
from typing import Protocol

MILLISECONDS_PER_SECOND = 1000


class Clock(Protocol):
    """Anything that can report the current time in epoch milliseconds."""

    def now_ms(self) -> int: ...


class SystemClock:
    """Clock backed by ``time.time``."""

    def now_ms(self) -> int:
        return int(time.time() * MILLISECONDS_PER_SECOND)


_SYSTEM_CLOCK = SystemClock()


def get_clock() -> Clock:
    """Return the process-wide clock."""
    return _SYSTEM_CLOCK
