"""
Wall-clock sources for entitlement checks.

Every time-dependent computation takes a Clock instead of reading the system
time directly, so callers (and tests) control what "now" means.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    """Source of the current instant (timezone-aware, UTC)"""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Reads the host clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Clock frozen at a given instant.

    Usage:
        clock = FixedClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
        clock.advance(minutes=1)
    """

    def __init__(self, moment: Optional[datetime] = None):
        self._moment = _as_utc(moment or datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._moment

    def set(self, moment: datetime) -> None:
        self._moment = _as_utc(moment)

    def advance(self, **delta) -> datetime:
        """Move the clock forward by a timedelta expressed as keyword args"""
        self._moment = self._moment + timedelta(**delta)
        return self._moment


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


SYSTEM_CLOCK = SystemClock()


def resolve_clock(clock: Optional[Clock]) -> Clock:
    """Return the given clock, or the shared system clock"""
    return clock if clock is not None else SYSTEM_CLOCK
