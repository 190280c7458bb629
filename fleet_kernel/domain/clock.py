"""
Clock -- injectable time source.

Services never call ``datetime.now()`` directly; they receive a Clock.  The
period of an automatically allocated control number and every workflow stamp
come from it, so tests can pin the month or year a number falls into.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# 12:00 in Manila on a mid-January weekday.
DEFAULT_TEST_TIME = datetime(2025, 1, 15, 4, 0, 0, tzinfo=timezone.utc)


def _require_aware(moment: datetime) -> datetime:
    if moment.tzinfo is None or moment.utcoffset() is None:
        raise ValueError(f"clock times must be timezone-aware, got {moment!r}")
    return moment


class Clock(ABC):
    """``now()`` is always timezone-aware."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock.  Time stands still until ``advance()``, ``tick()`` or
    ``set_time()`` moves it.
    """

    def __init__(self, start: datetime | None = None):
        self._now = _require_aware(start or DEFAULT_TEST_TIME)

    def now(self) -> datetime:
        return self._now

    def set_time(self, moment: datetime) -> None:
        self._now = _require_aware(moment)

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        self._now += step
        return self._now

    def tick(self) -> datetime:
        return self.advance(1)
