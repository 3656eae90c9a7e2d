"""
Injectable time source.

All date logic takes "today" from a Clock so it can be pinned in tests.
"""
from datetime import date, datetime, timezone
from typing import Optional


class Clock:
    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant; `set` moves it."""

    def __init__(self, at: datetime | date):
        self._at = _as_datetime(at)

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime | date) -> None:
        self._at = _as_datetime(at)


def _as_datetime(value: datetime | date) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


_default_clock: Optional[Clock] = None


def get_clock() -> Clock:
    """FastAPI dependency; overridden in tests."""
    global _default_clock
    if _default_clock is None:
        _default_clock = SystemClock()
    return _default_clock
