from datetime import datetime, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo

from backend.core import config


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock time in the provider's zone, returned naive."""

    def __init__(self, tz_name: str = config.PROVIDER_TIMEZONE) -> None:
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None)


class FixedClock:
    def __init__(self, current: datetime) -> None:
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta) -> None:
        self.current += timedelta(**delta)


_system_clock = SystemClock()


def get_clock() -> Clock:
    return _system_clock


def to_provider_local(value: datetime, tz_name: str | None = None) -> datetime:
    """Naive provider-local form of ``value``; naive inputs are taken as already local."""
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(tz_name or config.PROVIDER_TIMEZONE)).replace(tzinfo=None)
