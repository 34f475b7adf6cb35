"""
Time sources for booking and notification scheduling.
All timestamps in the core are naive UTC.
"""

from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in naive UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock:
    """Manually advanced clock for tests and replays"""

    def __init__(self, start: datetime):
        self._now = start
        self._lock = Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **kwargs) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(**kwargs)
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value


def to_epoch_millis(value: datetime) -> int:
    """Naive UTC datetime -> epoch milliseconds"""
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)


def from_epoch_millis(value: int) -> datetime:
    """Epoch milliseconds -> naive UTC datetime"""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
