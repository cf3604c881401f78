"""
Time Utilities
Clocks, ISO-8601 conversion and duration formatting shared by all services
"""
import math
import time
from datetime import datetime, timezone
from typing import Optional

HOUR_SECONDS = 3600


class SystemClock:
    """Wall clock returning epoch seconds"""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """
    Virtual clock for tests and replays.

    Time only moves when advance() or set() is called, so scheduled tasks and
    liveness thresholds can be exercised without sleeping.
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        self._now += seconds
        return self._now

    def set(self, timestamp: float) -> None:
        self._now = float(timestamp)


def to_iso(timestamp: Optional[float]) -> Optional[str]:
    """Epoch seconds -> '2025-01-01T10:00:00.000Z' (millisecond precision, UTC)"""
    if timestamp is None:
        return None
    dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_iso(value: Optional[str]) -> Optional[float]:
    """ISO-8601 string -> epoch seconds; naive strings are treated as UTC"""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def hour_floor(timestamp: float) -> float:
    """Start of the absolute UTC hour containing timestamp"""
    return math.floor(timestamp / HOUR_SECONDS) * HOUR_SECONDS


def format_duration(ms: float) -> str:
    """
    Human readable duration.

    Examples:
        >>> format_duration(90_061_000)
        '1d 1h 1m'
        >>> format_duration(45_000)
        '45s'
    """
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h {minutes % 60}m"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m"
    return f"{seconds}s"
