"""
Sensor Timeline Aggregator
Hour-bucketed rolling status history (7 days by default) used for uptime
"""
import logging
import math
from typing import Any, Dict, Optional

from tankwatch.core.time_utils import SystemClock, hour_floor, parse_iso, to_iso

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 7 * 24 * 3600


def compute_uptime(buckets: Dict[str, str]) -> Dict[str, Any]:
    """
    Uptime statistics for one device's buckets.

    uptimePercent has one decimal place and is None when there are no buckets.
    """
    total = len(buckets)
    online = sum(1 for status in buckets.values() if status == "online")
    uptime = None
    if total > 0:
        # half-up rounding to one decimal
        uptime = math.floor(online / total * 1000 + 0.5) / 10
    return {
        "totalBuckets": total,
        "onlineBuckets": online,
        "uptimePercent": uptime,
    }


class TimelineAggregator:
    """
    Maintains deviceId -> {isoHourBucket: status}.

    Buckets are written when messages arrive and when the sweep detects a
    transition, so their density follows message frequency. Retention is
    enforced per device relative to the time of each update.
    """

    SNAPSHOT_NAME = "sensor-timeline"

    def __init__(
        self,
        store,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock=None
    ):
        """
        Initialize timeline.

        Args:
            store: Snapshot persistence backend
            retention_seconds: Buckets older than this (relative to the
                               update time) are pruned
            clock: Object with now() -> epoch seconds
        """
        self.store = store
        self.retention_seconds = retention_seconds
        self.clock = clock or SystemClock()

        self._timeline: Dict[str, Dict[str, str]] = {}
        self.dirty = False

    @staticmethod
    def bucket_key(at: float) -> str:
        return to_iso(hour_floor(at))

    def load(self) -> None:
        raw = self.store.load_snapshot(self.SNAPSHOT_NAME, {})
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed timeline snapshot")
            return
        self._timeline = {
            device_id: dict(buckets)
            for device_id, buckets in raw.items()
            if isinstance(buckets, dict)
        }
        logger.info(f"Timeline loaded for {len(self._timeline)} devices")

    def record(
        self,
        device_id: str,
        status: str,
        at: Optional[float] = None
    ) -> str:
        """
        Write status into the hour bucket containing `at` and prune old buckets.

        Args:
            device_id: Device identifier
            status: Status label (online, stale, offline)
            at: Event time, defaults to now

        Returns:
            The bucket key written
        """
        if at is None:
            at = self.clock.now()

        buckets = self._timeline.setdefault(device_id, {})
        key = self.bucket_key(at)
        buckets[key] = status

        cutoff = at - self.retention_seconds
        for existing in list(buckets):
            try:
                expired = parse_iso(existing) < cutoff
            except ValueError:
                expired = True
            if expired:
                del buckets[existing]

        self.dirty = True
        return key

    def buckets(self, device_id: str) -> Dict[str, str]:
        return dict(self._timeline.get(device_id, {}))

    def uptime_stats(self, device_id: str) -> Dict[str, Any]:
        return compute_uptime(self._timeline.get(device_id, {}))

    def snapshot(self) -> Dict[str, Dict[str, str]]:
        return {
            device_id: dict(sorted(buckets.items()))
            for device_id, buckets in self._timeline.items()
        }
