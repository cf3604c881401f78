"""
Liveness Models
Connectivity state and the per-device live record held by the monitor
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tankwatch.models.device import Reading


class LivenessState(str, Enum):
    """Connectivity classification derived from message recency"""
    UNKNOWN = "unknown"
    ONLINE = "online"
    STALE = "stale"
    OFFLINE = "offline"

    @property
    def is_down(self) -> bool:
        return self in (LivenessState.STALE, LivenessState.OFFLINE)


@dataclass
class LivenessRecord:
    """
    Live state for one device.

    current_state is only re-derived when a message arrives or a sweep runs,
    so between those points it may lag the true silence of the device.
    """
    device_id: str
    device_name: str
    last_seen_at: Optional[float] = None
    last_reading: Optional[Reading] = None
    current_state: LivenessState = LivenessState.UNKNOWN
    state_changed_at: Optional[float] = None

    def silence(self, now: float) -> Optional[float]:
        """Seconds since the last message, None if never seen"""
        if self.last_seen_at is None:
            return None
        return now - self.last_seen_at
