"""
Event Log Models
Immutable transition events and the derived per-sensor summary

Both serialize to the camelCase shape read by the dashboard front end:
    {"events": [Event...], "sensors": {deviceId: SensorSummary}}
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from tankwatch.core.time_utils import to_iso, parse_iso


class EventType(str, Enum):
    """Kinds of entries in the event log"""
    ONLINE = "online"
    OFFLINE = "offline"
    STALE = "stale"
    STARTUP = "startup"
    SYSTEM = "system"
    HUB_OFFLINE = "hub_offline"


@dataclass(frozen=True)
class Event:
    """A state transition or notable occurrence"""
    timestamp: float
    type: EventType
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def system(cls, message: str, timestamp: float) -> "Event":
        return cls(timestamp=timestamp, type=EventType.SYSTEM, details={"message": message})

    def with_details(self, **extra) -> "Event":
        """Copy of this event with additional detail fields"""
        return Event(
            timestamp=self.timestamp,
            type=self.type,
            device_id=self.device_id,
            device_name=self.device_name,
            details={**self.details, **extra},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": to_iso(self.timestamp),
            "type": self.type.value,
            "deviceId": self.device_id,
            "deviceName": self.device_name,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Raises ValueError/KeyError on entries that cannot be parsed"""
        return cls(
            timestamp=parse_iso(data["timestamp"]),
            type=EventType(data["type"]),
            device_id=data.get("deviceId"),
            device_name=data.get("deviceName"),
            details=dict(data.get("details") or {}),
        )


@dataclass
class SensorSummary:
    """Rolling per-device summary, rebuilt incrementally as events arrive"""
    name: Optional[str]
    first_seen: float
    last_online_at: Optional[float] = None
    last_offline_at: Optional[float] = None
    last_stale_at: Optional[float] = None
    last_reading: Optional[float] = None
    total_offline_events: int = 0
    total_stale_events: int = 0
    current_status: str = "unknown"

    def down_since(self) -> Optional[float]:
        """Most recent offline or stale transition, if any"""
        candidates = [t for t in (self.last_offline_at, self.last_stale_at) if t is not None]
        return max(candidates) if candidates else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "firstSeen": to_iso(self.first_seen),
            "totalOfflineEvents": self.total_offline_events,
            "totalStaleEvents": self.total_stale_events,
            "lastOfflineAt": to_iso(self.last_offline_at),
            "lastStaleAt": to_iso(self.last_stale_at),
            "lastOnlineAt": to_iso(self.last_online_at),
            "lastReading": to_iso(self.last_reading),
            "currentStatus": self.current_status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SensorSummary":
        return cls(
            name=data.get("name"),
            first_seen=parse_iso(data["firstSeen"]),
            last_online_at=parse_iso(data.get("lastOnlineAt")),
            last_offline_at=parse_iso(data.get("lastOfflineAt")),
            last_stale_at=parse_iso(data.get("lastStaleAt")),
            last_reading=parse_iso(data.get("lastReading")),
            total_offline_events=int(data.get("totalOfflineEvents") or 0),
            total_stale_events=int(data.get("totalStaleEvents") or 0),
            current_status=data.get("currentStatus") or "unknown",
        )
