"""
Device and Reading Models
A monitored tank sensor and one decoded telemetry sample from it
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Device:
    """A configured tank sensor"""
    device_id: str
    display_name: str
    capacity: Optional[float] = None  # gallons, metadata only


@dataclass(frozen=True)
class Reading:
    """
    One decoded telemetry sample.

    received_at is assigned by the monitor when the message arrives; the
    sensor's own report time is kept inside raw_payload only.
    """
    device_id: str
    device_name: str
    received_at: float
    depth: Optional[float] = None
    depth_unit: str = "cm"
    battery: Optional[float] = None  # 0-100
    temperature: Optional[float] = None
    percentage: Optional[float] = None
    event_name: str = ""
    is_tank_reading: bool = False
    hub_online: Optional[bool] = None  # only set for hub reports
    raw_payload: Dict[str, Any] = field(default_factory=dict, compare=False)
