"""
Monitor Models
Domain dataclasses for devices, readings, liveness and events, plus the
SQLAlchemy snapshot table
"""
from .device import Device, Reading
from .liveness import LivenessState, LivenessRecord
from .event import Event, EventType, SensorSummary
from .snapshot import Snapshot

__all__ = [
    "Device",
    "Reading",
    "LivenessState",
    "LivenessRecord",
    "Event",
    "EventType",
    "SensorSummary",
    "Snapshot",
]
