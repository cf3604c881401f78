"""
Sensor Event Log
Append-only, size-bounded history of liveness transitions with a rolling
per-sensor summary and outage-duration accounting
"""
import logging
from typing import Any, Dict, List, Optional

from tankwatch.core.time_utils import format_duration
from tankwatch.models.event import Event, EventType, SensorSummary
from tankwatch.services.storage.state_store import StateStore

logger = logging.getLogger(__name__)

EVENT_ICONS = {
    EventType.ONLINE: "🟢",
    EventType.OFFLINE: "🔴",
    EventType.STALE: "🟡",
    EventType.STARTUP: "🚀",
    EventType.SYSTEM: "⚙️",
    EventType.HUB_OFFLINE: "📡🔴",
}


class EventLog:
    """
    Bounded event history persisted as a single snapshot.

    Features:
    - FIFO trim to the most recent max_events entries
    - Incremental SensorSummary per device (never deleted)
    - Outage duration attached to every recovery ('online') event
    - Changes set `dirty`; the owner writes snapshot() to the store
    """

    SNAPSHOT_NAME = "sensor-events"

    def __init__(self, store: StateStore, max_events: int = 500):
        """
        Initialize event log.

        Args:
            store: Snapshot persistence backend
            max_events: Maximum number of events kept in the snapshot
        """
        if max_events < 1:
            raise ValueError("max_events must be at least 1")

        self.store = store
        self.max_events = max_events

        self._events: List[Event] = []
        self._sensors: Dict[str, SensorSummary] = {}
        self.dirty = False

    def load(self) -> None:
        """Restore events and summaries from the store, skipping bad entries"""
        raw = self.store.load_snapshot(self.SNAPSHOT_NAME, {"events": [], "sensors": {}})
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed event log snapshot")
            return

        events = []
        for entry in raw.get("events") or []:
            try:
                events.append(Event.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable event entry {entry!r}: {e}")

        sensors = {}
        for device_id, entry in (raw.get("sensors") or {}).items():
            try:
                sensors[device_id] = SensorSummary.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable summary for {device_id}: {e}")

        self._events = events[-self.max_events:]
        self._sensors = sensors
        logger.info(
            f"Event log loaded: {len(self._events)} events, {len(self._sensors)} sensors"
        )

    def append(self, event: Event) -> Event:
        """
        Append an event, update its sensor summary and trim.

        Args:
            event: Event to append

        Returns:
            The stored event; recovery events carry offlineDurationMs and
            offlineDurationHuman when the device was down before
        """
        if event.device_id:
            event = self._update_summary(event)

        self._events.append(event)
        if len(self._events) > self.max_events:
            del self._events[:len(self._events) - self.max_events]
        self.dirty = True

        self._log_event(event)
        return event

    def _update_summary(self, event: Event) -> Event:
        sensor = self._sensors.get(event.device_id)
        if sensor is None:
            sensor = SensorSummary(name=event.device_name, first_seen=event.timestamp)
            self._sensors[event.device_id] = sensor

        if event.device_name:
            sensor.name = event.device_name

        if event.type == EventType.ONLINE:
            down_since = sensor.down_since()
            if down_since is not None:
                duration_ms = int(round((event.timestamp - down_since) * 1000))
                event = event.with_details(
                    offlineDurationMs=duration_ms,
                    offlineDurationHuman=format_duration(duration_ms),
                )
            sensor.last_online_at = event.timestamp
            sensor.current_status = "online"
        elif event.type == EventType.STARTUP:
            sensor.last_online_at = event.timestamp
            sensor.current_status = "online"
        elif event.type == EventType.OFFLINE:
            sensor.last_offline_at = event.timestamp
            sensor.total_offline_events += 1
            sensor.current_status = "offline"
        elif event.type == EventType.STALE:
            sensor.last_stale_at = event.timestamp
            sensor.total_stale_events += 1
            sensor.current_status = "stale"

        return event

    def note_reading(self, device_id: str, device_name: Optional[str], at: float) -> None:
        """
        Record that a reading arrived without adding an event.

        Only touches an existing summary; the device's first message always
        produces a startup event which creates it.
        """
        sensor = self._sensors.get(device_id)
        if sensor is None:
            return
        sensor.last_reading = at
        sensor.current_status = "online"
        if device_name:
            sensor.name = device_name
        self.dirty = True

    def query(
        self,
        device_id: Optional[str] = None,
        event_type: Optional[EventType] = None,
        limit: Optional[int] = None
    ) -> List[Event]:
        """
        Matching events, oldest first.

        Args:
            device_id: Only events for this device
            event_type: Only events of this type
            limit: Only the most recent N matches

        Returns:
            List of events in chronological order
        """
        matches = [
            e for e in self._events
            if (device_id is None or e.device_id == device_id)
            and (event_type is None or e.type == event_type)
        ]
        if limit is not None:
            matches = matches[-limit:] if limit > 0 else []
        return matches

    def summary(self, device_id: str) -> Optional[SensorSummary]:
        return self._sensors.get(device_id)

    def summaries(self) -> Dict[str, SensorSummary]:
        return dict(self._sensors)

    def __len__(self) -> int:
        return len(self._events)

    def snapshot(self) -> Dict[str, Any]:
        """Serializable {events, sensors} document"""
        return {
            "events": [e.to_dict() for e in self._events],
            "sensors": {
                device_id: sensor.to_dict()
                for device_id, sensor in self._sensors.items()
            },
        }

    def _log_event(self, event: Event) -> None:
        icon = EVENT_ICONS.get(event.type, "❓")
        who = event.device_name or "system"
        suffix = f" ({event.device_id})" if event.device_id else ""
        logger.info(
            f"{icon} {event.type.value.upper()}: {who}{suffix}",
            extra={'device_id': event.device_id, 'event_type': event.type.value}
        )
        if event.details:
            logger.info(f"   Details: {event.details}")
