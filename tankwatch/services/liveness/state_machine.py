"""
Liveness State Machine
Classifies each device as online, stale or offline from message recency and
detects the transitions worth recording

Both the message handler and the periodic sweep go through evaluate(), so
the transition rules live in exactly one place.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from tankwatch.core.error_handling import ConfigurationError
from tankwatch.core.time_utils import format_duration, to_iso
from tankwatch.models.device import Reading
from tankwatch.models.event import Event, EventType
from tankwatch.models.liveness import LivenessRecord, LivenessState

logger = logging.getLogger(__name__)


class Trigger(str, Enum):
    """What caused an evaluation"""
    MESSAGE = "message"
    SWEEP = "sweep"


@dataclass(frozen=True)
class Transition:
    """A detected state change and the event it produces"""
    device_id: str
    device_name: str
    previous: LivenessState
    current: LivenessState
    event_type: EventType
    at: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_event(self) -> Event:
        return Event(
            timestamp=self.at,
            type=self.event_type,
            device_id=self.device_id,
            device_name=self.device_name,
            details=dict(self.details),
        )


class LivenessStateMachine:
    """
    Per-device connectivity rules.

    Message arrival:
        unknown -> online        emits 'startup'
        stale/offline -> online  emits 'online'
        online -> online         no event
    Sweep (offline checked first):
        silence > offline_after and not offline -> offline, emits 'offline'
        silence > stale_after and online        -> stale, emits 'stale'

    A device silent long enough for both thresholds goes straight to offline
    without passing through stale in that sweep.
    """

    def __init__(
        self,
        stale_after: float = 30 * 60,
        offline_after: float = 2 * 60 * 60,
        low_battery_percent: float = 50,
        critical_battery_percent: float = 25
    ):
        """
        Initialize state machine.

        Args:
            stale_after: Seconds of silence before an online device is stale
            offline_after: Seconds of silence before a device is offline
            low_battery_percent: Battery at or below this is hinted as low
            critical_battery_percent: Battery at or below this is hinted as critical

        Raises:
            ConfigurationError: If stale_after >= offline_after
        """
        if stale_after <= 0 or offline_after <= 0:
            raise ConfigurationError(
                "Liveness thresholds must be positive",
                details={'stale_after': stale_after, 'offline_after': offline_after}
            )
        if stale_after >= offline_after:
            raise ConfigurationError(
                "stale_after must be shorter than offline_after",
                details={'stale_after': stale_after, 'offline_after': offline_after}
            )

        self.stale_after = stale_after
        self.offline_after = offline_after
        self.low_battery_percent = low_battery_percent
        self.critical_battery_percent = critical_battery_percent

    def classify(self, silence: Optional[float]) -> LivenessState:
        """State a device would be in after `silence` seconds without messages"""
        if silence is None:
            return LivenessState.UNKNOWN
        if silence > self.offline_after:
            return LivenessState.OFFLINE
        if silence > self.stale_after:
            return LivenessState.STALE
        return LivenessState.ONLINE

    def evaluate(
        self,
        record: LivenessRecord,
        trigger: Trigger,
        now: float,
        reading: Optional[Reading] = None
    ) -> Optional[Transition]:
        """
        Apply one observation to a record, mutating it in place.

        Args:
            record: The device's live record
            trigger: MESSAGE when a reading arrived, SWEEP for a periodic check
            now: Evaluation time (epoch seconds)
            reading: The decoded reading for MESSAGE triggers

        Returns:
            Transition when an event-worthy change happened, else None
        """
        if trigger == Trigger.MESSAGE:
            return self._on_message(record, now, reading)
        return self._on_sweep(record, now)

    def _on_message(
        self,
        record: LivenessRecord,
        now: float,
        reading: Optional[Reading]
    ) -> Optional[Transition]:
        previous = record.current_state

        record.last_seen_at = now
        if reading is not None:
            record.last_reading = reading
        record.current_state = LivenessState.ONLINE

        if previous.is_down:
            record.state_changed_at = now
            return Transition(
                device_id=record.device_id,
                device_name=record.device_name,
                previous=previous,
                current=LivenessState.ONLINE,
                event_type=EventType.ONLINE,
                at=now,
                details={
                    'previousState': previous.value,
                    'battery': reading.battery if reading else None,
                    'depth': reading.depth if reading else None,
                    'temperature': reading.temperature if reading else None,
                },
            )

        if previous == LivenessState.UNKNOWN:
            record.state_changed_at = now
            return Transition(
                device_id=record.device_id,
                device_name=record.device_name,
                previous=previous,
                current=LivenessState.ONLINE,
                event_type=EventType.STARTUP,
                at=now,
                details={
                    'battery': reading.battery if reading else None,
                    'message': 'First message received since listener started',
                },
            )

        return None

    def _on_sweep(self, record: LivenessRecord, now: float) -> Optional[Transition]:
        silence = record.silence(now)
        if silence is None:
            return None

        previous = record.current_state

        if silence > self.offline_after and previous != LivenessState.OFFLINE:
            record.current_state = LivenessState.OFFLINE
            record.state_changed_at = now

            last = record.last_reading
            battery = last.battery if last else None
            return Transition(
                device_id=record.device_id,
                device_name=record.device_name,
                previous=previous,
                current=LivenessState.OFFLINE,
                event_type=EventType.OFFLINE,
                at=now,
                details={
                    'lastMessageAt': to_iso(record.last_seen_at),
                    'silentForMs': int(round(silence * 1000)),
                    'silentForHuman': format_duration(silence * 1000),
                    'lastBatteryLevel': battery,
                    'lastDepthCm': last.depth if last else None,
                    'possibleCauses': self.possible_causes(battery),
                },
            )

        if silence > self.stale_after and previous == LivenessState.ONLINE:
            record.current_state = LivenessState.STALE
            record.state_changed_at = now
            return Transition(
                device_id=record.device_id,
                device_name=record.device_name,
                previous=previous,
                current=LivenessState.STALE,
                event_type=EventType.STALE,
                at=now,
                details={
                    'lastMessageAt': to_iso(record.last_seen_at),
                    'silentForMs': int(round(silence * 1000)),
                    'silentForHuman': format_duration(silence * 1000),
                },
            )

        return None

    def possible_causes(self, battery: Optional[float]) -> List[str]:
        """Heuristic hints for why a device went quiet"""
        causes = []
        if battery is not None:
            if battery <= self.critical_battery_percent:
                causes.append(f"Battery critically low ({battery:g}%)")
            elif battery <= self.low_battery_percent:
                causes.append(f"Battery low ({battery:g}%)")
        causes.append("Possible: out of hub range, hub offline, or sensor malfunction")
        return causes
