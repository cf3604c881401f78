"""
Unit tests for the liveness state machine
Covers message/sweep transitions and threshold validation
"""
import pytest

from tankwatch.core.error_handling import ConfigurationError
from tankwatch.models.device import Reading
from tankwatch.models.event import EventType
from tankwatch.models.liveness import LivenessRecord, LivenessState
from tankwatch.services.liveness.state_machine import LivenessStateMachine, Trigger

T0 = 1_735_725_600.0  # 2025-01-01T10:00:00Z
MINUTE = 60
HOUR = 3600


@pytest.fixture
def machine():
    return LivenessStateMachine(stale_after=30 * MINUTE, offline_after=2 * HOUR)


@pytest.fixture
def record():
    return LivenessRecord(device_id="dev-1", device_name="Tank 2")


def make_reading(at, battery=75.0, depth=120.5):
    return Reading(
        device_id="dev-1",
        device_name="Tank 2",
        received_at=at,
        depth=depth,
        battery=battery,
        temperature=18.0,
        is_tank_reading=True,
    )


def bring_online(machine, record, at=T0):
    return machine.evaluate(record, Trigger.MESSAGE, at, make_reading(at))


class TestLivenessStateMachine:
    """Unit tests for LivenessStateMachine"""

    @pytest.mark.unit
    def test_first_message_emits_startup(self, machine, record):
        """Unknown -> online produces a startup transition"""
        transition = bring_online(machine, record)

        assert transition.event_type == EventType.STARTUP
        assert transition.previous == LivenessState.UNKNOWN
        assert record.current_state == LivenessState.ONLINE
        assert record.last_seen_at == T0
        assert record.state_changed_at == T0
        assert transition.details["battery"] == 75.0

    @pytest.mark.unit
    def test_message_while_online_is_silent(self, machine, record):
        bring_online(machine, record)

        transition = machine.evaluate(
            record, Trigger.MESSAGE, T0 + 5 * MINUTE, make_reading(T0 + 5 * MINUTE)
        )

        assert transition is None
        assert record.last_seen_at == T0 + 5 * MINUTE
        assert record.state_changed_at == T0

    @pytest.mark.unit
    def test_sweep_marks_stale_after_threshold(self, machine, record):
        bring_online(machine, record)

        assert machine.evaluate(record, Trigger.SWEEP, T0 + 30 * MINUTE) is None

        transition = machine.evaluate(record, Trigger.SWEEP, T0 + 31 * MINUTE)

        assert transition.event_type == EventType.STALE
        assert record.current_state == LivenessState.STALE
        assert transition.details["silentForMs"] == 31 * MINUTE * 1000
        assert transition.details["silentForHuman"] == "31m"
        assert transition.details["lastMessageAt"] == "2025-01-01T10:00:00.000Z"

    @pytest.mark.unit
    def test_stale_does_not_retrigger(self, machine, record):
        bring_online(machine, record)
        machine.evaluate(record, Trigger.SWEEP, T0 + 40 * MINUTE)

        assert machine.evaluate(record, Trigger.SWEEP, T0 + 50 * MINUTE) is None
        assert record.current_state == LivenessState.STALE

    @pytest.mark.unit
    def test_three_hours_silence_goes_straight_to_offline(self, machine, record):
        """A sweep that sees both thresholds exceeded skips stale"""
        bring_online(machine, record)

        transition = machine.evaluate(record, Trigger.SWEEP, T0 + 3 * HOUR)

        assert transition.event_type == EventType.OFFLINE
        assert transition.previous == LivenessState.ONLINE
        assert record.current_state == LivenessState.OFFLINE
        assert transition.details["silentForHuman"] == "3h 0m"
        assert transition.details["lastBatteryLevel"] == 75.0
        assert transition.details["lastDepthCm"] == 120.5

    @pytest.mark.unit
    def test_offline_while_offline_is_noop(self, machine, record):
        bring_online(machine, record)
        machine.evaluate(record, Trigger.SWEEP, T0 + 3 * HOUR)

        assert machine.evaluate(record, Trigger.SWEEP, T0 + 4 * HOUR) is None
        assert record.state_changed_at == T0 + 3 * HOUR

    @pytest.mark.unit
    def test_recovery_from_offline_emits_online(self, machine, record):
        bring_online(machine, record)
        machine.evaluate(record, Trigger.SWEEP, T0 + 3 * HOUR)

        at = T0 + 3 * HOUR + 5 * MINUTE
        transition = machine.evaluate(record, Trigger.MESSAGE, at, make_reading(at, battery=50.0))

        assert transition.event_type == EventType.ONLINE
        assert transition.details["previousState"] == "offline"
        assert transition.details["battery"] == 50.0
        assert transition.details["depth"] == 120.5
        assert record.current_state == LivenessState.ONLINE
        assert record.state_changed_at == at

    @pytest.mark.unit
    def test_sweep_ignores_never_seen_records(self, machine, record):
        assert machine.evaluate(record, Trigger.SWEEP, T0) is None
        assert record.current_state == LivenessState.UNKNOWN

    @pytest.mark.unit
    def test_state_domain(self, machine, record):
        """Record state is always one of the four labels"""
        bring_online(machine, record)
        for minutes in range(0, 300, 10):
            machine.evaluate(record, Trigger.SWEEP, T0 + minutes * MINUTE)
            assert record.current_state in set(LivenessState)

    @pytest.mark.unit
    def test_classify(self, machine):
        assert machine.classify(None) == LivenessState.UNKNOWN
        assert machine.classify(10 * MINUTE) == LivenessState.ONLINE
        assert machine.classify(45 * MINUTE) == LivenessState.STALE
        assert machine.classify(3 * HOUR) == LivenessState.OFFLINE

    @pytest.mark.unit
    @pytest.mark.parametrize("battery,expected", [
        (25.0, "Battery critically low (25%)"),
        (50.0, "Battery low (50%)"),
    ])
    def test_possible_causes_battery_hints(self, machine, battery, expected):
        causes = machine.possible_causes(battery)

        assert causes[0] == expected
        assert "hub range" in causes[-1]

    @pytest.mark.unit
    def test_possible_causes_healthy_battery(self, machine):
        causes = machine.possible_causes(100.0)

        assert len(causes) == 1

    @pytest.mark.unit
    @pytest.mark.parametrize("stale,offline", [
        (2 * HOUR, 2 * HOUR),
        (3 * HOUR, 2 * HOUR),
        (0, HOUR),
    ])
    def test_rejects_bad_thresholds(self, stale, offline):
        with pytest.raises(ConfigurationError):
            LivenessStateMachine(stale_after=stale, offline_after=offline)
