"""
Liveness Monitor
Wires the broker session, decoder, state machine and history together

Message flow:
    MqttSession -> TelemetryDecoder -> LivenessStateMachine
                -> {TimelineAggregator, EventLog, CurrentReadings} -> StateStore
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from tankwatch.config.monitor_config import MonitorConfig
from tankwatch.core.error_handling import AuthError, DecodeError, PersistenceError
from tankwatch.core.time_utils import SystemClock, to_iso
from tankwatch.models.event import Event, EventType
from tankwatch.services.auth.token_provider import TokenProvider
from tankwatch.services.decoder.telemetry_decoder import TelemetryDecoder
from tankwatch.services.history.event_log import EventLog
from tankwatch.services.history.readings import CurrentReadings
from tankwatch.services.history.timeline import TimelineAggregator
from tankwatch.services.liveness.registry import LivenessRegistry
from tankwatch.services.liveness.state_machine import (
    LivenessStateMachine,
    Transition,
    Trigger,
)
from tankwatch.services.scheduler.task_scheduler import TaskScheduler
from tankwatch.services.storage.state_store import StateStore
from tankwatch.services.transport.mqtt_session import MqttSession

logger = logging.getLogger(__name__)

SWEEP_TASK = "liveness_sweep"
HEARTBEAT_TASK = "heartbeat"
TOKEN_REFRESH_TASK = "token_refresh"


class LivenessMonitor:
    """
    Long-running device liveness monitor.

    Features:
    - Every valid message marks its device online (startup on first contact)
    - Periodic sweep demotes silent devices to stale and then offline
    - Transitions go to the bounded event log and the hourly timeline
    - Tank readings are published to the readings snapshot
    - Snapshots are written in the default executor, one at a time

    handle_message() and sweep() are the only code paths that change
    liveness state; both hold the device's registry lock while doing so.
    """

    def __init__(
        self,
        config: MonitorConfig,
        store: StateStore,
        token_provider=None,
        session=None,
        scheduler: Optional[TaskScheduler] = None,
        registry: Optional[LivenessRegistry] = None,
        clock=None
    ):
        """
        Initialize monitor.

        Args:
            config: Validated monitor configuration
            store: Snapshot persistence backend
            token_provider: Broker credential provider (built from config if None)
            session: Broker session (built from config if None)
            scheduler: Task scheduler for sweep, heartbeat and re-auth
            registry: Liveness record store
            clock: Object with now() -> epoch seconds
        """
        self.config = config
        self.store = store
        self.clock = clock or SystemClock()
        self.devices = config.device_map

        self.registry = registry or LivenessRegistry()
        self.state_machine = LivenessStateMachine(
            stale_after=config.liveness.stale_after_seconds,
            offline_after=config.liveness.offline_after_seconds,
            low_battery_percent=config.liveness.low_battery_percent,
            critical_battery_percent=config.liveness.critical_battery_percent,
        )
        self.decoder = TelemetryDecoder(devices=self.devices, clock=self.clock)
        self.event_log = EventLog(store, max_events=config.history.max_events)
        self.timeline = TimelineAggregator(
            store,
            retention_seconds=config.history.timeline_retention_days * 24 * 3600,
            clock=self.clock,
        )
        self.readings = CurrentReadings(store)
        self.scheduler = scheduler or TaskScheduler(clock=self.clock)

        self.token_provider = token_provider or TokenProvider(
            token_url=config.auth.token_url,
            client_id=config.auth.client_id,
            client_secret=config.auth.client_secret,
            safety_margin=config.auth.safety_margin_seconds,
            default_ttl=config.auth.default_ttl_seconds,
            timeout=config.auth.request_timeout_seconds,
            clock=self.clock,
        )
        self.session = session or MqttSession(
            host=config.broker.host,
            port=config.broker.port,
            home_id=config.broker.home_id,
            token_provider=self.token_provider,
            on_message=self.handle_message,
            client_id=f"{config.broker.client_id_prefix}-{int(self.clock.now() * 1000)}",
            qos=config.broker.qos,
            keepalive=config.broker.keepalive,
            reconnect_delay=config.broker.reconnect_delay_seconds,
            connect_timeout=config.broker.connect_timeout_seconds,
            clock=self.clock,
        )

        self._persist_lock = asyncio.Lock()
        self._running = False
        self._started_at: Optional[float] = None
        self._stats = {
            'messages': 0,
            'decode_errors': 0,
            'transitions': 0,
            'sweeps': 0,
            'persist_failures': 0,
        }

    async def start(self) -> None:
        """Load snapshots, connect to the broker and schedule periodic tasks"""
        if self._running:
            logger.warning("Liveness monitor already running")
            return

        logger.info("=" * 60)
        logger.info("Starting tank sensor liveness monitor...")
        logger.info("=" * 60)

        self.event_log.load()
        self.timeline.load()
        self.readings.load()

        self._running = True
        self._started_at = self.clock.now()
        self.event_log.append(
            Event.system("MQTT listener started", self._started_at)
        )
        await self.flush()

        try:
            await self.token_provider.get_token()
        except AuthError as e:
            logger.error(
                f"Initial token request failed, will retry on reconnect: {e.message}",
                extra={'error_code': e.error_code.name}
            )

        await self.session.start()

        liveness = self.config.liveness
        self.scheduler.register_task(SWEEP_TASK, self.sweep, liveness.sweep_interval_seconds)
        self.scheduler.register_task(
            HEARTBEAT_TASK, self._heartbeat, liveness.heartbeat_interval_seconds
        )
        self.scheduler.register_task(
            TOKEN_REFRESH_TASK,
            self.session.force_reauthenticate,
            self.config.auth.refresh_interval_seconds
        )
        await self.scheduler.start()

        logger.info(
            f"✓ Monitoring {len(self.devices)} configured devices "
            f"(stale after {liveness.stale_after_seconds:g}s, "
            f"offline after {liveness.offline_after_seconds:g}s)"
        )

    async def stop(self, reason: str = "shutdown") -> None:
        """
        Record the stop, flush snapshots and close the broker session.

        Args:
            reason: Why the monitor stopped (e.g. SIGINT)
        """
        if not self._running:
            return
        self._running = False

        logger.info(f"Stopping liveness monitor ({reason})...")

        self.event_log.append(
            Event.system(f"MQTT listener stopped ({reason})", self.clock.now())
        )

        try:
            await self.scheduler.stop()
        finally:
            try:
                await self.flush()
            finally:
                await self.session.close()

        logger.info("Liveness monitor stopped")

    async def handle_message(self, topic: str, payload: bytes) -> Optional[Transition]:
        """
        Process one broker message.

        Args:
            topic: MQTT topic
            payload: Raw message body

        Returns:
            The transition the message caused, if any
        """
        self._stats['messages'] += 1

        try:
            device_id = self.decoder.device_id_from_topic(topic)
            known = self.registry.get(device_id)
            reading = self.decoder.decode(
                topic, payload, fallback_name=known.device_name if known else None
            )
        except DecodeError as e:
            self._stats['decode_errors'] += 1
            logger.warning(
                f"Dropping message on {topic}: {e.message}",
                extra={'error_code': e.error_code.name}
            )
            return None

        at = reading.received_at
        async with self.registry.lock(device_id):
            record = self.registry.ensure(device_id, reading.device_name)
            record.device_name = reading.device_name

            transition = self.state_machine.evaluate(record, Trigger.MESSAGE, at, reading)

            self.timeline.record(device_id, "online", at)
            if transition is not None:
                self._stats['transitions'] += 1
                self.event_log.append(transition.to_event())
            self.event_log.note_reading(device_id, reading.device_name, at)

            if reading.is_tank_reading:
                self.readings.update(
                    reading,
                    device=self.devices.get(device_id),
                    status="online",
                    status_changed_at=record.state_changed_at,
                )

            if reading.hub_online is False:
                self.event_log.append(
                    Event(
                        timestamp=at,
                        type=EventType.HUB_OFFLINE,
                        device_id=device_id,
                        device_name=reading.device_name,
                        details={'message': 'Hub reported offline, all sensors may be affected'},
                    )
                )

        await self.flush()
        return transition

    async def sweep(self) -> List[Transition]:
        """
        Check every known device for stale/offline silence.

        Returns:
            Transitions detected in this sweep
        """
        now = self.clock.now()
        transitions = []

        for device_id in self.registry.device_ids():
            async with self.registry.lock(device_id):
                record = self.registry.get(device_id)
                transition = self.state_machine.evaluate(record, Trigger.SWEEP, now)
                if transition is None:
                    continue

                status = transition.current.value
                self.event_log.append(transition.to_event())
                self.timeline.record(device_id, status, now)
                self.readings.mark_status(device_id, status, now)
                transitions.append(transition)

        self._stats['sweeps'] += 1
        self._stats['transitions'] += len(transitions)

        if transitions:
            logger.info(f"Liveness sweep: {len(transitions)} transition(s)")
        else:
            logger.debug(f"Liveness sweep: {len(self.registry)} devices, no changes")

        await self.flush()
        return transitions

    async def flush(self) -> bool:
        """
        Write every snapshot with unsaved changes.

        Returns:
            True if nothing is left unsaved
        """
        results = []
        for component in (self.event_log, self.timeline, self.readings):
            results.append(await self._persist(component))
        return all(results)

    async def _persist(self, component) -> bool:
        async with self._persist_lock:
            if not component.dirty:
                return True

            # Snapshot on the loop so the executor never sees a dict mid-update
            data = component.snapshot()
            component.dirty = False

            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(
                    None, self.store.save_snapshot, component.SNAPSHOT_NAME, data
                )
                return True
            except PersistenceError as e:
                component.dirty = True
                self._stats['persist_failures'] += 1
                logger.error(
                    f"Failed to save {component.SNAPSHOT_NAME}, will retry on next write: {e.message}",
                    extra={'error_code': e.error_code.name}
                )
                return False

    async def _heartbeat(self) -> None:
        self.session.heartbeat()

    def get_status(self) -> Dict[str, Any]:
        """Diagnostic view of the monitor and its collaborators"""
        return {
            'running': self._running,
            'started_at': to_iso(self._started_at),
            'devices': {
                record.device_id: {
                    'name': record.device_name,
                    'state': record.current_state.value,
                    'last_seen_at': to_iso(record.last_seen_at),
                    'state_changed_at': to_iso(record.state_changed_at),
                }
                for record in self.registry
            },
            'events': len(self.event_log),
            'auth': self.token_provider.get_statistics(),
            'session': self.session.get_status(),
            'scheduler': self.scheduler.get_task_status(),
            **self._stats
        }
