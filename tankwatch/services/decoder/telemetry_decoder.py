"""
Telemetry Decoder
Parses raw broker messages into normalized tank readings

Topic layout: yl-home/{homeId}/{deviceId}/report
Payload: {"event": "WaterDepthSensor.Report", "time": ..., "data": {...}}
"""
import json
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from tankwatch.core.error_handling import DecodeError, ErrorCode
from tankwatch.core.time_utils import SystemClock
from tankwatch.models.device import Device, Reading

logger = logging.getLogger(__name__)

BATTERY_SCALE = 25  # sensors report 1-4, 4 == 100%


class SensorData(BaseModel):
    """The `data` object of a device report"""
    name: Optional[str] = None
    type: Optional[str] = None
    online: Optional[bool] = None
    waterDepth: Optional[float] = Field(None, description="Water depth in mm")
    depth: Optional[float] = Field(None, description="Water depth in cm")
    level: Optional[float] = None
    unit: Optional[str] = None
    battery: Optional[float] = Field(None, description="Battery level, 1-4 scale")
    devTemperature: Optional[float] = None
    temperature: Optional[float] = None
    percent: Optional[float] = None

    class Config:
        extra = "allow"


class DeviceReport(BaseModel):
    """A device report message"""
    event: str = ""
    data: Optional[SensorData] = None

    class Config:
        extra = "allow"


class TelemetryDecoder:
    """
    Decodes broker messages.

    Any well-formed report is a liveness signal for its device; it is also a
    tank reading when the device is configured, the event names a
    WaterDepthSensor, or the payload carries a depth field.
    """

    def __init__(self, devices: Optional[Dict[str, Device]] = None, clock=None):
        """
        Initialize decoder.

        Args:
            devices: Configured devices keyed by id (used for naming)
            clock: Object with now() -> epoch seconds, stamps received_at
        """
        self.devices = devices or {}
        self.clock = clock or SystemClock()

    @staticmethod
    def device_id_from_topic(topic: str) -> str:
        parts = topic.split('/')
        if len(parts) < 3 or not parts[2]:
            raise DecodeError(
                f"No device id in topic '{topic}'",
                details={'topic': topic},
                error_code=ErrorCode.UNRECOGNIZED_TOPIC
            )
        return parts[2]

    def decode(
        self,
        topic: str,
        payload: bytes,
        fallback_name: Optional[str] = None
    ) -> Reading:
        """
        Decode one message.

        Args:
            topic: MQTT topic the message arrived on
            payload: Raw message body
            fallback_name: Last known name of the device

        Returns:
            Reading stamped with the monitor's current time

        Raises:
            DecodeError: If the topic or payload cannot be interpreted
        """
        device_id = self.device_id_from_topic(topic)

        try:
            body = json.loads(payload)
        except ValueError as e:
            raise DecodeError(
                f"Payload from {device_id} is not valid JSON: {e}",
                details={'topic': topic, 'device_id': device_id}
            ) from e

        if not isinstance(body, dict):
            raise DecodeError(
                f"Payload from {device_id} is not a JSON object",
                details={'topic': topic, 'device_id': device_id}
            )

        try:
            report = DeviceReport(**body)
        except ValidationError as e:
            raise DecodeError(
                f"Unrecognized report from {device_id}: {e.errors()}",
                details={'topic': topic, 'device_id': device_id}
            ) from e

        return self._build_reading(device_id, report, body, fallback_name)

    def _build_reading(
        self,
        device_id: str,
        report: DeviceReport,
        body: Dict[str, Any],
        fallback_name: Optional[str]
    ) -> Reading:
        data = report.data or SensorData()
        known = self.devices.get(device_id)
        name = (known.display_name if known else None) or data.name or fallback_name or device_id

        # Depth: waterDepth is mm, depth is cm, level carries its own unit
        depth, depth_unit = None, "cm"
        if data.waterDepth is not None:
            depth = data.waterDepth / 10
        elif data.depth is not None:
            depth = data.depth
        elif data.level is not None:
            depth = data.level
            depth_unit = data.unit or "cm"

        battery = data.battery * BATTERY_SCALE if data.battery is not None else None
        temperature = data.devTemperature if data.devTemperature is not None else data.temperature

        is_tank = (
            known is not None
            or 'WaterDepthSensor' in report.event
            or data.depth is not None
            or data.waterDepth is not None
        )

        hub_online = None
        if 'Hub' in report.event or data.type == 'Hub':
            hub_online = data.online is not False

        return Reading(
            device_id=device_id,
            device_name=name,
            received_at=self.clock.now(),
            depth=depth,
            depth_unit=depth_unit,
            battery=battery,
            temperature=temperature,
            percentage=data.percent,
            event_name=report.event,
            is_tank_reading=is_tank,
            hub_online=hub_online,
            raw_payload=body,
        )
