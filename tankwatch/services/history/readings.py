"""
Current Readings Snapshot
Latest tank reading per device, with status kept in sync with liveness
"""
import logging
from typing import Any, Dict, Optional

from tankwatch.core.time_utils import to_iso
from tankwatch.models.device import Device, Reading

logger = logging.getLogger(__name__)


class CurrentReadings:
    """
    deviceId -> latest reading record, as read by the dashboard.

    Only tank readings replace an entry; liveness transitions detected by the
    sweep update status and statusChangedAt of an existing entry.
    """

    SNAPSHOT_NAME = "tank-readings"

    def __init__(self, store):
        self.store = store
        self._readings: Dict[str, Dict[str, Any]] = {}
        self.dirty = False

    def load(self) -> None:
        raw = self.store.load_snapshot(self.SNAPSHOT_NAME, {})
        self._readings = raw if isinstance(raw, dict) else {}

    def update(
        self,
        reading: Reading,
        device: Optional[Device] = None,
        status: str = "online",
        status_changed_at: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Replace the entry for reading.device_id.

        Args:
            reading: Decoded tank reading
            device: Configured device metadata, if known
            status: Liveness status to publish
            status_changed_at: When the device entered that status

        Returns:
            The stored record
        """
        record: Dict[str, Any] = {
            "deviceId": reading.device_id,
            "name": reading.device_name,
            "capacity": device.capacity if device else None,
            "timestamp": to_iso(reading.received_at),
            "status": status,
            "statusChangedAt": to_iso(status_changed_at),
            "raw": reading.raw_payload,
        }
        if reading.depth is not None:
            record["level"] = reading.depth
            record["levelUnit"] = reading.depth_unit
        if reading.battery is not None:
            record["battery"] = reading.battery
        if reading.temperature is not None:
            record["temperature"] = reading.temperature
        if reading.percentage is not None:
            record["percentage"] = reading.percentage

        self._readings[reading.device_id] = record
        self.dirty = True

        logger.info(
            f"📏 {reading.device_name}: depth={reading.depth}{reading.depth_unit} "
            f"battery={reading.battery}%"
        )

        return record

    def mark_status(self, device_id: str, status: str, at: float) -> bool:
        """
        Reflect a liveness transition on an existing entry.

        Returns:
            False when the device has no reading entry yet
        """
        record = self._readings.get(device_id)
        if record is None:
            return False

        record["status"] = status
        record["statusChangedAt"] = to_iso(at)
        self.dirty = True
        return True

    def get(self, device_id: str) -> Optional[Dict[str, Any]]:
        record = self._readings.get(device_id)
        return dict(record) if record is not None else None

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {device_id: dict(record) for device_id, record in self._readings.items()}
