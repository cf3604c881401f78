"""
Sensor Health Report
Read-only projection of the persisted snapshots: current status, 7-day
timeline and uptime/outage statistics per configured device
"""
from typing import Any, Dict, Iterable, List, Optional

from tankwatch.core.time_utils import format_duration, to_iso
from tankwatch.models.device import Device
from tankwatch.services.history.timeline import compute_uptime


def _format_outage(ms: float) -> str:
    if not ms or ms <= 0:
        return "N/A"
    return format_duration(ms)


def calculate_stats(
    buckets: Dict[str, str],
    events: Iterable[Dict[str, Any]],
    device_id: str
) -> Dict[str, Any]:
    """
    Uptime and outage statistics for one device.

    Args:
        buckets: The device's timeline buckets
        events: Serialized events from the event log snapshot
        device_id: Device identifier

    Returns:
        Dict with uptimePercent, event counts and outage durations
    """
    device_events = [e for e in events if e.get("deviceId") == device_id]
    offline_events = [e for e in device_events if e.get("type") == "offline"]
    stale_events = [e for e in device_events if e.get("type") == "stale"]
    outages: List[float] = [
        e["details"]["offlineDurationMs"]
        for e in device_events
        if e.get("type") == "online" and (e.get("details") or {}).get("offlineDurationMs")
    ]

    longest = max(outages) if outages else 0
    average = sum(outages) / len(outages) if outages else 0
    uptime = compute_uptime(buckets)

    return {
        "uptimePercent": uptime["uptimePercent"],
        "totalOfflineEvents": len(offline_events),
        "totalStaleEvents": len(stale_events),
        "longestOutageMs": longest,
        "longestOutageHuman": _format_outage(longest),
        "avgOutageMs": average,
        "avgOutageHuman": _format_outage(average),
        "totalBuckets": uptime["totalBuckets"],
        "onlineBuckets": uptime["onlineBuckets"],
    }


def build_health_report(
    devices: Dict[str, Device],
    readings: Dict[str, Dict[str, Any]],
    event_log: Dict[str, Any],
    timeline: Dict[str, Dict[str, str]],
    now: float,
    include_unconfigured: bool = False
) -> Dict[str, Any]:
    """
    Combine the three snapshots into a per-device health view.

    Devices with no summary and no reading are reported with
    currentStatus 'unknown' and neverSeen True, which keeps them apart from
    devices that were seen and went offline.

    Args:
        devices: Configured devices keyed by id
        readings: Readings snapshot
        event_log: Event log snapshot ({events, sensors})
        timeline: Timeline snapshot
        now: Report time (epoch seconds)
        include_unconfigured: Also report devices only present in the snapshots

    Returns:
        {"timestamp": iso, "sensors": {deviceId: {...}}}
    """
    events = event_log.get("events") or []
    summaries = event_log.get("sensors") or {}

    device_ids = list(devices)
    if include_unconfigured:
        for device_id in list(summaries) + list(readings):
            if device_id not in device_ids:
                device_ids.append(device_id)

    sensors = {}
    for device_id in device_ids:
        device: Optional[Device] = devices.get(device_id)
        reading = readings.get(device_id) or {}
        summary = summaries.get(device_id) or {}
        buckets = timeline.get(device_id) or {}

        name = device.display_name if device else (summary.get("name") or reading.get("name") or device_id)
        sensors[device_id] = {
            "name": name,
            "deviceId": device_id,
            "currentStatus": summary.get("currentStatus") or reading.get("status") or "unknown",
            "neverSeen": not summary and not reading,
            "battery": reading.get("battery"),
            "temperature": reading.get("temperature"),
            "lastUpdate": reading.get("timestamp") or summary.get("lastReading"),
            "level": reading.get("level"),
            "levelUnit": reading.get("levelUnit") or "cm",
            "timeline": buckets,
            "stats": calculate_stats(buckets, events, device_id),
        }

    return {
        "timestamp": to_iso(now),
        "sensors": sensors,
    }
