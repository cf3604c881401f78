#!/usr/bin/env python3
"""
Sensor Event Viewer

Read-only view of the offline/online history written by the liveness monitor.

Usage:
    tankwatch-events              # Show last 20 events
    tankwatch-events --all        # Show all events
    tankwatch-events --offline    # Show only offline/online transitions
    tankwatch-events --summary    # Show per-sensor summary
    tankwatch-events --health     # Show uptime and outage statistics
"""
import argparse
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from tankwatch.config.monitor_config import MonitorConfigLoader
from tankwatch.core.error_handling import ConfigurationError
from tankwatch.core.time_utils import SystemClock, parse_iso
from tankwatch.main import build_state_store
from tankwatch.models.device import Device
from tankwatch.services.history.event_log import EventLog
from tankwatch.services.history.health_report import build_health_report
from tankwatch.services.history.readings import CurrentReadings
from tankwatch.services.history.timeline import TimelineAggregator

DEFAULT_LIMIT = 20

EVENT_ICONS = {
    'online': '🟢',
    'offline': '🔴',
    'stale': '🟡',
    'startup': '🚀',
    'system': '⚙️',
    'hub_offline': '📡🔴',
}

STATUS_ICONS = {
    'online': '🟢',
    'offline': '🔴',
    'stale': '🟡',
}


def format_date(iso: Optional[str]) -> str:
    """ISO timestamp -> local time string"""
    ts = parse_iso(iso) if iso else None
    if ts is None:
        return 'N/A'
    return datetime.fromtimestamp(ts).strftime('%Y-%m-%d %H:%M:%S')


def render_events(
    data: Dict[str, Any],
    show_all: bool = False,
    offline_only: bool = False,
    limit: int = DEFAULT_LIMIT
) -> List[str]:
    """Event list view"""
    all_events = data.get('events') or []
    events = all_events

    if offline_only:
        events = [e for e in events if e.get('type') in ('offline', 'online')]
    if not show_all:
        events = events[-limit:]

    lines = [
        '',
        '=' * 60,
        'OFFLINE/ONLINE EVENTS' if offline_only else 'SENSOR EVENT LOG',
        '=' * 60,
        '',
    ]

    for event in events:
        event_type = event.get('type', '')
        icon = EVENT_ICONS.get(event_type, '❓')
        name = event.get('deviceName') or event.get('deviceId') or 'system'
        lines.append(
            f"{icon} {format_date(event.get('timestamp'))} | {event_type.upper():<10} | {name}"
        )

        details = event.get('details') or {}
        if event_type in ('offline', 'stale') and details.get('silentForHuman'):
            lines.append(f"   Silent for: {details['silentForHuman']}")
        if event_type == 'offline':
            if details.get('lastBatteryLevel') is not None:
                lines.append(f"   Last battery: {details['lastBatteryLevel']:g}%")
            for cause in details.get('possibleCauses') or []:
                lines.append(f"   ⚠️  {cause}")
        if event_type == 'online' and details.get('offlineDurationHuman'):
            lines.append(f"   Was offline for: {details['offlineDurationHuman']}")
        if event_type == 'system' and details.get('message'):
            lines.append(f"   {details['message']}")

    lines.append('')
    lines.append(f"Showing {len(events)} of {len(all_events)} total events")
    if not show_all and not offline_only:
        lines.append(
            'Use --all for full history, --offline for offline events only, '
            '--summary for per-sensor summary, --health for uptime statistics'
        )
    lines.append('')
    return lines


def render_summary(data: Dict[str, Any], devices: Dict[str, Device]) -> List[str]:
    """Per-sensor summary view; configured devices never heard from are listed last"""
    sensors = data.get('sensors') or {}
    lines = ['', '=' * 60, 'SENSOR STATUS SUMMARY', '=' * 60]

    for device_id, sensor in sensors.items():
        status = sensor.get('currentStatus') or 'unknown'
        icon = STATUS_ICONS.get(status, '⚪')
        lines.extend([
            '',
            f"{icon} {sensor.get('name') or device_id} ({device_id})",
            f"   Status:          {status}",
            f"   First seen:      {format_date(sensor.get('firstSeen'))}",
            f"   Last reading:    {format_date(sensor.get('lastReading'))}",
            f"   Total offline:   {sensor.get('totalOfflineEvents', 0)} events",
            f"   Total stale:     {sensor.get('totalStaleEvents', 0)} events",
        ])
        if sensor.get('lastOfflineAt'):
            lines.append(f"   Last offline:    {format_date(sensor['lastOfflineAt'])}")
        if sensor.get('lastStaleAt'):
            lines.append(f"   Last stale:      {format_date(sensor['lastStaleAt'])}")
        if sensor.get('lastOnlineAt'):
            lines.append(f"   Last online:     {format_date(sensor['lastOnlineAt'])}")

    for device_id, device in devices.items():
        if device_id in sensors:
            continue
        lines.extend([
            '',
            f"⚪ {device.display_name} ({device_id})",
            "   Status:          never seen",
        ])

    lines.append('')
    lines.append(f"Total events logged: {len(data.get('events') or [])}")
    lines.append('')
    return lines


def render_health(report: Dict[str, Any]) -> List[str]:
    """Uptime and outage statistics per sensor"""
    lines = ['', '=' * 60, 'SENSOR HEALTH', '=' * 60]

    for device_id, sensor in report.get('sensors', {}).items():
        stats = sensor['stats']
        status = 'never seen' if sensor['neverSeen'] else sensor['currentStatus']
        icon = STATUS_ICONS.get(sensor['currentStatus'], '⚪')
        uptime = stats['uptimePercent']

        lines.extend([
            '',
            f"{icon} {sensor['name']} ({device_id})",
            f"   Status:          {status}",
            f"   Uptime (7d):     {f'{uptime}%' if uptime is not None else 'N/A'}"
            f" ({stats['onlineBuckets']}/{stats['totalBuckets']} hours online)",
            f"   Offline events:  {stats['totalOfflineEvents']}",
            f"   Stale events:    {stats['totalStaleEvents']}",
            f"   Longest outage:  {stats['longestOutageHuman']}",
            f"   Average outage:  {stats['avgOutageHuman']}",
        ])
        if sensor.get('battery') is not None:
            lines.append(f"   Battery:         {sensor['battery']:g}%")
        if sensor.get('level') is not None:
            lines.append(f"   Level:           {sensor['level']:g} {sensor['levelUnit']}")
        if sensor.get('lastUpdate'):
            lines.append(f"   Last update:     {format_date(sensor['lastUpdate'])}")

    lines.append('')
    return lines


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="View offline/online history for tank sensors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Last 20 events
  tankwatch-events

  # Only transitions between offline and online
  tankwatch-events --offline --all

  # Uptime per configured sensor
  tankwatch-events --health
        """
    )
    parser.add_argument('--all', action='store_true', help='Show all events')
    parser.add_argument('--offline', action='store_true', help='Show only offline/online events')
    parser.add_argument('--summary', action='store_true', help='Show per-sensor summary')
    parser.add_argument('--health', action='store_true', help='Show uptime and outage statistics')
    parser.add_argument('--config', default=None, help='Path to monitor.yaml')
    parser.add_argument('--data-dir', default=None, help='Override the JSON snapshot directory')
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = parse_arguments(argv)

    try:
        config = MonitorConfigLoader.load(args.config)
        if args.data_dir:
            config.storage.backend = "json"
            config.storage.data_dir = args.data_dir
        store = build_state_store(config.storage)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e.message}", file=sys.stderr)
        return 1

    try:
        events = store.load_snapshot(EventLog.SNAPSHOT_NAME, None) or {'events': [], 'sensors': {}}
        devices = config.device_map

        if args.health:
            report = build_health_report(
                devices,
                store.load_snapshot(CurrentReadings.SNAPSHOT_NAME, {}) or {},
                events,
                store.load_snapshot(TimelineAggregator.SNAPSHOT_NAME, {}) or {},
                SystemClock().now(),
            )
            print('\n'.join(render_health(report)))
            return 0

        if args.summary:
            print('\n'.join(render_summary(events, devices)))
            return 0

        if not events.get('events'):
            print('No events recorded yet. Make sure the liveness monitor is running.')
            print('  tankwatch')
            return 0

        print('\n'.join(render_events(events, show_all=args.all, offline_only=args.offline)))
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
