"""
History Services
Event log, hourly timeline, current readings and the health report built on them
"""
from tankwatch.services.history.event_log import EventLog
from tankwatch.services.history.timeline import TimelineAggregator, compute_uptime
from tankwatch.services.history.readings import CurrentReadings
from tankwatch.services.history.health_report import build_health_report, calculate_stats

__all__ = [
    'EventLog',
    'TimelineAggregator',
    'compute_uptime',
    'CurrentReadings',
    'build_health_report',
    'calculate_stats',
]
