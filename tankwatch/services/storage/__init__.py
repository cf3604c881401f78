"""
Snapshot Persistence
Swappable backends behind the StateStore interface
"""
from tankwatch.services.storage.state_store import StateStore, JsonFileStateStore
from tankwatch.services.storage.sqlite_store import SqliteStateStore

__all__ = [
    'StateStore',
    'JsonFileStateStore',
    'SqliteStateStore',
]
