"""
Liveness Registry
Owned, injectable store of per-device liveness records and their locks
"""
import asyncio
from typing import Dict, Iterator, List, Optional

from tankwatch.models.liveness import LivenessRecord


class LivenessRegistry:
    """
    Holds the LivenessRecord of every device the monitor has heard from.

    Message handling and the sweep both mutate records; callers hold
    lock(device_id) while doing so. Iteration order is insertion order, which
    keeps sweep order stable.
    """

    def __init__(self):
        self._records: Dict[str, LivenessRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, device_id: str) -> Optional[LivenessRecord]:
        return self._records.get(device_id)

    def ensure(self, device_id: str, device_name: str) -> LivenessRecord:
        record = self._records.get(device_id)
        if record is None:
            record = LivenessRecord(device_id=device_id, device_name=device_name)
            self._records[device_id] = record
        return record

    def lock(self, device_id: str) -> asyncio.Lock:
        lock = self._locks.get(device_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[device_id] = lock
        return lock

    def device_ids(self) -> List[str]:
        return list(self._records)

    def __iter__(self) -> Iterator[LivenessRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)
