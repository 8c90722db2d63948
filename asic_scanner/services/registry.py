"""Thread-safe store of the last known state of every device."""
import logging
import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from asic_scanner.models.device import DeviceRecord, DeviceSnapshot, MetricsPoint

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_CAPACITY = 288  # 24 hours at 5-min intervals


class LiveDeviceRegistry:
    """
    Mapping of identity key to DeviceRecord plus a bounded metrics history.

    Shared by sweeps, pollers and readers. One lock guards the maps and is
    held only while a single record or history entry changes. Records are
    immutable and swapped whole, so readers never see a half-applied update.

    Updates are last-writer-wins by timestamp: a snapshot not newer than the
    stored record is dropped, which keeps a late poll response from
    overwriting fresher data.
    """

    def __init__(self, history_capacity: int = DEFAULT_HISTORY_CAPACITY):
        self.history_capacity = history_capacity
        self._lock = threading.Lock()
        self._records: Dict[str, DeviceRecord] = {}
        self._history: Dict[str, Deque[MetricsPoint]] = {}

    def upsert(self, snapshot: DeviceSnapshot) -> bool:
        """
        Create or replace the record for the snapshot's identity.

        Returns:
            True if the registry changed, False for a stale snapshot.
        """
        identity = snapshot.identity
        with self._lock:
            current = self._records.get(identity)
            if current is not None and snapshot.timestamp <= current.last_updated:
                logger.debug("Dropped stale update for %s (%.3f <= %.3f)",
                             identity, snapshot.timestamp, current.last_updated)
                return False
            if current is None:
                self._records[identity] = DeviceRecord.from_snapshot(snapshot)
            else:
                self._records[identity] = current.with_snapshot(snapshot)
        if current is None:
            logger.info("New device %s at %s (%s)", identity, snapshot.address, snapshot.model)
        return True

    def get(self, identity: str) -> Optional[DeviceRecord]:
        with self._lock:
            return self._records.get(identity)

    def find_by_address(self, address: str) -> Optional[DeviceRecord]:
        """Most recently updated record last seen at the given address."""
        with self._lock:
            matches = [r for r in self._records.values() if r.address == address]
        if not matches:
            return None
        return max(matches, key=lambda r: r.last_updated)

    def list(self) -> List[DeviceRecord]:
        with self._lock:
            return list(self._records.values())

    def append_history(self, identity: str, point: MetricsPoint):
        """Add a metrics point, evicting the oldest once capacity is reached."""
        with self._lock:
            history = self._history.get(identity)
            if history is None:
                history = deque(maxlen=self.history_capacity)
                self._history[identity] = history
            history.append(point)

    def history_of(self, identity: str) -> List[MetricsPoint]:
        with self._lock:
            return list(self._history.get(identity, ()))

    def record_snapshot(self, snapshot: DeviceSnapshot) -> bool:
        """Upsert and, if accepted, append the matching history point."""
        if not self.upsert(snapshot):
            return False
        self.append_history(snapshot.identity, MetricsPoint.from_snapshot(snapshot))
        return True

    def remove(self, identity: str) -> bool:
        with self._lock:
            self._history.pop(identity, None)
            return self._records.pop(identity, None) is not None

    def clear(self):
        with self._lock:
            self._records.clear()
            self._history.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, identity) -> bool:
        with self._lock:
            return identity in self._records
