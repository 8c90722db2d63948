"""CSV recordings of device telemetry and fleet export."""
import csv
import logging
import os
import shutil
import threading
import time
from datetime import datetime
from typing import Dict, IO, Iterable, List, Optional

from asic_scanner.models.device import DeviceRecord

logger = logging.getLogger(__name__)

BASE_HEADER = [
    "Miner IP",
    "MAC Address",
    "Model",
    "Firmware",
    "Timestamp",
    "Total Hashrate (TH/s)",
    "Power (W)",
    "Efficiency (W/TH)",
    "Avg Temperature (C)",
]

EXPORT_HEADER = [
    "IP",
    "Identity",
    "Hostname",
    "Model",
    "Firmware",
    "Hashrate (TH/s)",
    "Wattage (W)",
    "Efficiency (W/TH)",
    "Temperature (C)",
    "Fan Speed (RPM)",
    "Pool",
    "Fault Light",
    "Last Updated",
]


def _fmt(value: Optional[float], digits: int) -> str:
    if value is None:
        return ""
    return f"{value:.{digits}f}"


def recording_header(num_boards: int, num_fans: int) -> List[str]:
    header = list(BASE_HEADER)
    header += [f"Board {i} Hashrate" for i in range(num_boards)]
    header += [f"Board {i} Temp" for i in range(num_boards)]
    header += [f"Fan {i} RPM" for i in range(1, num_fans + 1)]
    return header


class Recorder:
    """
    Append-only CSV recording for one device.

    The header is sized from the device's board and fan count when the
    recording starts; later rows are padded or truncated to match.
    """

    def __init__(self, path: str, num_boards: int, num_fans: int):
        self.path = path
        self.num_boards = num_boards
        self.num_fans = num_fans
        self.started_at = time.time()
        self.row_count = 0
        self.is_recording = False
        self._lock = threading.Lock()

    @classmethod
    def start(cls, directory: str, record: DeviceRecord) -> "Recorder":
        """Create the CSV file with its header and begin recording."""
        os.makedirs(directory, exist_ok=True)
        stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        model = record.model.replace(" ", "")
        mac = (record.mac or "unknown").replace(":", "")
        filename = f"recording_{record.address}_{model}_{mac}_{stamp}.csv"

        recorder = cls(os.path.join(directory, filename),
                       num_boards=len(record.board_hashrates_ths),
                       num_fans=len(record.fan_speeds_rpm))
        with open(recorder.path, "w", newline="") as f:
            csv.writer(f).writerow(recording_header(recorder.num_boards, recorder.num_fans))
        recorder.is_recording = True
        logger.info("Recording %s to %s", record.address, recorder.path)
        return recorder

    def _row(self, record: DeviceRecord) -> List[str]:
        def sized(values, size, digits):
            values = list(values)[:size]
            values += [0.0] * (size - len(values))
            return [_fmt(v, digits) for v in values]

        row = [
            record.address,
            record.mac or "N/A",
            record.model,
            record.firmware_version,
            datetime.fromtimestamp(record.last_updated).strftime("%Y-%m-%d %H:%M:%S"),
            _fmt(record.hashrate_ths or 0.0, 2),
            _fmt(record.wattage_w or 0.0, 0),
            _fmt(record.snapshot.efficiency_w_per_th or 0.0, 2),
            _fmt(record.temperature_avg_c or 0.0, 2),
        ]
        row += sized(record.board_hashrates_ths, self.num_boards, 2)
        row += sized(record.board_temperatures_c, self.num_boards, 2)
        row += sized(record.fan_speeds_rpm, self.num_fans, 0)
        return row

    def append(self, record: DeviceRecord) -> bool:
        """Append one row. Does nothing once the recording is stopped."""
        with self._lock:
            if not self.is_recording:
                return False
            with open(self.path, "a", newline="") as f:
                csv.writer(f).writerow(self._row(record))
            self.row_count += 1
            return True

    def stop(self):
        with self._lock:
            self.is_recording = False

    def export(self, destination: str) -> str:
        return shutil.copyfile(self.path, destination)

    def delete(self):
        self.stop()
        os.remove(self.path)

    def status(self) -> dict:
        return {
            "file_path": self.path,
            "row_count": self.row_count,
            "is_recording": self.is_recording,
            "duration_seconds": round(time.time() - self.started_at, 1),
        }


class RecordingManager:
    """Recordings by device identity, wired into the device's poller."""

    def __init__(self, directory: str, registry, pollers, range_store=None):
        self.directory = directory
        self.registry = registry
        self.pollers = pollers
        self.range_store = range_store
        self._lock = threading.Lock()
        self._recorders: Dict[str, Recorder] = {}

    def start(self, identity: str, interval: Optional[float] = None) -> Recorder:
        """
        Start recording a device, attaching a poller if none is running.

        Without an interval the poller uses the saved detail refresh
        interval.

        Raises:
            KeyError: the identity is not in the registry.
        """
        record = self.registry.get(identity)
        if record is None:
            raise KeyError(identity)
        with self._lock:
            recorder = self._recorders.get(identity)
            if recorder is not None and recorder.is_recording:
                return recorder
            recorder = Recorder.start(self.directory, record)
            recorder.append(record)
            self._recorders[identity] = recorder
        if interval is None and self.range_store is not None:
            interval = self.range_store.load()["detail_refresh_interval_secs"]
        poller = self.pollers.attach(identity, interval)
        poller.recorder = recorder
        return recorder

    def stop(self, identity: str) -> Optional[Recorder]:
        with self._lock:
            recorder = self._recorders.get(identity)
        if recorder is None:
            return None
        recorder.stop()
        poller = self.pollers.get(identity)
        if poller is not None and poller.recorder is recorder:
            poller.recorder = None
        logger.info("Stopped recording %s (%d rows)", identity, recorder.row_count)
        return recorder

    def get(self, identity: str) -> Optional[Recorder]:
        with self._lock:
            return self._recorders.get(identity)

    def export(self, identity: str, destination: str) -> Optional[str]:
        """Copy a device's recording to destination. None if it has none."""
        recorder = self.get(identity)
        if recorder is None:
            return None
        return recorder.export(destination)

    def delete(self, identity: str) -> bool:
        """Stop a device's recording and remove its file."""
        with self._lock:
            recorder = self._recorders.pop(identity, None)
        if recorder is None:
            return False
        poller = self.pollers.get(identity)
        if poller is not None and poller.recorder is recorder:
            poller.recorder = None
        try:
            recorder.delete()
        except FileNotFoundError:
            logger.warning("Recording %s was already gone", recorder.path)
        logger.info("Deleted recording of %s", identity)
        return True

    def file_path(self, name: str) -> Optional[str]:
        """Path of a recording file in the directory, None if there is no such file."""
        if os.path.basename(name) != name or not name.endswith(".csv"):
            return None
        path = os.path.join(self.directory, name)
        return path if os.path.isfile(path) else None

    def list_files(self) -> List[dict]:
        if not os.path.isdir(self.directory):
            return []
        files = []
        for name in sorted(os.listdir(self.directory)):
            if not name.endswith(".csv"):
                continue
            path = os.path.join(self.directory, name)
            stat = os.stat(path)
            files.append({"name": name, "size": stat.st_size, "modified": stat.st_mtime})
        return files

    def stop_all(self):
        with self._lock:
            identities = list(self._recorders)
        for identity in identities:
            self.stop(identity)


def export_devices_csv(records: Iterable[DeviceRecord], out: IO[str]) -> int:
    """Write the device table as CSV. Returns the number of rows."""
    writer = csv.writer(out)
    writer.writerow(EXPORT_HEADER)
    count = 0
    for record in sorted(records, key=lambda r: tuple(int(p) for p in r.address.split("."))):
        writer.writerow([
            record.address,
            record.identity,
            record.hostname,
            record.model,
            record.firmware_version,
            _fmt(record.hashrate_ths, 2),
            _fmt(record.wattage_w, 0),
            _fmt(record.snapshot.efficiency_w_per_th, 1),
            _fmt(record.temperature_avg_c, 1),
            _fmt(record.fan_speeds_rpm[0], 0) if record.fan_speeds_rpm else "",
            record.pools[0] if record.pools else "N/A",
            "on" if record.fault_light else "off",
            datetime.fromtimestamp(record.last_updated).isoformat(timespec="seconds"),
        ])
        count += 1
    return count
