"""Device models for network discovery and live telemetry."""
import ipaddress
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import FrozenSet, Iterator, List, Optional


class ProbeResult(Enum):
    """Outcome of a reachability probe."""
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"
    TIMED_OUT = "timed_out"


class AddressState(Enum):
    """Per-address state during a sweep."""
    PENDING = "pending"
    PROBING = "probing"
    PROBED_REACHABLE = "probed_reachable"
    PROBED_UNREACHABLE = "probed_unreachable"
    IDENTIFYING = "identifying"
    IDENTIFIED = "identified"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (AddressState.PROBED_UNREACHABLE,
                        AddressState.IDENTIFIED,
                        AddressState.FAILED)


class SweepState(Enum):
    """Lifecycle of a sweep."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Command(Enum):
    """Control commands accepted by a miner."""
    START = "start"
    STOP = "stop"
    TOGGLE_FAULT_LIGHT = "toggle_fault_light"


@dataclass(frozen=True)
class AddressRange:
    """
    Inclusive IPv4 range.

    Iterating yields every address from start to end in ascending order.
    Each call to iter() starts over, so a range can be walked any number
    of times.
    """
    start: ipaddress.IPv4Address
    end: ipaddress.IPv4Address

    def __iter__(self) -> Iterator[str]:
        first, last = int(self.start), int(self.end)
        for value in range(first, last + 1):
            yield str(ipaddress.IPv4Address(value))

    def __len__(self) -> int:
        return int(self.end) - int(self.start) + 1

    def __contains__(self, address) -> bool:
        try:
            value = int(ipaddress.IPv4Address(address))
        except ValueError:
            return False
        return int(self.start) <= value <= int(self.end)

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class SweepOptions:
    """Per-sweep tuning."""
    identification_timeout: float = 5.0
    connectivity_retries: int = 2  # additional attempts after the first
    port_check_enabled: bool = True
    probe_timeout: float = 5.0
    probe_port: int = 4028


@dataclass(frozen=True)
class ScanProgress:
    """Immutable view of a sweep's progress."""
    total: int = 0
    completed: int = 0
    found: int = 0
    in_flight: FrozenSet[str] = frozenset()
    state: SweepState = SweepState.IDLE
    elapsed_seconds: float = 0.0

    @property
    def scanning(self) -> bool:
        return self.state == SweepState.RUNNING

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "completed": self.completed,
            "found": self.found,
            "in_flight": sorted(self.in_flight, key=ipaddress.IPv4Address),
            "state": self.state.value,
            "scanning": self.scanning,
            "elapsed_seconds": round(self.elapsed_seconds, 1),
        }


@dataclass(frozen=True)
class DeviceSnapshot:
    """Telemetry returned by one successful identification."""
    address: str
    timestamp: float
    mac: Optional[str] = None
    model: str = "N/A"
    make: str = "N/A"
    firmware_version: str = "N/A"
    hostname: str = "N/A"
    pools: List[str] = field(default_factory=list)
    hashrate_ths: Optional[float] = None
    board_hashrates_ths: List[float] = field(default_factory=list)
    temperature_avg_c: Optional[float] = None
    board_temperatures_c: List[float] = field(default_factory=list)
    wattage_w: Optional[float] = None
    fan_speeds_rpm: List[float] = field(default_factory=list)
    fault_light: bool = False
    is_mining: Optional[bool] = None

    @property
    def identity(self) -> str:
        return self.mac or self.address

    @property
    def efficiency_w_per_th(self) -> Optional[float]:
        if self.wattage_w is None or not self.hashrate_ths:
            return None
        return self.wattage_w / self.hashrate_ths


@dataclass(frozen=True)
class MetricsPoint:
    """One entry of a device's metrics history."""
    timestamp: float
    hashrate_ths: Optional[float]
    wattage_w: Optional[float]
    board_hashrates_ths: List[float]
    temperature_avg_c: Optional[float]
    board_temperatures_c: List[float]

    @classmethod
    def from_snapshot(cls, snapshot: DeviceSnapshot) -> "MetricsPoint":
        return cls(
            timestamp=snapshot.timestamp,
            hashrate_ths=snapshot.hashrate_ths,
            wattage_w=snapshot.wattage_w,
            board_hashrates_ths=list(snapshot.board_hashrates_ths),
            temperature_avg_c=snapshot.temperature_avg_c,
            board_temperatures_c=list(snapshot.board_temperatures_c),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DeviceRecord:
    """
    Last known state of a device.

    Records are never modified in place. The registry swaps in a new
    record on every accepted update, so a reader holding a reference
    always sees one consistent set of fields.
    """
    identity: str
    snapshot: DeviceSnapshot
    last_updated: float

    @classmethod
    def from_snapshot(cls, snapshot: DeviceSnapshot) -> "DeviceRecord":
        return cls(identity=snapshot.identity,
                   snapshot=snapshot,
                   last_updated=snapshot.timestamp)

    def __getattr__(self, name):
        # Telemetry fields are read straight off the snapshot
        if name == "snapshot":
            raise AttributeError(name)
        return getattr(self.snapshot, name)

    def with_snapshot(self, snapshot: DeviceSnapshot) -> "DeviceRecord":
        return replace(self, snapshot=snapshot, last_updated=snapshot.timestamp)

    def to_dict(self) -> dict:
        data = asdict(self.snapshot)
        data["identity"] = self.identity
        data["last_updated"] = self.last_updated
        data["efficiency_w_per_th"] = self.snapshot.efficiency_w_per_th
        return data
