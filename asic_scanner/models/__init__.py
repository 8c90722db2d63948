"""Data models shared by the scanner services."""
from .device import (
    AddressRange,
    AddressState,
    Command,
    DeviceRecord,
    DeviceSnapshot,
    MetricsPoint,
    ProbeResult,
    ScanProgress,
    SweepOptions,
    SweepState,
)
from .errors import (
    CommandError,
    CommandErrorKind,
    IdentifyError,
    IdentifyErrorKind,
    InvalidRange,
    ScannerError,
    SweepInProgress,
)
