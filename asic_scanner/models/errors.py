"""Exceptions raised by the scanner core."""
from enum import Enum
from typing import Optional


class ScannerError(Exception):
    """Base class for scanner errors."""


class InvalidRange(ScannerError, ValueError):
    """Malformed address range, rejected before any network activity."""


class SweepInProgress(ScannerError):
    """A sweep is already running on this coordinator."""


class IdentifyErrorKind(Enum):
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    PROTOCOL_MISMATCH = "protocol_mismatch"

    @property
    def transient(self) -> bool:
        return self is not IdentifyErrorKind.PROTOCOL_MISMATCH


class IdentifyError(ScannerError):
    """Identification of a single address failed."""

    def __init__(self, kind: IdentifyErrorKind, address: str, detail: Optional[str] = None):
        self.kind = kind
        self.address = address
        self.detail = detail
        message = f"{kind.value} identifying {address}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    @property
    def transient(self) -> bool:
        return self.kind.transient


class CommandErrorKind(Enum):
    UNREACHABLE = "unreachable"
    UNSUPPORTED = "unsupported"
    REJECTED = "rejected"


class CommandError(ScannerError):
    """A control command could not be applied."""

    def __init__(self, kind: CommandErrorKind, address: str, detail: Optional[str] = None):
        self.kind = kind
        self.address = address
        self.detail = detail
        message = f"{kind.value} sending command to {address}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
