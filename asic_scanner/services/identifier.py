"""Miner identification and control over the pyasic device library."""
import asyncio
import logging
import time
import webbrowser
from typing import Any, List, Optional

from pyasic import get_miner
from pyasic.errors import APIError

from asic_scanner.models.device import Command, DeviceSnapshot
from asic_scanner.models.errors import (
    CommandError,
    CommandErrorKind,
    IdentifyError,
    IdentifyErrorKind,
)

logger = logging.getLogger(__name__)


def normalize_mac(mac: Optional[str]) -> Optional[str]:
    """Normalize a MAC address to upper-case colon form, None if unusable."""
    if not mac:
        return None
    digits = "".join(ch for ch in str(mac) if ch.isalnum()).upper()
    if len(digits) != 12 or digits == "0" * 12:
        return None
    return ":".join(digits[i:i + 2] for i in range(0, 12, 2))


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _floats(values) -> List[float]:
    return [v for v in (_as_float(x) for x in values or []) if v is not None]


def _text(value: Any) -> str:
    if value is None or value == "":
        return "N/A"
    return str(value)


def snapshot_from_data(address: str, data: Any, timestamp: Optional[float] = None) -> DeviceSnapshot:
    """Convert a pyasic MinerData object into a DeviceSnapshot."""
    boards = getattr(data, "hashboards", None) or []
    pools = []
    for pool in getattr(data, "pools", None) or []:
        url = getattr(pool, "url", None)
        if url:
            pools.append(str(url))

    return DeviceSnapshot(
        address=address,
        timestamp=timestamp if timestamp is not None else time.time(),
        mac=normalize_mac(getattr(data, "mac", None)),
        model=_text(getattr(data, "model", None)),
        make=_text(getattr(data, "make", None)),
        firmware_version=_text(getattr(data, "fw_ver", None)),
        hostname=_text(getattr(data, "hostname", None)),
        pools=pools,
        hashrate_ths=_as_float(getattr(data, "hashrate", None)),
        board_hashrates_ths=[_as_float(getattr(b, "hashrate", None)) or 0.0 for b in boards],
        temperature_avg_c=_as_float(getattr(data, "temperature_avg", None)),
        board_temperatures_c=[_as_float(getattr(b, "temp", None)) or 0.0 for b in boards],
        wattage_w=_as_float(getattr(data, "wattage", None)),
        fan_speeds_rpm=_floats(getattr(f, "speed", None) for f in getattr(data, "fans", None) or []),
        fault_light=bool(getattr(data, "fault_light", False)),
        is_mining=getattr(data, "is_mining", None),
    )


class DeviceIdentifier:
    """
    Identify miners and send them control commands.

    Every call runs its own event loop with asyncio.run(), so it is safe to
    call from any worker thread.

    Retry policy: ``retries`` is the number of additional attempts made
    after the first one, so retries=2 allows three attempts in total. Only
    transient failures (timeout, connection refused/reset) are retried.
    """

    def __init__(self, command_timeout: float = 10.0):
        self.command_timeout = command_timeout

    def identify(self, address: str, timeout: float, retries: int = 0) -> DeviceSnapshot:
        attempts = max(0, retries) + 1
        last_error = None
        for attempt in range(1, attempts + 1):
            try:
                return self._attempt(address, timeout)
            except IdentifyError as e:
                last_error = e
                if not e.transient:
                    raise
                if attempt < attempts:
                    logger.debug("Attempt %d/%d for %s failed (%s), retrying",
                                 attempt, attempts, address, e.kind.value)
        raise last_error

    def _attempt(self, address: str, timeout: float) -> DeviceSnapshot:
        """Single identification attempt."""
        try:
            return asyncio.run(asyncio.wait_for(self._fetch(address), timeout))
        except (asyncio.TimeoutError, TimeoutError):
            raise IdentifyError(IdentifyErrorKind.TIMEOUT, address) from None
        except (ConnectionRefusedError, ConnectionResetError) as e:
            raise IdentifyError(IdentifyErrorKind.CONNECTION_REFUSED, address, str(e)) from e
        except OSError as e:
            raise IdentifyError(IdentifyErrorKind.CONNECTION_REFUSED, address, str(e)) from e
        except APIError as e:
            raise IdentifyError(IdentifyErrorKind.PROTOCOL_MISMATCH, address, str(e)) from e

    async def _fetch(self, address: str) -> DeviceSnapshot:
        miner = await get_miner(address)
        # pyasic swallows connect errors and timeouts and returns None
        if miner is None:
            raise IdentifyError(IdentifyErrorKind.TIMEOUT, address, "no miner answered")
        if type(miner).__name__ == "UnknownMiner":
            raise IdentifyError(IdentifyErrorKind.PROTOCOL_MISMATCH, address, "not a supported miner")
        data = await miner.get_data()
        return snapshot_from_data(address, data)

    def send_command(self, address: str, command: Command) -> None:
        """
        Apply a control command. Never retried, start/stop changes device state.

        Raises:
            CommandError: the device is unreachable, does not support the
                command, or refused it.
        """
        try:
            ok = asyncio.run(asyncio.wait_for(self._send(address, command), self.command_timeout))
        except CommandError:
            raise
        except (asyncio.TimeoutError, TimeoutError, OSError) as e:
            raise CommandError(CommandErrorKind.UNREACHABLE, address, str(e) or "timed out") from e
        except (NotImplementedError, AttributeError) as e:
            raise CommandError(CommandErrorKind.UNSUPPORTED, address, str(e)) from e
        except APIError as e:
            raise CommandError(CommandErrorKind.REJECTED, address, str(e)) from e

        if not ok:
            raise CommandError(CommandErrorKind.REJECTED, address, f"{command.value} not accepted")
        logger.info("✓ %s applied to %s", command.value, address)

    async def _send(self, address: str, command: Command) -> bool:
        miner = await get_miner(address)
        if miner is None:
            raise CommandError(CommandErrorKind.UNREACHABLE, address, "no miner answered")
        if command is Command.START:
            return await miner.resume_mining()
        if command is Command.STOP:
            return await miner.stop_mining()
        if command is Command.TOGGLE_FAULT_LIGHT:
            if await miner.get_fault_light():
                return await miner.fault_light_off()
            return await miner.fault_light_on()
        raise CommandError(CommandErrorKind.UNSUPPORTED, address, f"unknown command {command}")

    def open_web_interface(self, address: str) -> None:
        """Open the miner's web UI in the default browser."""
        url = f"http://{address}"
        if not webbrowser.open(url):
            logger.warning("No browser available to open %s", url)
