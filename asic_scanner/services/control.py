"""Start/stop/fault-light commands for known devices."""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable

from asic_scanner.models.device import Command
from asic_scanner.models.errors import CommandError, IdentifyError

logger = logging.getLogger(__name__)


class DeviceController:
    """
    Sends commands to devices in the registry.

    Commands change device state, so a failure is reported to the caller
    and never retried. After a command is accepted the device is
    re-identified once so the registry reflects the new state; a failed
    refresh is only logged.
    """

    def __init__(self, identifier, registry, refresh_timeout: float = 5.0, max_workers: int = 16):
        self.identifier = identifier
        self.registry = registry
        self.refresh_timeout = refresh_timeout
        self.max_workers = max_workers

    def send(self, identity: str, command: Command):
        """
        Raises:
            KeyError: unknown identity.
            CommandError: the device did not apply the command.
        """
        record = self.registry.get(identity)
        if record is None:
            raise KeyError(identity)
        logger.info("Sending %s to %s", command.value, record.address)
        self.identifier.send_command(record.address, command)
        self._refresh(record.address)

    def _refresh(self, address: str):
        try:
            snapshot = self.identifier.identify(address, self.refresh_timeout, 0)
        except IdentifyError as e:
            logger.warning("Could not refresh %s after command: %s", address, e)
            return
        self.registry.record_snapshot(snapshot)

    def send_many(self, identities: Iterable[str], command: Command) -> Dict[str, dict]:
        """Send one command to several devices in parallel; per-device outcome."""
        identities = list(dict.fromkeys(identities))
        results: Dict[str, dict] = {}
        if not identities:
            return results

        def run(identity):
            try:
                self.send(identity, command)
                return identity, {"ok": True}
            except KeyError:
                return identity, {"ok": False, "error": "unknown device"}
            except CommandError as e:
                logger.error("✗ %s", e)
                return identity, {"ok": False, "error": str(e), "kind": e.kind.value}

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(identities))) as pool:
            for identity, outcome in pool.map(run, identities):
                results[identity] = outcome
        return results

    def open_web_interface(self, identity: str):
        record = self.registry.get(identity)
        if record is None:
            raise KeyError(identity)
        self.identifier.open_web_interface(record.address)
