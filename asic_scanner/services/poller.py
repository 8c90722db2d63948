"""Per-device polling loops that keep registry entries fresh."""
import logging
import threading
from typing import Dict, Optional

from asic_scanner.models.device import MetricsPoint
from asic_scanner.models.errors import IdentifyError
from asic_scanner.services.registry import LiveDeviceRegistry

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 10
MIN_INTERVAL = 5
MAX_INTERVAL = 60


def clamp_interval(seconds: float, low: float = MIN_INTERVAL, high: float = MAX_INTERVAL) -> float:
    return max(low, min(high, seconds))


class DevicePoller:
    """
    Background loop re-identifying one known device.

    A successful poll updates the registry, appends history and feeds the
    attached recorder, if any. A failed poll leaves the record as it was
    and bumps ``consecutive_failures``; nothing is removed when a device
    stops answering.
    """

    def __init__(self,
                 identity: str,
                 address: str,
                 identifier,
                 registry: LiveDeviceRegistry,
                 interval: float = DEFAULT_INTERVAL,
                 timeout: float = 5.0,
                 retries: int = 1,
                 recorder=None,
                 min_interval: float = MIN_INTERVAL,
                 max_interval: float = MAX_INTERVAL):
        self.identity = identity
        self.address = address
        self.identifier = identifier
        self.registry = registry
        self.timeout = timeout
        self.retries = retries
        self.recorder = recorder
        self.min_interval = min_interval
        self.max_interval = max_interval
        self.interval = clamp_interval(interval, min_interval, max_interval)

        self.consecutive_failures = 0
        self.total_polls = 0
        self.last_error: Optional[str] = None
        self.last_success: Optional[float] = None

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def set_interval(self, seconds: float):
        """Takes effect after the current wait."""
        self.interval = clamp_interval(seconds, self.min_interval, self.max_interval)

    def start(self):
        """Start polling thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._poll_loop,
                                        name=f"poller-{self.identity}",
                                        daemon=True)
        self._thread.start()
        logger.info("Started polling %s every %ss", self.address, self.interval)

    def stop(self, join_timeout: float = 5.0):
        """Stop polling thread. Safe to call more than once."""
        if self._stop.is_set():
            return
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=join_timeout)
        logger.info("Stopped polling %s", self.address)

    def _poll_loop(self):
        while not self._stop.is_set():
            self.poll_once()
            self._stop.wait(self.interval)

    def poll_once(self) -> bool:
        """Run a single poll. Returns True if the device answered."""
        self.total_polls += 1
        try:
            snapshot = self.identifier.identify(self.address, self.timeout, self.retries)
        except IdentifyError as e:
            self._failed(str(e))
            return False
        except Exception as e:
            logger.exception("Unexpected error polling %s", self.address)
            self._failed(str(e))
            return False

        if self._stop.is_set():
            return False

        if snapshot.identity != self.identity:
            logger.warning("%s now answers as %s (expected %s)",
                           self.address, snapshot.identity, self.identity)

        self.consecutive_failures = 0
        self.last_error = None
        self.last_success = snapshot.timestamp

        if self.registry.upsert(snapshot):
            self.registry.append_history(snapshot.identity, MetricsPoint.from_snapshot(snapshot))
            if self.recorder is not None:
                self._record(snapshot)
        return True

    def _record(self, snapshot):
        record = self.registry.get(snapshot.identity)
        if record is None:
            return
        try:
            self.recorder.append(record)
        except OSError as e:
            logger.error("Recording error for %s: %s", self.address, e)

    def _failed(self, error: str):
        self.consecutive_failures += 1
        self.last_error = error
        if self.consecutive_failures == 1:
            logger.warning("✗ Lost contact with %s: %s", self.address, error)
        else:
            logger.debug("Poll of %s failed %d times in a row: %s",
                         self.address, self.consecutive_failures, error)

    def status(self) -> dict:
        return {
            "identity": self.identity,
            "address": self.address,
            "interval": self.interval,
            "running": self.running,
            "consecutive_failures": self.consecutive_failures,
            "total_polls": self.total_polls,
            "last_error": self.last_error,
            "last_success": self.last_success,
            "recording": self.recorder is not None,
        }


class PollerManager:
    """Owns the pollers attached to known devices."""

    def __init__(self, identifier, registry: LiveDeviceRegistry, polling_config=None):
        self.identifier = identifier
        self.registry = registry
        self.config = polling_config
        self._lock = threading.Lock()
        self._pollers: Dict[str, DevicePoller] = {}

    def _option(self, name: str, default):
        return getattr(self.config, name, default) if self.config is not None else default

    def attach(self, identity: str, interval: Optional[float] = None) -> DevicePoller:
        """
        Start polling a device already in the registry.

        Attaching to a device that already has a running poller only
        updates its interval.

        Raises:
            KeyError: the identity is not in the registry.
        """
        record = self.registry.get(identity)
        if record is None:
            raise KeyError(identity)
        if interval is None:
            interval = self._option("interval", DEFAULT_INTERVAL)

        with self._lock:
            poller = self._pollers.get(identity)
            if poller is not None and poller.running:
                poller.set_interval(interval)
                return poller
            poller = DevicePoller(identity=identity,
                                  address=record.address,
                                  identifier=self.identifier,
                                  registry=self.registry,
                                  interval=interval,
                                  timeout=self._option("identification_timeout", 5.0),
                                  retries=self._option("retries", 1),
                                  min_interval=self._option("min_interval", MIN_INTERVAL),
                                  max_interval=self._option("max_interval", MAX_INTERVAL))
            self._pollers[identity] = poller
        poller.start()
        return poller

    def detach(self, identity: str) -> bool:
        with self._lock:
            poller = self._pollers.pop(identity, None)
        if poller is None:
            return False
        poller.stop()
        return True

    def get(self, identity: str) -> Optional[DevicePoller]:
        with self._lock:
            return self._pollers.get(identity)

    def all(self) -> Dict[str, DevicePoller]:
        with self._lock:
            return dict(self._pollers)

    def stop_all(self):
        with self._lock:
            pollers = list(self._pollers.values())
            self._pollers.clear()
        for poller in pollers:
            poller.stop()
