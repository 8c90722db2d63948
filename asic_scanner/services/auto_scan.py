"""Periodic sweep of the saved ranges."""
import logging
import threading
import time
from typing import Optional

from asic_scanner.models.errors import ScannerError

logger = logging.getLogger(__name__)


class AutoScanService:
    """
    Sweeps every saved range on a fixed interval.

    A tick is skipped when a sweep is already running or no ranges are
    saved.
    """

    def __init__(self, coordinator, range_store, interval: int = 120):
        self.coordinator = coordinator
        self.range_store = range_store
        self.interval = interval
        self.last_scan_time: Optional[float] = None

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start background scanning thread."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._scan_loop, name="auto-scan", daemon=True)
        self._thread.start()
        logger.info("Started auto-scan every %ss", self.interval)

    def stop(self):
        """Stop background scanning."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Stopped auto-scan")

    def _scan_loop(self):
        # first sweep runs immediately on startup
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.interval)

    def tick(self):
        """Start a sweep of all saved ranges if none is running. Returns the handle or None."""
        if self.coordinator.scanning:
            logger.debug("Sweep already running, skipping auto-scan")
            return None
        ranges = self.range_store.address_ranges()
        if not ranges:
            logger.debug("No saved ranges to scan")
            return None
        try:
            handle = self.coordinator.start_sweep(ranges)
        except ScannerError as e:
            logger.warning("Auto-scan could not start: %s", e)
            return None
        self.last_scan_time = time.time()
        return handle

    def status(self) -> dict:
        return {
            "enabled": self.running,
            "interval": self.interval,
            "last_scan_time": self.last_scan_time,
        }
