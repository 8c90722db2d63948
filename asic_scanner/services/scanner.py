"""Concurrent sweep of address ranges for mining devices."""
import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Union

from asic_scanner.config.settings import Settings
from asic_scanner.models.device import (
    AddressRange,
    AddressState,
    DeviceRecord,
    DeviceSnapshot,
    ProbeResult,
    ScanProgress,
    SweepOptions,
    SweepState,
)
from asic_scanner.models.errors import IdentifyError, InvalidRange, SweepInProgress
from asic_scanner.services.address_range import count_addresses, expand_ranges, parse_range
from asic_scanner.services.concurrency import AdaptiveConcurrencyController
from asic_scanner.services.probe import ReachabilityProbe
from asic_scanner.services.registry import LiveDeviceRegistry

logger = logging.getLogger(__name__)

# How often blocked waits re-check for cancellation
_WAIT_SLICE = 0.1


class ProgressEvent(NamedTuple):
    progress: ScanProgress


class ResultEvent(NamedTuple):
    record: DeviceRecord


class SweepFinished(NamedTuple):
    progress: ScanProgress


class SweepHandle:
    """
    One running sweep.

    Progress is changed only by the sweep itself; observers either call
    progress() for an immutable snapshot or drain events(), which carries
    a ProgressEvent after every resolved address, a ResultEvent for every
    identified device (in completion order, not address order) and a final
    SweepFinished.

    cancel() stops dispatching immediately and freezes progress. Attempts
    already running are left to finish or time out on their own; their
    outcomes are discarded.
    """

    def __init__(self,
                 ranges: List[AddressRange],
                 options: SweepOptions,
                 identifier,
                 registry: LiveDeviceRegistry,
                 controller: AdaptiveConcurrencyController,
                 probe: ReachabilityProbe,
                 max_workers: int = 64):
        self.ranges = ranges
        self.options = options
        self.identifier = identifier
        self.registry = registry
        self.controller = controller
        self.probe = probe
        self.max_workers = max_workers

        self._lock = threading.Lock()
        self._total = count_addresses(ranges)
        self._completed = 0
        self._found = 0
        self._in_flight = set()
        self._states: Dict[str, AddressState] = {}
        self._state = SweepState.IDLE
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None

        self._cancelled = threading.Event()
        self._done = threading.Event()
        self._events: "queue.Queue" = queue.Queue()
        self._slots = threading.BoundedSemaphore(max_workers)
        self._thread: Optional[threading.Thread] = None

    # --- observers ---

    @property
    def state(self) -> SweepState:
        with self._lock:
            return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def progress(self) -> ScanProgress:
        with self._lock:
            return self._progress_locked()

    def address_state(self, address: str) -> AddressState:
        with self._lock:
            return self._states.get(address, AddressState.PENDING)

    def events(self) -> Iterator[Union[ProgressEvent, ResultEvent, SweepFinished]]:
        """Drain the event channel. Ends after SweepFinished; single consumer."""
        while True:
            event = self._events.get()
            yield event
            if isinstance(event, SweepFinished):
                return

    def results(self) -> Iterator[DeviceRecord]:
        """Identified devices as they resolve. Ends when the sweep ends."""
        for event in self.events():
            if isinstance(event, ResultEvent):
                yield event.record

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the sweep completes or is cancelled."""
        return self._done.wait(timeout)

    def cancel(self) -> bool:
        """Request cancellation. Returns False if the sweep already ended."""
        with self._lock:
            if self._state is not SweepState.RUNNING:
                return False
            self._cancelled.set()
            self._state = SweepState.CANCELLED
            self._finished_at = time.monotonic()
            progress = self._progress_locked()
            self._events.put(SweepFinished(progress))
        self._done.set()
        logger.info("Sweep cancelled at %d/%d (%d found)",
                    progress.completed, progress.total, progress.found)
        return True

    # --- internals ---

    def _progress_locked(self) -> ScanProgress:
        if self._started_at is None:
            elapsed = 0.0
        else:
            elapsed = (self._finished_at or time.monotonic()) - self._started_at
        return ScanProgress(total=self._total,
                            completed=self._completed,
                            found=self._found,
                            in_flight=frozenset(self._in_flight),
                            state=self._state,
                            elapsed_seconds=elapsed)

    def _start(self):
        with self._lock:
            self._state = SweepState.RUNNING
            self._started_at = time.monotonic()
            self._events.put(ProgressEvent(self._progress_locked()))
        logger.info("Starting sweep of %s (%d addresses)",
                    ", ".join(str(r) for r in self.ranges), self._total)
        self._thread = threading.Thread(target=self._dispatch, name="sweep-dispatch", daemon=True)
        self._thread.start()

    def _dispatch(self):
        self.controller.reset()
        self.controller.start()
        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="sweep")
        try:
            for address in expand_ranges(self.ranges):
                if not self._take_slot():
                    break
                with self._lock:
                    if self._cancelled.is_set():
                        self._slots.release()
                        break
                    self._states[address] = AddressState.PENDING
                    self._in_flight.add(address)
                executor.submit(self._resolve, address)
            self._done.wait()
        finally:
            executor.shutdown(wait=False)
            self.controller.stop()

    def _take_slot(self) -> bool:
        while not self._cancelled.is_set():
            if self._slots.acquire(timeout=_WAIT_SLICE):
                return True
        return False

    def _set_state(self, address: str, state: AddressState):
        with self._lock:
            if not self._cancelled.is_set():
                self._states[address] = state

    def _resolve(self, address: str):
        try:
            outcome, snapshot = self._scan_address(address)
        except Exception:
            logger.exception("Unexpected error scanning %s", address)
            outcome, snapshot = AddressState.FAILED, None
        finally:
            self._slots.release()
        if outcome is not None:
            self._finish(address, outcome, snapshot)

    def _scan_address(self, address: str):
        """Run one address through probe and identification. (None, None) if abandoned."""
        if self.options.port_check_enabled:
            self._set_state(address, AddressState.PROBING)
            result = self.probe.probe(address)
            if result is not ProbeResult.REACHABLE:
                logger.debug("%s %s", address, result.value)
                return AddressState.PROBED_UNREACHABLE, None
            self._set_state(address, AddressState.PROBED_REACHABLE)

        while not self.controller.acquire(timeout=_WAIT_SLICE):
            if self._cancelled.is_set():
                return None, None
        if self._cancelled.is_set():
            self.controller.release()
            return None, None

        self._set_state(address, AddressState.IDENTIFYING)
        started = time.monotonic()
        ok = False
        try:
            snapshot = self.identifier.identify(address,
                                                self.options.identification_timeout,
                                                self.options.connectivity_retries)
            ok = True
            return AddressState.IDENTIFIED, snapshot
        except IdentifyError as e:
            # A device that answered with the wrong protocol is not a sign of congestion
            ok = not e.transient
            logger.debug("Identification failed for %s: %s", address, e)
            return AddressState.FAILED, None
        finally:
            self.controller.release(time.monotonic() - started, ok)

    def _finish(self, address: str, outcome: AddressState, snapshot: Optional[DeviceSnapshot]):
        with self._lock:
            if self._cancelled.is_set():
                return
            self._states[address] = outcome
            self._in_flight.discard(address)
            self._completed += 1
            if snapshot is not None:
                self._found += 1
                if not self.registry.record_snapshot(snapshot):
                    logger.debug("%s already has a newer record, keeping it", address)
                # a poller may have stored a newer reading; report what the registry holds
                record = self.registry.get(snapshot.identity) or DeviceRecord.from_snapshot(snapshot)
                self._events.put(ResultEvent(record))
                logger.info("✓ %s = %s %s", address, snapshot.make, snapshot.model)
            finished = self._completed >= self._total
            if finished:
                self._state = SweepState.COMPLETED
                self._finished_at = time.monotonic()
            progress = self._progress_locked()
            self._events.put(ProgressEvent(progress))
            if finished:
                self._events.put(SweepFinished(progress))
        if finished:
            self._done.set()
            logger.info("Sweep complete: %d addresses, %d devices in %.1fs",
                        progress.total, progress.found, progress.elapsed_seconds)


class ScanCoordinator:
    """Starts sweeps and merges their results into the registry."""

    def __init__(self,
                 identifier,
                 registry: LiveDeviceRegistry,
                 settings: Optional[Settings] = None,
                 probe_factory: Callable[..., ReachabilityProbe] = ReachabilityProbe,
                 controller_factory: Optional[Callable[[], AdaptiveConcurrencyController]] = None):
        self.identifier = identifier
        self.registry = registry
        self.settings = settings or Settings()
        self.probe_factory = probe_factory
        self.controller_factory = controller_factory or (
            lambda: AdaptiveConcurrencyController.from_config(self.settings.concurrency))
        self._lock = threading.Lock()
        self._current: Optional[SweepHandle] = None

    def default_options(self, **overrides) -> SweepOptions:
        scan = self.settings.scan
        values = dict(identification_timeout=scan.identification_timeout,
                      connectivity_retries=scan.connectivity_retries,
                      port_check_enabled=scan.port_check,
                      probe_timeout=scan.probe_timeout,
                      probe_port=scan.probe_port)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return SweepOptions(**values)

    def start_sweep(self,
                    ranges: Union[AddressRange, Iterable[AddressRange]],
                    options: Optional[SweepOptions] = None) -> SweepHandle:
        """
        Begin sweeping one or more ranges and return at once.

        Raises:
            InvalidRange: no ranges were given.
            SweepInProgress: a previous sweep is still running.
        """
        if isinstance(ranges, AddressRange):
            ranges = [ranges]
        ranges = list(ranges)
        if not ranges:
            raise InvalidRange("No ranges to scan")
        options = options or self.default_options()

        with self._lock:
            if self._current is not None and self._current.state is SweepState.RUNNING:
                raise SweepInProgress("A sweep is already running")
            handle = SweepHandle(ranges=ranges,
                                 options=options,
                                 identifier=self.identifier,
                                 registry=self.registry,
                                 controller=self.controller_factory(),
                                 probe=self.probe_factory(port=options.probe_port,
                                                          timeout=options.probe_timeout),
                                 max_workers=self.settings.scan.max_workers)
            self._current = handle
            handle._start()
        return handle

    def sweep_range(self, start: str, end: str, options: Optional[SweepOptions] = None) -> SweepHandle:
        """Validate a start/end pair and sweep it."""
        return self.start_sweep(parse_range(start, end), options)

    def current(self) -> Optional[SweepHandle]:
        with self._lock:
            return self._current

    @property
    def scanning(self) -> bool:
        handle = self.current()
        return handle is not None and handle.state is SweepState.RUNNING

    def cancel(self) -> bool:
        handle = self.current()
        return handle.cancel() if handle is not None else False
