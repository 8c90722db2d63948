"""Pytest configuration and fixtures for asic-miner-scanner tests."""
import itertools
import threading
import time

import pytest

from asic_scanner.config.settings import Settings
from asic_scanner.models.device import DeviceSnapshot, ProbeResult
from asic_scanner.services.registry import LiveDeviceRegistry

_clock = itertools.count(1)


def make_snapshot(address="10.0.81.1", mac="AA:BB:CC:00:00:01", timestamp=None, **fields):
    """Snapshot with sensible telemetry; timestamps increase on every call."""
    values = dict(
        model="S19j Pro",
        make="AntMiner",
        firmware_version="2023.01.01",
        hostname="miner-1",
        pools=["stratum+tcp://pool.example:3333"],
        hashrate_ths=100.0,
        board_hashrates_ths=[33.0, 33.5, 33.5],
        temperature_avg_c=65.0,
        board_temperatures_c=[64.0, 65.0, 66.0],
        wattage_w=3000.0,
        fan_speeds_rpm=[5400.0, 5460.0, 5500.0, 5520.0],
        fault_light=False,
        is_mining=True,
    )
    values.update(fields)
    if timestamp is None:
        timestamp = 1_700_000_000 + next(_clock)
    return DeviceSnapshot(address=address, mac=mac, timestamp=timestamp, **values)


def wait_until(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeIdentifier:
    """
    Stands in for the pyasic-backed identifier.

    ``responses`` maps address -> outcome or list of outcomes consumed one
    per call. An outcome is a DeviceSnapshot, an exception to raise, or a
    callable returning a snapshot. Unknown addresses use ``default``.
    """

    def __init__(self, responses=None, default=None, gate=None, delay=0.0):
        self.responses = {k: list(v) if isinstance(v, list) else v
                          for k, v in (responses or {}).items()}
        self.default = default
        self.gate = gate
        self.delay = delay
        self.calls = []
        self.returned = 0
        self.commands = []
        self.command_error = None
        self.opened = []
        self._lock = threading.Lock()

    def _next(self, address):
        with self._lock:
            outcome = self.responses.get(address, self.default)
            if isinstance(outcome, list):
                outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        return outcome

    def identify(self, address, timeout, retries=0):
        with self._lock:
            self.calls.append(address)
        try:
            if self.gate is not None:
                self.gate.wait(5)
            if self.delay:
                time.sleep(self.delay)
            outcome = self._next(address)
            if isinstance(outcome, Exception):
                raise outcome
            if callable(outcome):
                return outcome()
            if outcome is None:
                from asic_scanner.models.errors import IdentifyError, IdentifyErrorKind
                raise IdentifyError(IdentifyErrorKind.TIMEOUT, address)
            return outcome
        finally:
            with self._lock:
                self.returned += 1

    def send_command(self, address, command):
        if self.command_error is not None:
            raise self.command_error
        self.commands.append((address, command))

    def open_web_interface(self, address):
        self.opened.append(address)


class FakeProbe:
    def __init__(self, results=None, default=ProbeResult.REACHABLE, port=4028, timeout=5.0):
        self.results = results or {}
        self.default = default
        self.port = port
        self.timeout = timeout
        self.probed = []

    def probe(self, address):
        self.probed.append(address)
        return self.results.get(address, self.default)


@pytest.fixture
def settings(tmp_path):
    s = Settings()
    s.data.data_dir = str(tmp_path / "asic-miner-scanner")
    s.scan.max_workers = 8
    s.concurrency.initial = 4
    s.concurrency.ceiling = 8
    return s


@pytest.fixture
def registry():
    return LiveDeviceRegistry(history_capacity=5)


@pytest.fixture
def snapshot():
    return make_snapshot()
