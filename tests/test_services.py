"""Tests for fleet stats, device commands and auto-scan."""
import threading

import pytest

from asic_scanner.models.device import Command, DeviceRecord
from asic_scanner.models.errors import CommandError, CommandErrorKind
from asic_scanner.services.auto_scan import AutoScanService
from asic_scanner.services.control import DeviceController
from asic_scanner.services.scanner import ScanCoordinator
from asic_scanner.services.stats import fleet_stats
from asic_scanner.utils.range_store import RangeStore

from conftest import FakeIdentifier, FakeProbe, make_snapshot


class TestFleetStats:
    def test_aggregates(self):
        records = [
            DeviceRecord.from_snapshot(make_snapshot(mac="AA:AA:AA:AA:AA:01", hashrate_ths=100.0,
                                                     wattage_w=3000.0, temperature_avg_c=60.0)),
            DeviceRecord.from_snapshot(make_snapshot(mac="AA:AA:AA:AA:AA:02", hashrate_ths=50.0,
                                                     wattage_w=2000.0, temperature_avg_c=70.0,
                                                     fault_light=True, is_mining=False)),
            DeviceRecord.from_snapshot(make_snapshot(mac="AA:AA:AA:AA:AA:03", hashrate_ths=None,
                                                     wattage_w=None, temperature_avg_c=None)),
        ]
        stats = fleet_stats(records)
        assert stats["miner_count"] == 3
        assert stats["total_hashrate_ths"] == 150.0
        assert stats["avg_hashrate_ths"] == 75.0
        assert stats["avg_temperature_c"] == 65.0
        assert stats["avg_efficiency_w_per_th"] == pytest.approx(35.0)
        assert stats["total_wattage_w"] == 5000.0
        assert stats["mining_count"] == 2
        assert stats["fault_light_count"] == 1

    def test_empty_fleet(self):
        stats = fleet_stats([])
        assert stats["miner_count"] == 0
        assert stats["avg_hashrate_ths"] is None
        assert stats["total_hashrate_ths"] == 0


class TestDeviceController:
    def test_send_refreshes_registry(self, registry, snapshot):
        registry.upsert(snapshot)
        refreshed = make_snapshot(address=snapshot.address, fault_light=True)
        ident = FakeIdentifier(default=refreshed)
        controller = DeviceController(ident, registry)

        controller.send(snapshot.identity, Command.TOGGLE_FAULT_LIGHT)
        assert ident.commands == [(snapshot.address, Command.TOGGLE_FAULT_LIGHT)]
        assert registry.get(snapshot.identity).fault_light is True

    def test_failed_refresh_keeps_record(self, registry, snapshot):
        registry.upsert(snapshot)
        controller = DeviceController(FakeIdentifier(default=None), registry)
        controller.send(snapshot.identity, Command.STOP)
        assert registry.get(snapshot.identity).snapshot is snapshot

    def test_command_error_propagates(self, registry, snapshot):
        registry.upsert(snapshot)
        ident = FakeIdentifier()
        ident.command_error = CommandError(CommandErrorKind.REJECTED, snapshot.address, "no")
        with pytest.raises(CommandError):
            DeviceController(ident, registry).send(snapshot.identity, Command.START)
        assert ident.calls == []

    def test_unknown_device(self, registry):
        with pytest.raises(KeyError):
            DeviceController(FakeIdentifier(), registry).send("nope", Command.START)

    def test_send_many_reports_each_device(self, registry, snapshot):
        registry.upsert(snapshot)
        results = DeviceController(FakeIdentifier(), registry).send_many(
            [snapshot.identity, "nope", snapshot.identity], Command.STOP)
        assert results == {snapshot.identity: {"ok": True},
                           "nope": {"ok": False, "error": "unknown device"}}

    def test_send_many_command_errors(self, registry, snapshot):
        registry.upsert(snapshot)
        ident = FakeIdentifier()
        ident.command_error = CommandError(CommandErrorKind.UNSUPPORTED, snapshot.address, "no")
        results = DeviceController(ident, registry).send_many([snapshot.identity], Command.STOP)
        assert results[snapshot.identity]["kind"] == "unsupported"

    def test_open_web_interface(self, registry, snapshot):
        registry.upsert(snapshot)
        ident = FakeIdentifier()
        DeviceController(ident, registry).open_web_interface(snapshot.identity)
        assert ident.opened == [snapshot.address]


class TestAutoScan:
    def _service(self, tmp_path, registry, settings, identifier=None):
        store = RangeStore(str(tmp_path / "scanner_config.json"))
        coordinator = ScanCoordinator(identifier or FakeIdentifier(), registry, settings,
                                      probe_factory=lambda **kw: FakeProbe())
        return AutoScanService(coordinator, store, interval=120), store

    def test_tick_without_ranges_does_nothing(self, tmp_path, registry, settings):
        service, _ = self._service(tmp_path, registry, settings)
        assert service.tick() is None
        assert service.last_scan_time is None

    def test_tick_sweeps_saved_ranges(self, tmp_path, registry, settings):
        ident = FakeIdentifier({"10.0.0.2": make_snapshot(address="10.0.0.2")})
        service, store = self._service(tmp_path, registry, settings, ident)
        store.add_range("a", "10.0.0.1-3")
        store.add_range("b", "10.0.0.3-4")

        handle = service.tick()
        assert handle.wait(5)
        assert handle.progress().total == 4
        assert registry.find_by_address("10.0.0.2") is not None
        assert service.last_scan_time is not None

    def test_tick_skipped_while_scanning(self, tmp_path, registry, settings):
        gate = threading.Event()
        service, store = self._service(tmp_path, registry, settings, FakeIdentifier(gate=gate))
        store.add_range("a", "10.0.0.1-2")
        first = service.tick()
        try:
            assert service.tick() is None
        finally:
            gate.set()
        assert first.wait(5)

    def test_start_and_stop(self, tmp_path, registry, settings):
        service, _ = self._service(tmp_path, registry, settings)
        service.start()
        assert service.running
        service.stop()
        assert not service.running
        assert service.status()["enabled"] is False
