"""Tests for the live device registry."""
import threading

from asic_scanner.models.device import MetricsPoint
from asic_scanner.services.registry import LiveDeviceRegistry

from conftest import make_snapshot


class TestUpsert:
    def test_round_trip(self, registry, snapshot):
        assert registry.upsert(snapshot)
        record = registry.get(snapshot.identity)
        assert record.snapshot == snapshot
        assert record.identity == "AA:BB:CC:00:00:01"
        assert record.last_updated == snapshot.timestamp
        assert record.model == snapshot.model
        assert record.board_hashrates_ths == snapshot.board_hashrates_ths

    def test_same_timestamp_twice_is_a_no_op(self, registry, snapshot):
        assert registry.record_snapshot(snapshot) is True
        before = registry.get(snapshot.identity)
        assert registry.record_snapshot(snapshot) is False
        assert registry.get(snapshot.identity) is before
        assert len(registry.history_of(snapshot.identity)) == 1

    def test_older_update_does_not_clobber_newer(self, registry):
        newer = make_snapshot(timestamp=200.0, hashrate_ths=110.0)
        older = make_snapshot(timestamp=100.0, hashrate_ths=90.0)
        assert registry.upsert(newer)
        assert not registry.upsert(older)
        record = registry.get(newer.identity)
        assert record.hashrate_ths == 110.0
        assert record.last_updated == 200.0

    def test_newer_update_replaces_fields(self, registry):
        registry.upsert(make_snapshot(timestamp=100.0, address="10.0.0.5", hashrate_ths=90.0))
        registry.upsert(make_snapshot(timestamp=101.0, address="10.0.0.9", hashrate_ths=95.0))
        record = registry.get("AA:BB:CC:00:00:01")
        assert record.address == "10.0.0.9"
        assert record.hashrate_ths == 95.0
        assert len(registry) == 1

    def test_identity_falls_back_to_address(self, registry):
        registry.upsert(make_snapshot(address="10.0.0.42", mac=None))
        assert registry.get("10.0.0.42") is not None
        assert "10.0.0.42" in registry

    def test_get_unknown(self, registry):
        assert registry.get("nope") is None
        assert registry.history_of("nope") == []


class TestHistory:
    def test_ring_evicts_oldest(self):
        registry = LiveDeviceRegistry(history_capacity=3)
        for ts in range(1, 6):
            registry.append_history("id", MetricsPoint(ts, 1.0, 2.0, [], 3.0, []))
        history = registry.history_of("id")
        assert [p.timestamp for p in history] == [3, 4, 5]

    def test_history_is_a_copy(self, registry, snapshot):
        registry.record_snapshot(snapshot)
        history = registry.history_of(snapshot.identity)
        history.clear()
        assert len(registry.history_of(snapshot.identity)) == 1

    def test_point_carries_per_board_arrays(self, registry, snapshot):
        registry.record_snapshot(snapshot)
        point = registry.history_of(snapshot.identity)[0]
        assert point.board_temperatures_c == [64.0, 65.0, 66.0]
        assert point.to_dict()["hashrate_ths"] == 100.0


class TestQueries:
    def test_list_and_find_by_address(self, registry):
        registry.upsert(make_snapshot(address="10.0.0.1", mac="AA:AA:AA:AA:AA:01"))
        registry.upsert(make_snapshot(address="10.0.0.2", mac="AA:AA:AA:AA:AA:02"))
        assert {r.address for r in registry.list()} == {"10.0.0.1", "10.0.0.2"}
        assert registry.find_by_address("10.0.0.2").identity == "AA:AA:AA:AA:AA:02"
        assert registry.find_by_address("10.0.0.3") is None

    def test_remove_and_clear(self, registry):
        registry.record_snapshot(make_snapshot(mac="AA:AA:AA:AA:AA:01"))
        registry.record_snapshot(make_snapshot(mac="AA:AA:AA:AA:AA:02"))
        assert registry.remove("AA:AA:AA:AA:AA:01")
        assert not registry.remove("AA:AA:AA:AA:AA:01")
        assert registry.history_of("AA:AA:AA:AA:AA:01") == []
        registry.clear()
        assert len(registry) == 0

    def test_to_dict_has_stable_fields(self, registry, snapshot):
        registry.upsert(snapshot)
        data = registry.get(snapshot.identity).to_dict()
        for key in ("address", "identity", "last_updated", "mac", "board_hashrates_ths",
                    "board_temperatures_c", "fan_speeds_rpm", "efficiency_w_per_th"):
            assert key in data
        assert data["efficiency_w_per_th"] == 30.0


class TestConcurrency:
    def test_concurrent_writers_keep_newest(self):
        registry = LiveDeviceRegistry()
        snapshots = [make_snapshot(timestamp=float(ts), hashrate_ths=float(ts)) for ts in range(1, 401)]
        barrier = threading.Barrier(4)

        def writer(chunk):
            barrier.wait()
            for s in chunk:
                registry.record_snapshot(s)

        threads = [threading.Thread(target=writer, args=(snapshots[i::4],)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        record = registry.get("AA:BB:CC:00:00:01")
        assert record.last_updated == 400.0
        assert record.hashrate_ths == 400.0
