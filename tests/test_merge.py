from datetime import datetime, timedelta, timezone

import pytest

from fleet_backup.device_cache import DeviceCache
from fleet_backup.exceptions import UnknownVehicleError
from fleet_backup.merge import MergeIndex, build_index
from fleet_backup.models import PositionSample, StatusSample, Vehicle, merge_key

T0 = datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


def make_cache(*ids):
    cache = DeviceCache()
    cache.add([Vehicle(id=i, name=f"Truck {i}", serial_number=f"G{i}") for i in ids])
    return cache


def pos(vehicle_id, ts, id):
    return PositionSample(vehicle_id=vehicle_id, timestamp=ts, id=id)


def status(vehicle_id, ts, id, value=1.0):
    return StatusSample(vehicle_id=vehicle_id, timestamp=ts, id=id, value=value)


def test_position_before_later_status():
    cache = make_cache("b1")
    index = build_index(
        [pos("b1", T0, "P1")], [status("b1", T0 + timedelta(seconds=1), "S1")], cache
    )
    assert [r.id for r in index.records("b1")] == ["P1", "S1"]


def test_kinds_interleave_chronologically():
    cache = make_cache("b1")
    positions = [pos("b1", T0 + timedelta(seconds=s), f"P{s}") for s in (0, 20, 40)]
    statuses = [status("b1", T0 + timedelta(seconds=s), f"S{s}") for s in (10, 30)]
    index = build_index(positions, statuses, cache)
    assert [r.id for r in index.records("b1")] == ["P0", "S10", "P20", "S30", "P40"]


def test_order_is_chronological_not_lexicographic():
    # "9:00" sorts after "10:00" as text; epoch ordering must not.
    cache = make_cache("b1")
    nine = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
    ten = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
    index = build_index([pos("b1", ten, "A"), pos("b1", nine, "Z")], [], cache)
    assert [r.id for r in index.records("b1")] == ["Z", "A"]


def test_same_timestamp_tiebreak_on_id():
    cache = make_cache("b1")
    index = build_index([pos("b1", T0, "b")], [status("b1", T0, "a")], cache)
    assert [r.id for r in index.records("b1")] == ["a", "b"]


def test_records_grouped_per_vehicle():
    cache = make_cache("b1", "b2")
    index = build_index(
        [pos("b1", T0, "P1"), pos("b2", T0, "P2")], [status("b2", T0, "S2")], cache
    )
    assert sorted(index.vehicles()) == ["b1", "b2"]
    assert [r.id for r in index.records("b2")] == ["P2", "S2"]
    assert len(index) == 3


def test_unknown_vehicle_dropped():
    cache = make_cache("b1")
    index = build_index(
        [pos("b1", T0, "P1"), pos("ghost", T0, "P2")], [status("ghost", T0, "S1")], cache
    )
    assert index.vehicles() == ["b1"]
    assert index.records("ghost") == []
    assert index.dropped == 2


def test_duplicate_merge_key_collapses():
    cache = make_cache("b1")
    index = build_index([pos("b1", T0, "P1"), pos("b1", T0, "P1")], [], cache)
    assert len(index.records("b1")) == 1


def test_clear():
    cache = make_cache("b1")
    index = MergeIndex(cache)
    index.add(pos("b1", T0, "P1"))
    index.add(pos("nope", T0, "P2"))
    index.clear()
    assert index.vehicles() == []
    assert index.dropped == 0


def test_merge_key_is_epoch_tuple():
    record = pos("b1", T0, "P1")
    assert merge_key(record) == (T0.timestamp(), "P1")
    assert record.merge_key == merge_key(record)


def test_naive_timestamps_are_utc():
    record = pos("b1", datetime(2024, 1, 1, 9, 0), "P1")
    assert record.timestamp == T0


def test_cache_require_unknown():
    with pytest.raises(UnknownVehicleError):
        make_cache("b1").require("b2")
