from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from herdrisk.domain.entities import TelemetryRecord
from herdrisk.features.partition import derive_partitioned, partition_key, partition_records
from herdrisk.features.window import FeatureDeriver

BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _records(n_animals: int = 12, n_each: int = 30):
    out = []
    for i in range(n_each):
        for a in range(n_animals):
            out.append(
                TelemetryRecord(
                    animal_id=f"steer-{a:03d}",
                    timestamp=BASE + timedelta(seconds=30 * i + a),
                    lat=-25.0,
                    lon=135.0,
                    speed=0.5 + (a % 4) * 0.25,
                    fix_quality=2,
                    battery_voltage=3.9,
                    body_temperature=38.0 + (i % 5) * 0.2,
                    signal_strength=-101.0,
                )
            )
    return out


def test_partition_key_is_stable_and_in_range():
    keys = [partition_key(f"steer-{i}", 7) for i in range(200)]
    assert keys == [partition_key(f"steer-{i}", 7) for i in range(200)]
    assert set(keys) <= set(range(7))
    assert len(set(keys)) > 1


def test_partition_key_rejects_zero_partitions():
    with pytest.raises(ValueError):
        partition_key("x", 0)


def test_partitions_keep_each_animal_in_one_part_in_order():
    records = _records()
    parts = partition_records(records, 4)

    owners = {}
    for idx, part in enumerate(parts):
        for r in part:
            assert owners.setdefault(r.animal_id, idx) == idx
        for animal in {r.animal_id for r in part}:
            ts = [r.timestamp for r in part if r.animal_id == animal]
            assert ts == sorted(ts)
    assert sum(len(p) for p in parts) == len(records)


def test_partitioned_derivation_matches_single_worker():
    records = _records()
    single = FeatureDeriver(window_seconds=300).derive_batch(records)
    expected = {}
    for w in single:
        expected.setdefault(w.animal_id, []).append(w)

    parallel = derive_partitioned(records, n_workers=4, window_seconds=300)

    assert parallel == expected
