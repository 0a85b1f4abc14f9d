from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from herdrisk.domain.entities import TelemetryRecord
from herdrisk.features.window import MAX_ANOMALY_SCORE, BoundedDeviationScorer, FeatureDeriver

BASE = datetime(2025, 3, 1, tzinfo=timezone.utc)


def rec(
    animal_id: str,
    seconds: float,
    speed: float = 1.0,
    temp: float = 38.5,
    geofence: Optional[str] = None,
) -> TelemetryRecord:
    return TelemetryRecord(
        animal_id=animal_id,
        timestamp=BASE + timedelta(seconds=seconds),
        lat=-30.0,
        lon=150.0,
        speed=speed,
        fix_quality=3,
        battery_voltage=3.6,
        body_temperature=temp,
        signal_strength=-90.0,
        geofence_id=geofence,
    )


def naive_distances(records: List[TelemetryRecord], window_seconds: float) -> List[float]:
    """Full recomputation: sum of speed * delta over the trailing window, per record."""
    history = {}
    out = []
    for r in records:
        samples = history.setdefault(r.animal_id, [])
        ts = r.timestamp.timestamp()
        if samples:
            wm_prev = samples[-1][0]
            wm = max(wm_prev, ts)
            delta = wm - wm_prev
        else:
            wm, delta = ts, 0.0
        samples.append((wm, r.speed * delta))
        out.append(sum(d for t, d in samples if t >= wm - window_seconds))
    return out


def test_distance_accumulates_speed_times_delta():
    d = FeatureDeriver(window_seconds=3600)
    w = d.derive_batch([rec("a", 0, speed=5.0), rec("a", 60, speed=2.0), rec("a", 120, speed=3.0)])

    assert [x.distance_m for x in w] == [0.0, 120.0, 300.0]
    assert [x.time_delta_s for x in w] == [0.0, 60.0, 120.0]
    assert [x.sample_count for x in w] == [1, 2, 3]
    assert w[-1].window_end == BASE + timedelta(seconds=120)


def test_old_samples_are_evicted():
    d = FeatureDeriver(window_seconds=100)
    w = d.derive_batch(
        [rec("a", 0, speed=1.0), rec("a", 60, speed=1.0), rec("a", 120, speed=3.0), rec("a", 200, speed=2.0)]
    )
    # at t=200 the cutoff is t=100: samples at 120 (3 * 60) and 200 (2 * 80) remain
    assert w[-1].distance_m == pytest.approx(180.0 + 160.0)
    assert w[-1].sample_count == 2


def test_boundary_sample_is_kept():
    d = FeatureDeriver(window_seconds=60)
    w = d.derive_batch([rec("a", 0), rec("a", 30, speed=2.0), rec("a", 90, speed=1.0)])
    # cutoff is exactly t=30, which stays in the window
    assert w[-1].sample_count == 2
    assert w[-1].distance_m == pytest.approx(60.0 + 60.0)


def test_out_of_order_sample_is_flagged_not_fatal():
    d = FeatureDeriver(window_seconds=3600)
    w = d.derive_batch([rec("a", 100, speed=1.0), rec("a", 50, speed=9.0), rec("a", 160, speed=2.0)])

    assert w[1].out_of_order is True
    assert w[1].distance_m == w[0].distance_m
    assert w[1].window_end == BASE + timedelta(seconds=100)
    # next delta is measured from the watermark (t=100), not from t=50
    assert w[2].distance_m == pytest.approx(120.0)
    assert not w[2].out_of_order


def test_equal_timestamps_are_not_out_of_order():
    d = FeatureDeriver()
    w = d.derive_batch([rec("a", 10), rec("a", 10)])
    assert [x.out_of_order for x in w] == [False, False]


def test_geofence_dwell_flag():
    d = FeatureDeriver()
    w = d.derive_batch([rec("a", 0, geofence="yard"), rec("a", 10)])
    assert w[0].in_geofence and w[0].geofence_id == "yard"
    assert not w[1].in_geofence


def test_anomaly_score_bounded_and_reacts_to_deviation():
    d = FeatureDeriver()
    calm = [rec("a", i * 60, speed=1.0, temp=38.5) for i in range(10)]
    windows = d.derive_batch(calm + [rec("a", 600, speed=1.0, temp=41.5)])

    assert windows[0].anomaly_score == 0.0
    assert all(w.anomaly_score == 0.0 for w in windows[:10])
    assert 0.9 < windows[-1].anomaly_score < 1.0


def test_custom_scorer_is_clipped_below_one():
    seen = []

    def scorer(record, mean_speed, mean_temp, prior_count):
        seen.append(prior_count)
        return 7.5

    d = FeatureDeriver(scorer=scorer)
    w = d.derive_batch([rec("a", 0), rec("a", 10)])
    assert [x.anomaly_score for x in w] == [MAX_ANOMALY_SCORE, MAX_ANOMALY_SCORE]
    assert MAX_ANOMALY_SCORE < 1.0
    assert seen == [0, 1]


def test_speed_glitch_stays_below_one():
    d = FeatureDeriver()
    w = d.derive_batch([rec("a", 0, speed=0.5), rec("a", 10, speed=60.0)])
    assert 0.99 < w[-1].anomaly_score < 1.0


def test_scorer_formula():
    scorer = BoundedDeviationScorer(temp_scale=2.0, speed_scale=4.0)
    r = rec("a", 0, speed=3.0, temp=40.0)
    assert scorer(r, None, None, 0) == 0.0
    assert scorer(r, 1.0, 39.0, 0) == 0.0
    # z = 1/2 + 2/4 = 1
    assert scorer(r, 1.0, 39.0, 3) == pytest.approx(1 - 2.718281828459045 ** -1)


def test_animal_mismatch_raises():
    with pytest.raises(ValueError):
        FeatureDeriver().derive_features("b", rec("a", 0))


def test_invalid_window_raises():
    with pytest.raises(ValueError):
        FeatureDeriver(window_seconds=0)


def test_animals_are_independent():
    d = FeatureDeriver()
    w = d.derive_batch([rec("a", 0, speed=1), rec("b", 0, speed=9), rec("a", 10, speed=1), rec("b", 10, speed=9)])
    assert w[2].distance_m == 10.0
    assert w[3].distance_m == 90.0
    assert d.animal_ids == ["a", "b"]


def test_state_transfer_between_derivers_continues_the_window():
    records = [rec("a", i * 45, speed=1.0 + (i % 3), temp=38 + (i % 4) * 0.3) for i in range(40)]

    single = FeatureDeriver(window_seconds=600).derive_batch(records)

    first, second = FeatureDeriver(window_seconds=600), FeatureDeriver(window_seconds=600)
    head = first.derive_batch(records[:25])
    payload = json.loads(json.dumps(first.release("a")))
    second.import_state(payload)
    tail = second.derive_batch(records[25:])

    assert head + tail == single
    assert first.animal_ids == []


def test_import_state_rejects_double_ownership():
    d = FeatureDeriver()
    d.derive(rec("a", 0))
    with pytest.raises(ValueError):
        d.import_state(d.export_state("a"))


def test_import_state_rejects_mismatched_window():
    src = FeatureDeriver(window_seconds=60)
    src.derive(rec("a", 0))
    with pytest.raises(ValueError):
        FeatureDeriver(window_seconds=120).import_state(src.export_state("a"))


samples = st.lists(
    st.tuples(
        st.sampled_from(["a", "b", "c"]),
        st.integers(min_value=-120, max_value=900),
        st.floats(min_value=0, max_value=6),
        st.floats(min_value=36, max_value=42),
    ),
    min_size=1,
    max_size=80,
)

# GPS speed glitches: jumps far past any sane cattle speed
glitchy_samples = st.lists(
    st.tuples(
        st.sampled_from(["a", "b"]),
        st.integers(min_value=0, max_value=600),
        st.one_of(st.floats(min_value=0, max_value=3), st.floats(min_value=30, max_value=500)),
        st.floats(min_value=30, max_value=45),
    ),
    min_size=1,
    max_size=60,
)


def build_batch(steps: List[Tuple[str, int, float, float]]) -> List[TelemetryRecord]:
    clock = {}
    out = []
    for animal, step, speed, temp in steps:
        clock[animal] = clock.get(animal, 0) + step
        out.append(rec(animal, clock[animal], speed=speed, temp=temp))
    return out


@settings(max_examples=150, deadline=None)
@given(steps=samples, window=st.sampled_from([60.0, 300.0, 1800.0, 3600.0]))
def test_rolling_distance_matches_naive_recomputation(steps, window):
    records = build_batch(steps)
    derived = [w.distance_m for w in FeatureDeriver(window_seconds=window).derive_batch(records)]
    expected = naive_distances(records, window)
    assert derived == pytest.approx(expected, rel=1e-9, abs=1e-6)


@settings(max_examples=100, deadline=None)
@given(steps=st.one_of(samples, glitchy_samples))
def test_cold_replay_is_identical(steps):
    records = build_batch(steps)
    first = FeatureDeriver(window_seconds=600).derive_batch(records)
    second = FeatureDeriver(window_seconds=600).derive_batch(records)
    assert first == second
    assert all(0.0 <= w.anomaly_score < 1.0 for w in first)
