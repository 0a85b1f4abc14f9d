from __future__ import annotations

import math

import pandas as pd
import pytest
from hypothesis import given
from hypothesis import strategies as st

from herdrisk.domain.errors import MalformedTriangleError
from herdrisk.reserving.chain_ladder import (
    DEV_COL,
    ORIGIN_COL,
    VALUE_COL,
    ClaimsTriangle,
    development_factors,
    reserve,
    reserve_many,
)

SCENARIO = {2023: [100.0, 150.0, 160.0], 2024: [90.0, 140.0], 2025: [80.0]}


def test_scenario_factors_and_ibnr():
    result = reserve(ClaimsTriangle(SCENARIO))

    assert result.development_factors == pytest.approx([290 / 190, 160 / 150])
    assert result.per_period_ibnr[2023] == 0.0
    assert result.per_period_ibnr[2024] == pytest.approx(28 / 3)
    assert result.per_period_ibnr[2025] == pytest.approx(2864 / 57)
    assert result.total_ibnr == pytest.approx(3396 / 57)
    assert result.ultimate[2024] == pytest.approx(140 * 160 / 150)
    assert result.cdf_to_ultimate[-1] == 1.0


def test_decreasing_row_is_malformed():
    with pytest.raises(MalformedTriangleError) as exc:
        ClaimsTriangle({2023: [100.0, 90.0]})
    assert exc.value.origin == 2023


@given(
    st.lists(st.integers(min_value=0, max_value=10**6), min_size=1, max_size=6),
)
def test_non_decreasing_rows_always_reserve(increments):
    row = []
    total = 0.0
    for inc in increments:
        total += float(inc)
        row.append(total)
    result = reserve(ClaimsTriangle({"x": row, "y": row[:1]}))
    assert all(v >= 0 for v in result.per_period_ibnr.values())
    assert math.isfinite(result.total_ibnr)


@given(
    st.lists(st.floats(min_value=0, max_value=1e6), min_size=1, max_size=4),
    st.floats(min_value=1e-3, max_value=1e5),
)
def test_any_decrease_is_rejected(prefix, drop):
    row = sorted(prefix)
    row.append(row[-1] - drop)
    if row[-1] >= row[-2]:
        return
    with pytest.raises(MalformedTriangleError):
        ClaimsTriangle({"x": row})


def test_single_cell_triangle_has_no_ibnr():
    result = reserve(ClaimsTriangle({2025: [50.0]}))
    assert result.development_factors == []
    assert result.total_ibnr == 0.0


def test_tail_factor_applies_to_every_origin():
    result = reserve(ClaimsTriangle(SCENARIO), tail_factor=1.1)
    assert result.per_period_ibnr[2023] == pytest.approx(16.0)
    assert result.cdf_to_ultimate[-1] == pytest.approx(1.1)

    with pytest.raises(ValueError):
        reserve(ClaimsTriangle(SCENARIO), tail_factor=0.0)


def test_zero_volume_lag_defaults_to_one():
    factors, notes = development_factors(ClaimsTriangle({1: [0.0, 0.0, 5.0], 2: [0.0, 0.0]}))
    assert factors[0] == 1.0
    assert notes and "factor set to 1.0" in notes[0]


@pytest.mark.parametrize(
    "rows",
    [
        {},
        {2024: []},
        {2024: [10.0, float("nan")]},
        {2024: [-1.0]},
    ],
)
def test_malformed_rows(rows):
    with pytest.raises(MalformedTriangleError):
        ClaimsTriangle(rows)


def test_from_triples_orders_cells():
    tri = ClaimsTriangle.from_triples([(2024, 1, 140), (2023, 2, 160), (2024, 0, 90), (2023, 0, 100), (2023, 1, 150)])
    assert tri.rows == {2023: (100.0, 150.0, 160.0), 2024: (90.0, 140.0)}
    assert tri.n_lags == 3


@pytest.mark.parametrize(
    "triples",
    [
        [(2023, 0, 1.0), (2023, 0, 2.0)],
        [(2023, 0, 1.0), (2023, 2, 2.0)],
        [(2023, 1, 1.0)],
        [(2023, -1, 1.0)],
        [(2023, 0.5, 1.0)],
        [(2023, "late", 1.0)],
    ],
)
def test_from_triples_rejects_bad_cells(triples):
    with pytest.raises(MalformedTriangleError):
        ClaimsTriangle.from_triples(triples)


def test_from_frame_and_to_frame():
    df = pd.DataFrame(
        [(o, lag, v) for o, row in SCENARIO.items() for lag, v in enumerate(row)],
        columns=[ORIGIN_COL, DEV_COL, VALUE_COL],
    )
    tri = ClaimsTriangle.from_frame(df)
    assert tri.rows == {k: tuple(v) for k, v in SCENARIO.items()}

    wide = tri.to_frame()
    assert list(wide.columns) == [0, 1, 2]
    assert math.isnan(wide.loc[2025, 1])

    with pytest.raises(ValueError):
        ClaimsTriangle.from_frame(df.drop(columns=[VALUE_COL]))


def test_reserve_many_isolates_bad_triangles():
    outcomes = reserve_many({"cattle": SCENARIO, "sheep": {2024: [10.0, 5.0]}}, max_workers=2)

    assert outcomes["cattle"].ok
    assert outcomes["cattle"].result.total_ibnr == pytest.approx(3396 / 57)
    assert not outcomes["sheep"].ok
    assert "decreases" in outcomes["sheep"].error


def test_result_serialization():
    result = reserve(ClaimsTriangle(SCENARIO))
    d = result.to_dict()
    assert set(d["per_period_ibnr"]) == {"2023", "2024", "2025"}

    frame = result.to_frame()
    assert list(frame[ORIGIN_COL]) == [2023, 2024, 2025]
    assert frame["ibnr"].sum() == pytest.approx(3396 / 57)


def test_reserve_accepts_raw_rows():
    assert reserve(SCENARIO).total_ibnr == pytest.approx(3396 / 57)

    with pytest.raises(MalformedTriangleError):
        reserve({2024: [10.0, 5.0]})
