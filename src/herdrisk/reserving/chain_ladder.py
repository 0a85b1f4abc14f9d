# src/herdrisk/reserving/chain_ladder.py
"""
Chain-ladder reserving on a cumulative claims triangle.

Triangle rules (MalformedTriangleError otherwise):
- every row starts at development lag 0 and has contiguous lags
- amounts are finite and >= 0
- cumulative amounts never decrease along a row
- no duplicate (origin, lag) cells, at least one cell overall

Recent origins having fewer lags is the normal shape of a triangle, not an
error.

Age-to-age factor for lag j -> j+1 is volume weighted over the origins that
have both cells:

    f(j) = sum(C[i, j+1]) / sum(C[i, j])

With no contributing origin (or a zero denominator) f(j) = 1.0.

Each origin's latest diagonal value is projected with the remaining factors
and an optional tail factor; IBNR = ultimate - latest.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from herdrisk.domain.errors import MalformedTriangleError

logger = logging.getLogger(__name__)

ORIGIN_COL = "origin_period"
DEV_COL = "development_period"
VALUE_COL = "cumulative_amount"


class ClaimsTriangle:
    def __init__(self, rows: Mapping[Any, Sequence[float]]) -> None:
        if not rows:
            raise MalformedTriangleError("Claims triangle is empty")

        clean: Dict[Any, Tuple[float, ...]] = {}
        for origin in sorted(rows):
            values = [float(v) for v in rows[origin]]
            if not values:
                raise MalformedTriangleError(f"Origin {origin} has no cells", origin=origin)
            for lag, v in enumerate(values):
                if not math.isfinite(v) or v < 0:
                    raise MalformedTriangleError(
                        f"Origin {origin} lag {lag}: amount must be finite and >= 0, got {v}", origin=origin
                    )
            for lag in range(1, len(values)):
                if values[lag] < values[lag - 1]:
                    raise MalformedTriangleError(
                        f"Origin {origin}: cumulative amount decreases from lag {lag - 1} "
                        f"({values[lag - 1]}) to lag {lag} ({values[lag]})",
                        origin=origin,
                    )
            clean[origin] = tuple(values)
        self._rows = clean

    def __repr__(self) -> str:
        return f"ClaimsTriangle(origins={len(self._rows)}, lags={self.n_lags})"

    @property
    def rows(self) -> Dict[Any, Tuple[float, ...]]:
        return dict(self._rows)

    @property
    def origins(self) -> List[Any]:
        return list(self._rows)

    @property
    def n_lags(self) -> int:
        return max(len(r) for r in self._rows.values())

    def latest(self, origin: Any) -> float:
        return self._rows[origin][-1]

    @classmethod
    def from_rows(cls, rows: Mapping[Any, Sequence[float]]) -> "ClaimsTriangle":
        return cls(rows)

    @classmethod
    def from_triples(cls, triples: Iterable[Tuple[Any, Any, Any]]) -> "ClaimsTriangle":
        """Build from (origin period, development lag, cumulative amount) triples."""
        cells: Dict[Any, Dict[int, float]] = {}
        for origin, dev, amount in triples:
            try:
                lag_f = float(dev)
            except (TypeError, ValueError) as e:
                raise MalformedTriangleError(f"Origin {origin}: bad development period {dev!r}", origin=origin) from e
            if not lag_f.is_integer():
                raise MalformedTriangleError(
                    f"Origin {origin}: development period must be an integer, got {dev!r}", origin=origin
                )
            lag = int(lag_f)
            if lag < 0:
                raise MalformedTriangleError(f"Origin {origin}: negative development period {lag}", origin=origin)
            row = cells.setdefault(origin, {})
            if lag in row:
                raise MalformedTriangleError(f"Duplicate cell for origin {origin} lag {lag}", origin=origin)
            row[lag] = float(amount)

        rows: Dict[Any, List[float]] = {}
        for origin, row in cells.items():
            lags = sorted(row)
            if lags != list(range(len(lags))):
                raise MalformedTriangleError(
                    f"Origin {origin}: development lags must be contiguous from 0, got {lags}", origin=origin
                )
            rows[origin] = [row[lag] for lag in lags]
        return cls(rows)

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        origin_col: str = ORIGIN_COL,
        dev_col: str = DEV_COL,
        value_col: str = VALUE_COL,
    ) -> "ClaimsTriangle":
        missing = [c for c in (origin_col, dev_col, value_col) if c not in df.columns]
        if missing:
            raise ValueError(f"Missing required columns: {missing}")
        return cls.from_triples(zip(df[origin_col].tolist(), df[dev_col].tolist(), df[value_col].tolist()))

    def to_frame(self) -> pd.DataFrame:
        """Wide view: one row per origin, one column per lag (NaN where not yet developed)."""
        width = self.n_lags
        data = {o: list(r) + [np.nan] * (width - len(r)) for o, r in self._rows.items()}
        return pd.DataFrame.from_dict(data, orient="index", columns=list(range(width)))


@dataclass(frozen=True)
class ReserveResult:
    development_factors: List[float]
    cdf_to_ultimate: List[float]
    tail_factor: float
    latest: Dict[Any, float]
    ultimate: Dict[Any, float]
    per_period_ibnr: Dict[Any, float]
    total_ibnr: float
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "development_factors": list(self.development_factors),
            "cdf_to_ultimate": list(self.cdf_to_ultimate),
            "tail_factor": self.tail_factor,
            "latest": {str(k): v for k, v in self.latest.items()},
            "ultimate": {str(k): v for k, v in self.ultimate.items()},
            "per_period_ibnr": {str(k): v for k, v in self.per_period_ibnr.items()},
            "total_ibnr": self.total_ibnr,
            "notes": list(self.notes),
        }

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                ORIGIN_COL: list(self.latest),
                "latest": list(self.latest.values()),
                "ultimate": [self.ultimate[o] for o in self.latest],
                "ibnr": [self.per_period_ibnr[o] for o in self.latest],
            }
        )


TriangleInput = Union[ClaimsTriangle, Mapping[Any, Sequence[float]]]


def development_factors(triangle: ClaimsTriangle) -> Tuple[List[float], List[str]]:
    """Volume-weighted age-to-age factors, one per lag transition."""
    notes: List[str] = []
    rows = triangle.rows.values()
    factors: List[float] = []
    for j in range(triangle.n_lags - 1):
        num = 0.0
        den = 0.0
        for r in rows:
            if len(r) > j + 1:
                num += r[j + 1]
                den += r[j]
        if den > 0:
            factors.append(num / den)
        else:
            factors.append(1.0)
            notes.append(f"Lag {j}->{j + 1}: no positive volume, factor set to 1.0")
    return factors, notes


def reserve(triangle: TriangleInput, tail_factor: float = 1.0) -> ReserveResult:
    """
    Chain-ladder IBNR per origin period plus total.

    Accepts a ClaimsTriangle or raw rows ({origin: [cumulative by lag]}).
    Raises MalformedTriangleError (from triangle construction) for invalid data.
    """
    if not math.isfinite(tail_factor) or tail_factor <= 0:
        raise ValueError(f"tail_factor must be a positive number, got {tail_factor}")

    if not isinstance(triangle, ClaimsTriangle):
        triangle = ClaimsTriangle.from_rows(triangle)

    factors, notes = development_factors(triangle)

    # cdf[j] = product of factors from lag j to the last observed lag, times tail
    f = np.asarray(factors + [tail_factor], dtype="float64")
    cdf = np.cumprod(f[::-1])[::-1]

    latest: Dict[Any, float] = {}
    ultimate: Dict[Any, float] = {}
    ibnr: Dict[Any, float] = {}
    for origin, row in triangle.rows.items():
        last_lag = len(row) - 1
        if last_lag == 0 and triangle.n_lags > 1:
            notes.append(f"Origin {origin}: single cell, projected through all factors")
        latest[origin] = row[-1]
        ultimate[origin] = float(row[-1] * cdf[last_lag])
        ibnr[origin] = ultimate[origin] - latest[origin]

    total = float(sum(ibnr.values()))
    logger.info("Chain ladder: %d origins, %d lags, total IBNR %.2f", len(latest), triangle.n_lags, total)

    return ReserveResult(
        development_factors=[float(x) for x in factors],
        cdf_to_ultimate=[float(x) for x in cdf],
        tail_factor=float(tail_factor),
        latest=latest,
        ultimate=ultimate,
        per_period_ibnr=ibnr,
        total_ibnr=total,
        notes=notes,
    )


@dataclass(frozen=True)
class ReserveOutcome:
    name: str
    result: Optional[ReserveResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def reserve_many(
    triangles: Mapping[str, TriangleInput],
    *,
    tail_factor: float = 1.0,
    max_workers: int = 4,
) -> Dict[str, ReserveOutcome]:
    """
    Reserve independent triangles (e.g. one per product line) in parallel.

    A malformed triangle is reported in its own outcome and does not abort the others.
    """

    def _run(item: Tuple[str, TriangleInput]) -> ReserveOutcome:
        name, tri = item
        try:
            return ReserveOutcome(name=name, result=reserve(tri, tail_factor=tail_factor))
        except MalformedTriangleError as e:
            logger.error("Triangle %s rejected: %s", name, e)
            return ReserveOutcome(name=name, error=str(e))

    with ThreadPoolExecutor(max_workers=max_workers) as ex:
        outcomes = list(ex.map(_run, triangles.items()))
    return {o.name: o for o in outcomes}
