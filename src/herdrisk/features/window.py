# src/herdrisk/features/window.py
"""
Rolling per-animal feature derivation.

Each animal owns an AnimalWindowState: a deque of recent samples bounded by a
trailing time window plus running sums. Every new record costs O(1)
amortized: append on the right, evict expired samples on the left.

Per record:
- delta      = seconds since the animal's latest timestamp, clamped at 0
               (a regression is flagged out_of_order, not fatal)
- distance   = speed * delta
- dwell flag = record carries a geofence id
- anomaly    = pluggable scorer against the window means *before* the
               current sample joins, bounded to [0, 1)

A sample stays in the window while ts >= window_end - window_seconds.
Replaying the same ordered batch from a cold state yields the same windows.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

import numpy as np

from herdrisk.domain.entities import FeatureWindow, TelemetryRecord

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 3600.0

# (ts_epoch_s, delta_s, distance_m, speed, body_temperature)
Sample = Tuple[float, float, float, float, float]

# (record, mean_speed, mean_temperature, prior_count) -> score
AnomalyScorer = Callable[[TelemetryRecord, Optional[float], Optional[float], int], float]

# largest float below 1.0; exp() saturates to exactly 1.0 once z is past ~37
MAX_ANOMALY_SCORE = float(np.nextafter(1.0, 0.0))


@dataclass(frozen=True)
class BoundedDeviationScorer:
    """
    score = 1 - exp(-(|T - mean_T| / temp_scale + |v - mean_v| / speed_scale))

    0 when there is no history yet; in [0, MAX_ANOMALY_SCORE] otherwise.
    """

    temp_scale: float = 1.0
    speed_scale: float = 1.0

    def __call__(
        self,
        record: TelemetryRecord,
        mean_speed: Optional[float],
        mean_temperature: Optional[float],
        prior_count: int,
    ) -> float:
        if prior_count <= 0 or mean_speed is None or mean_temperature is None:
            return 0.0
        z = abs(record.body_temperature - mean_temperature) / self.temp_scale
        z += abs(record.speed - mean_speed) / self.speed_scale
        return min(float(-math.expm1(-z)), MAX_ANOMALY_SCORE)


bounded_deviation_score = BoundedDeviationScorer()


@dataclass
class AnimalWindowState:
    animal_id: str
    window_seconds: float
    samples: Deque[Sample] = field(default_factory=deque)
    watermark: Optional[float] = None
    distance_sum: float = 0.0
    delta_sum: float = 0.0
    speed_sum: float = 0.0
    temp_sum: float = 0.0

    def evict(self, window_end: float) -> None:
        cutoff = window_end - self.window_seconds
        while self.samples and self.samples[0][0] < cutoff:
            _, delta, dist, speed, temp = self.samples.popleft()
            self.distance_sum -= dist
            self.delta_sum -= delta
            self.speed_sum -= speed
            self.temp_sum -= temp
        if not self.samples:
            # drop accumulated rounding error
            self.distance_sum = self.delta_sum = self.speed_sum = self.temp_sum = 0.0

    def push(self, sample: Sample) -> None:
        _, delta, dist, speed, temp = sample
        self.samples.append(sample)
        self.distance_sum += dist
        self.delta_sum += delta
        self.speed_sum += speed
        self.temp_sum += temp

    def means(self) -> Tuple[Optional[float], Optional[float]]:
        n = len(self.samples)
        if n == 0:
            return None, None
        return self.speed_sum / n, self.temp_sum / n

    def to_dict(self) -> Dict[str, Any]:
        return {
            "animal_id": self.animal_id,
            "window_seconds": self.window_seconds,
            "watermark": self.watermark,
            "samples": [list(s) for s in self.samples],
            "sums": {
                "distance": self.distance_sum,
                "delta": self.delta_sum,
                "speed": self.speed_sum,
                "temperature": self.temp_sum,
            },
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AnimalWindowState":
        sums = d.get("sums", {})
        return cls(
            animal_id=str(d["animal_id"]),
            window_seconds=float(d["window_seconds"]),
            samples=deque(tuple(float(x) for x in s) for s in d.get("samples", [])),
            watermark=None if d.get("watermark") is None else float(d["watermark"]),
            distance_sum=float(sums.get("distance", 0.0)),
            delta_sum=float(sums.get("delta", 0.0)),
            speed_sum=float(sums.get("speed", 0.0)),
            temp_sum=float(sums.get("temperature", 0.0)),
        )


class FeatureDeriver:
    """
    Owns the rolling windows of the animals routed to it.

    Not thread-safe: run one deriver per worker. An animal's state moves
    between derivers only through export_state / import_state.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        scorer: Optional[AnomalyScorer] = None,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0, got {window_seconds}")
        self.window_seconds = float(window_seconds)
        self.scorer: AnomalyScorer = scorer or bounded_deviation_score
        self._states: Dict[str, AnimalWindowState] = {}

    # ---------------------------
    # State ownership
    # ---------------------------
    @property
    def animal_ids(self) -> List[str]:
        return sorted(self._states)

    def state_for(self, animal_id: str) -> AnimalWindowState:
        st = self._states.get(animal_id)
        if st is None:
            st = AnimalWindowState(animal_id=animal_id, window_seconds=self.window_seconds)
            self._states[animal_id] = st
        return st

    def export_state(self, animal_id: str) -> Dict[str, Any]:
        if animal_id not in self._states:
            raise KeyError(f"No window state for animal {animal_id!r}")
        return self._states[animal_id].to_dict()

    def import_state(self, payload: Dict[str, Any]) -> None:
        st = AnimalWindowState.from_dict(payload)
        if st.window_seconds != self.window_seconds:
            raise ValueError(
                f"State window {st.window_seconds}s does not match deriver window {self.window_seconds}s"
            )
        if st.animal_id in self._states:
            raise ValueError(f"Animal {st.animal_id!r} is already owned by this deriver")
        self._states[st.animal_id] = st

    def release(self, animal_id: str) -> Dict[str, Any]:
        """Export and forget an animal's state (hand-off to another worker)."""
        payload = self.export_state(animal_id)
        del self._states[animal_id]
        return payload

    # ---------------------------
    # Update step
    # ---------------------------
    def derive_features(self, animal_id: str, record: TelemetryRecord) -> FeatureWindow:
        if record.animal_id != animal_id:
            raise ValueError(f"Record belongs to {record.animal_id!r}, not {animal_id!r}")

        st = self.state_for(animal_id)
        ts = record.timestamp.timestamp()

        out_of_order = False
        if st.watermark is None:
            delta = 0.0
            st.watermark = ts
        elif ts < st.watermark:
            # zero-length gap, sample is kept at the watermark so the deque stays sorted
            out_of_order = True
            delta = 0.0
            logger.debug("Out-of-order sample for %s: %s < watermark", animal_id, record.timestamp)
        else:
            delta = ts - st.watermark
            st.watermark = ts

        window_end = st.watermark
        st.evict(window_end)

        mean_speed, mean_temp = st.means()
        raw = self.scorer(record, mean_speed, mean_temp, len(st.samples))
        score = float(np.clip(raw, 0.0, MAX_ANOMALY_SCORE))

        st.push((window_end, delta, record.speed * delta, record.speed, record.body_temperature))

        return FeatureWindow(
            animal_id=animal_id,
            window_end=(
                datetime.fromtimestamp(window_end, tz=timezone.utc) if out_of_order else record.timestamp
            ),
            distance_m=st.distance_sum,
            time_delta_s=st.delta_sum,
            in_geofence=record.geofence_id is not None,
            anomaly_score=score,
            sample_count=len(st.samples),
            out_of_order=out_of_order,
            geofence_id=record.geofence_id,
        )

    def derive(self, record: TelemetryRecord) -> FeatureWindow:
        return self.derive_features(record.animal_id, record)

    def derive_batch(self, records: Iterable[TelemetryRecord]) -> List[FeatureWindow]:
        return [self.derive(r) for r in records]
