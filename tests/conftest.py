from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict

import pytest

from herdrisk.domain.entities import AnimalProfile, FeatureWindow
from herdrisk.registry.segments import RegistrySnapshot, RiskSegment, SegmentKey

T0 = datetime(2025, 7, 1, 6, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def make_raw():
    def _make(**overrides: Any) -> Dict[str, Any]:
        raw: Dict[str, Any] = {
            "animal_id": "cow-001",
            "timestamp": "2025-07-01T06:00:00Z",
            "lat": -27.4705,
            "lon": 153.026,
            "speed": 1.2,
            "fix_quality": 3,
            "battery_voltage": 3.7,
            "body_temperature": 38.6,
            "signal_strength": -92.0,
            "geofence_id": "paddock-7",
        }
        raw.update(overrides)
        return raw

    return _make


@pytest.fixture
def snapshot() -> RegistrySnapshot:
    return RegistrySnapshot(
        version="2025.07",
        segments=[
            RiskSegment(SegmentKey.of(), frequency=0.03, severity=0.9, observation_count=5000),
            RiskSegment(SegmentKey.of("qld"), frequency=0.035, severity=0.85, observation_count=800),
            RiskSegment(SegmentKey.of("qld", "beef"), frequency=0.04, severity=0.5, observation_count=50),
            RiskSegment(SegmentKey.of("qld", "beef", "winter"), frequency=0.05, severity=0.6, observation_count=120),
            RiskSegment(SegmentKey.of("nsw", "dairy", "summer"), frequency=0.02, severity=0.7, observation_count=10),
        ],
    )


@pytest.fixture
def profile() -> AnimalProfile:
    return AnimalProfile(
        animal_id="cow-001",
        sex="F",
        breed="Angus",
        date_of_birth=date(2021, 9, 14),
        owner_id="owner-17",
        brand="XK",
        tag_id="NLIS-982000123456789",
        region="QLD",
    )


@pytest.fixture
def window() -> FeatureWindow:
    return FeatureWindow(
        animal_id="cow-001",
        window_end=T0 + timedelta(minutes=30),
        distance_m=1800.0,
        time_delta_s=1800.0,
        in_geofence=True,
        anomaly_score=0.2,
        sample_count=31,
        geofence_id="paddock-7",
    )
