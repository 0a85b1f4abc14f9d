# src/herdrisk/domain/entities.py
"""
In-memory entities shared across the pipeline.

All entities are frozen dataclasses: a new FeatureWindow or Quote supersedes
an older one, nothing is edited in place.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import date, datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TelemetryRecord:
    animal_id: str
    timestamp: datetime  # tz-aware, UTC
    lat: float
    lon: float
    speed: float  # m/s
    fix_quality: int
    battery_voltage: float  # volts
    body_temperature: float  # degrees C
    signal_strength: float  # dBm
    geofence_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["timestamp"] = self.timestamp.isoformat()
        return out


@dataclass(frozen=True)
class AnimalProfile:
    animal_id: str
    sex: str
    breed: str
    date_of_birth: date
    owner_id: str
    brand: Optional[str] = None
    tag_id: Optional[str] = None
    region: Optional[str] = None

    def transfer_ownership(self, new_owner_id: str) -> "AnimalProfile":
        """The only permitted change after registration; returns a new profile."""
        if not new_owner_id:
            raise ValueError("new_owner_id must be a non-empty string")
        return replace(self, owner_id=new_owner_id)


@dataclass(frozen=True)
class FeatureWindow:
    animal_id: str
    window_end: datetime
    distance_m: float
    time_delta_s: float
    in_geofence: bool
    anomaly_score: float
    sample_count: int
    out_of_order: bool = False
    geofence_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["window_end"] = self.window_end.isoformat()
        return out


@dataclass(frozen=True)
class Quote:
    quote_id: str
    animal_id: str
    premium: float
    sum_insured: float
    currency: str
    issued_at: datetime
    segment_key: Optional[Dict[str, Optional[str]]]
    segment_level: Optional[str]
    registry_version: Optional[str]
    expected_frequency: float
    severity: float
    credibility: float
    individual_rate: Optional[float]
    loading_factor: float
    risk_tier: str
    supersedes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["issued_at"] = self.issued_at.isoformat()
        return out
