# src/herdrisk/telemetry/normalize.py
"""
Telemetry normalizer.

Goal:
- Turn a raw device reading (mapping of field name -> value, as decoded from
  the ingestion boundary) into a canonical TelemetryRecord.

Validation rules:
- required: animal_id, timestamp, lat, lon, speed, fix_quality,
  battery_voltage, body_temperature, signal_strength
- optional: geofence_id (blank -> None)
- lat in [-90, 90], lon in [-180, 180], speed >= 0, battery_voltage > 0,
  fix_quality >= 0, no NaN/inf anywhere
- timestamp: ISO-8601 string, epoch seconds/ms, or datetime; naive -> UTC

Every violated field is reported, not just the first one, so a batch can be
partially accepted and the rejects sent back with a complete reason.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from herdrisk.domain.entities import TelemetryRecord
from herdrisk.domain.errors import ValidationError

logger = logging.getLogger(__name__)


class RawTelemetry(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        allow_inf_nan=False,
        coerce_numbers_to_str=True,
        str_strip_whitespace=True,
    )

    animal_id: str = Field(min_length=1)
    timestamp: datetime
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)
    speed: float = Field(ge=0.0)
    fix_quality: int = Field(ge=0)
    battery_voltage: float = Field(gt=0.0)
    body_temperature: float
    signal_strength: float
    geofence_id: Optional[str] = None

    @field_validator("timestamp", mode="after")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("geofence_id", mode="after")
    @classmethod
    def _blank_geofence(cls, v: Optional[str]) -> Optional[str]:
        return v or None


def _violations_from(err: PydanticValidationError) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for e in err.errors():
        loc = e.get("loc") or ("__root__",)
        name = str(loc[0])
        # keep the first message per field
        out.setdefault(name, str(e.get("msg", "invalid value")))
    return out


def normalize(raw: Mapping[str, Any]) -> TelemetryRecord:
    """
    Validate and canonicalize one raw telemetry record.

    Raises ValidationError naming every violated field.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError({"__root__": f"record must be a mapping, got {type(raw).__name__}"})

    try:
        parsed = RawTelemetry.model_validate(dict(raw))
    except PydanticValidationError as e:
        raise ValidationError(_violations_from(e), raw=raw) from e

    return TelemetryRecord(
        animal_id=parsed.animal_id,
        timestamp=parsed.timestamp,
        lat=float(parsed.lat),
        lon=float(parsed.lon),
        speed=float(parsed.speed),
        fix_quality=int(parsed.fix_quality),
        battery_voltage=float(parsed.battery_voltage),
        body_temperature=float(parsed.body_temperature),
        signal_strength=float(parsed.signal_strength),
        geofence_id=parsed.geofence_id,
    )


@dataclass(frozen=True)
class RejectedRecord:
    index: int
    animal_id: Optional[str]
    violations: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "animal_id": self.animal_id, "violations": dict(self.violations)}


@dataclass
class NormalizedBatch:
    records: List[TelemetryRecord] = field(default_factory=list)
    rejected: List[RejectedRecord] = field(default_factory=list)
    out_of_order: int = 0

    @property
    def rows_in(self) -> int:
        return len(self.records) + len(self.rejected)

    def to_report(self, sample_size: int = 20) -> Dict[str, Any]:
        by_field: Dict[str, int] = {}
        for r in self.rejected:
            for name in r.violations:
                by_field[name] = by_field.get(name, 0) + 1
        return {
            "rows_in": self.rows_in,
            "rows_accepted": len(self.records),
            "rows_rejected": len(self.rejected),
            "out_of_order": self.out_of_order,
            "rejections_by_field": dict(sorted(by_field.items())),
            "rejected_sample": [r.to_dict() for r in self.rejected[:sample_size]],
        }


def normalize_batch(raws: Iterable[Mapping[str, Any]]) -> NormalizedBatch:
    """
    Normalize a batch, collecting rejects instead of aborting.

    Accepted records keep input order. Per-animal timestamp regressions are
    counted (the feature deriver flags them), not rejected.
    """
    batch = NormalizedBatch()
    last_seen: Dict[str, datetime] = {}

    for i, raw in enumerate(raws):
        try:
            rec = normalize(raw)
        except ValidationError as e:
            animal_id = raw.get("animal_id") if isinstance(raw, Mapping) else None
            batch.rejected.append(
                RejectedRecord(
                    index=i,
                    animal_id=None if animal_id is None else str(animal_id),
                    violations=e.violations,
                )
            )
            logger.warning("Rejected telemetry row %d (animal=%s): %s", i, animal_id, ", ".join(e.fields))
            continue

        prev = last_seen.get(rec.animal_id)
        if prev is not None and rec.timestamp < prev:
            batch.out_of_order += 1
        else:
            last_seen[rec.animal_id] = rec.timestamp
        batch.records.append(rec)

    if batch.rejected:
        logger.info(
            "Normalized batch: %d accepted, %d rejected", len(batch.records), len(batch.rejected)
        )
    return batch
