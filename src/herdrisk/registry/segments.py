# src/herdrisk/registry/segments.py
"""
Risk model registry.

Fitted frequency/severity parameters per rating segment
(region x breed class x season), published by the offline fitting job as
versioned snapshots.

Snapshot rules:
- immutable once built (read-only mapping)
- must contain the global default segment (*, *, *); otherwise building it
  raises SegmentNotFoundError, which is a startup error, not a per-request one
- only four key shapes are allowed, matching the fallback chain:

    exact         (region, breed_class, season)
    region+breed  (region, breed_class, *)
    region        (region, *, *)
    global        (*, *, *)

Lookup walks that chain top-down and returns the first hit, so resolution is
deterministic. Key components are compared case-insensitively.

RiskModelRegistry holds the current snapshot; swap() replaces it atomically.
Readers grab one reference and never see a half-updated table.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from herdrisk.domain.errors import SegmentNotFoundError
from herdrisk.utils.io import read_json, sha256_json

logger = logging.getLogger(__name__)

LEVEL_EXACT = "exact"
LEVEL_REGION_BREED = "region+breed"
LEVEL_REGION = "region"
LEVEL_GLOBAL = "global"
FALLBACK_ORDER = (LEVEL_EXACT, LEVEL_REGION_BREED, LEVEL_REGION, LEVEL_GLOBAL)

_WILDCARDS = {"", "*", "any"}


def _norm(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip().lower()
    return None if s in _WILDCARDS else s


@dataclass(frozen=True)
class SegmentKey:
    region: Optional[str] = None
    breed_class: Optional[str] = None
    season: Optional[str] = None

    @classmethod
    def of(cls, region: Any = None, breed_class: Any = None, season: Any = None) -> "SegmentKey":
        return cls(region=_norm(region), breed_class=_norm(breed_class), season=_norm(season))

    @property
    def level(self) -> Optional[str]:
        r, b, s = self.region is not None, self.breed_class is not None, self.season is not None
        if r and b and s:
            return LEVEL_EXACT
        if r and b and not s:
            return LEVEL_REGION_BREED
        if r and not b and not s:
            return LEVEL_REGION
        if not r and not b and not s:
            return LEVEL_GLOBAL
        return None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


GLOBAL_KEY = SegmentKey()


@dataclass(frozen=True)
class RiskSegment:
    key: SegmentKey
    frequency: float  # expected claims per animal-year
    severity: float  # mean loss as a fraction of sum insured
    observation_count: int = 0
    credibility_k: Optional[float] = None

    def __post_init__(self) -> None:
        if not math.isfinite(self.frequency) or self.frequency < 0:
            raise ValueError(f"frequency must be finite and >= 0, got {self.frequency} for {self.key}")
        if not math.isfinite(self.severity) or not 0.0 < self.severity <= 1.0:
            raise ValueError(f"severity must be in (0, 1], got {self.severity} for {self.key}")
        if self.observation_count < 0:
            raise ValueError(f"observation_count must be >= 0, got {self.observation_count} for {self.key}")
        if self.credibility_k is not None and not self.credibility_k > 0:
            raise ValueError(f"credibility_k must be > 0, got {self.credibility_k} for {self.key}")

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "RiskSegment":
        k = d.get("credibility_k")
        return cls(
            key=SegmentKey.of(d.get("region"), d.get("breed_class"), d.get("season")),
            frequency=float(d["frequency"]),
            severity=float(d["severity"]),
            observation_count=int(d.get("observation_count", 0)),
            credibility_k=None if k is None else float(k),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = self.key.to_dict()
        out.update(
            frequency=self.frequency,
            severity=self.severity,
            observation_count=self.observation_count,
            credibility_k=self.credibility_k,
        )
        return out


@dataclass(frozen=True)
class SegmentMatch:
    segment: RiskSegment
    level: str


class RegistrySnapshot:
    def __init__(self, version: str, segments: Iterable[RiskSegment]) -> None:
        table: Dict[SegmentKey, RiskSegment] = {}
        for seg in segments:
            if seg.key.level is None:
                raise ValueError(f"Unsupported segment key shape: {seg.key}")
            if seg.key in table:
                raise ValueError(f"Duplicate segment key in snapshot {version!r}: {seg.key}")
            table[seg.key] = seg

        if GLOBAL_KEY not in table:
            raise SegmentNotFoundError(f"Registry snapshot {version!r} has no global default segment (*, *, *)")

        self.version = str(version)
        self._segments: Mapping[SegmentKey, RiskSegment] = MappingProxyType(table)
        self.fingerprint = sha256_json(self.to_dict()["segments"])

    def __len__(self) -> int:
        return len(self._segments)

    def __repr__(self) -> str:
        return f"RegistrySnapshot(version={self.version!r}, segments={len(self)}, fingerprint={self.fingerprint[:12]})"

    @property
    def segments(self) -> Mapping[SegmentKey, RiskSegment]:
        return self._segments

    def _chain(self, region: Any, breed_class: Any, season: Any) -> List[Tuple[str, SegmentKey]]:
        r, b, s = _norm(region), _norm(breed_class), _norm(season)
        chain: List[Tuple[str, SegmentKey]] = []
        if r is not None and b is not None and s is not None:
            chain.append((LEVEL_EXACT, SegmentKey(r, b, s)))
        if r is not None and b is not None:
            chain.append((LEVEL_REGION_BREED, SegmentKey(r, b, None)))
        if r is not None:
            chain.append((LEVEL_REGION, SegmentKey(r, None, None)))
        chain.append((LEVEL_GLOBAL, GLOBAL_KEY))
        return chain

    def resolve(self, region: Any, breed_class: Any, season: Any) -> SegmentMatch:
        for level, key in self._chain(region, breed_class, season):
            seg = self._segments.get(key)
            if seg is not None:
                return SegmentMatch(segment=seg, level=level)
        # unreachable while the constructor guarantees the global key
        raise SegmentNotFoundError(f"No segment for ({region}, {breed_class}, {season})")

    def to_dict(self) -> Dict[str, Any]:
        segs = sorted(
            (s.to_dict() for s in self._segments.values()),
            key=lambda d: (d["region"] or "", d["breed_class"] or "", d["season"] or ""),
        )
        return {"version": self.version, "segments": segs}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RegistrySnapshot":
        if "segments" not in payload:
            raise KeyError(f"Registry payload missing 'segments'. Found keys: {list(payload.keys())}")
        return cls(
            version=str(payload.get("version", "unversioned")),
            segments=[RiskSegment.from_dict(d) for d in payload["segments"]],
        )


def load_snapshot(path: Union[str, Path]) -> RegistrySnapshot:
    """
    Load a snapshot written by the fitting job.

    Supported: .json, or a .joblib artifact holding the same dict payload.
    """
    path = Path(path)
    suf = path.suffix.lower()
    if suf == ".json":
        payload = read_json(path)
    elif suf in {".joblib", ".pkl"}:
        import joblib

        payload = joblib.load(path)
    else:
        raise ValueError(f"Unsupported registry snapshot format: {suf}")

    snap = RegistrySnapshot.from_dict(payload)
    logger.info("Loaded registry snapshot %s from %s", snap, path)
    return snap


class RiskModelRegistry:
    """Holder for the current snapshot with atomic swap semantics."""

    def __init__(self, snapshot: Optional[RegistrySnapshot] = None) -> None:
        self._snapshot = snapshot
        self._swap_lock = threading.Lock()

    def current(self) -> Optional[RegistrySnapshot]:
        return self._snapshot

    def swap(self, snapshot: RegistrySnapshot) -> Optional[RegistrySnapshot]:
        """Publish a new snapshot; returns the one it replaced."""
        if not isinstance(snapshot, RegistrySnapshot):
            raise TypeError(f"Expected RegistrySnapshot, got {type(snapshot).__name__}")
        with self._swap_lock:
            old = self._snapshot
            self._snapshot = snapshot
        logger.info(
            "Registry swapped: %s -> %s", old.version if old else None, snapshot.version
        )
        return old

    def resolve(self, region: Any, breed_class: Any, season: Any) -> Optional[SegmentMatch]:
        snap = self._snapshot
        if snap is None:
            return None
        return snap.resolve(region, breed_class, season)
