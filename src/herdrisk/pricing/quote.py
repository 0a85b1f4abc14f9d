# src/herdrisk/pricing/quote.py
"""
Pricing and quote generation.

Provides:
- season lookup for the segment key
- risk tier assignment
- credibility-blended expected frequency
- premium calculation and the immutable Quote

Formula:
    individual_rate = base_rate * (1 + anomaly_loading * anomaly_score)
    frequency       = Z * segment_rate + (1 - Z) * individual_rate
    premium         = frequency * severity * sum_insured * loading_factor

Z comes from the configured credibility policy and the segment's observation
count. With no feature window Z = 1 (segment only); with no segment Z = 0 and
the animal is priced on its own signal. With neither, pricing fails with
InsufficientDataError: a quote is never silently defaulted to zero. The same
error is raised when a positive expected frequency rounds to a 0.00 premium
(sum insured too small to quote in cents).

Identical inputs always give an identical Quote, including quote_id, as long
as `as_of` (or a feature window) fixes the issue time.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict
from datetime import date, datetime, timezone
from typing import Optional, Union

from herdrisk.domain.entities import AnimalProfile, FeatureWindow, Quote
from herdrisk.domain.errors import InsufficientDataError
from herdrisk.pricing.config import PricingConfig
from herdrisk.pricing.credibility import policy_from_config
from herdrisk.registry.segments import RegistrySnapshot, RiskModelRegistry, SegmentMatch
from herdrisk.utils.io import sha256_json

logger = logging.getLogger(__name__)

_NORTH_SEASONS = {
    12: "winter", 1: "winter", 2: "winter",
    3: "spring", 4: "spring", 5: "spring",
    6: "summer", 7: "summer", 8: "summer",
    9: "autumn", 10: "autumn", 11: "autumn",
}
_FLIP = {"winter": "summer", "summer": "winter", "spring": "autumn", "autumn": "spring"}


def season_for(when: Union[date, datetime], hemisphere: str = "south") -> str:
    """Meteorological season for a date."""
    s = _NORTH_SEASONS[when.month]
    return s if hemisphere == "north" else _FLIP[s]


def assign_risk_tier(frequency: float, cfg: PricingConfig) -> str:
    """
    Simple tiering based on expected frequency thresholds.

    - Standard: f < tier_low
    - Medium  : tier_low <= f < tier_high
    - High    : f >= tier_high
    """
    if frequency < cfg.tier_low:
        return "standard"
    if frequency < cfg.tier_high:
        return "medium"
    return "high"


def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)


def _resolve_segment(
    registry: Union[RiskModelRegistry, RegistrySnapshot, None],
    region: Optional[str],
    breed_class: Optional[str],
    season: str,
) -> tuple[Optional[SegmentMatch], Optional[RegistrySnapshot]]:
    snapshot = registry.current() if isinstance(registry, RiskModelRegistry) else registry
    if snapshot is None:
        return None, None
    return snapshot.resolve(region, breed_class, season), snapshot


def price(
    animal_id: str,
    profile: AnimalProfile,
    feature_window: Optional[FeatureWindow],
    sum_insured: float,
    *,
    registry: Union[RiskModelRegistry, RegistrySnapshot, None] = None,
    cfg: Optional[PricingConfig] = None,
    as_of: Optional[datetime] = None,
    supersedes: Optional[str] = None,
) -> Quote:
    """
    Produce an indicative premium for one animal.

    Raises InsufficientDataError when there is no segment and no feature window,
    or when a positive premium would round to 0.00.
    """
    cfg = cfg or PricingConfig()

    if profile.animal_id != animal_id:
        raise ValueError(f"Profile belongs to {profile.animal_id!r}, not {animal_id!r}")
    if feature_window is not None and feature_window.animal_id != animal_id:
        raise ValueError(f"Feature window belongs to {feature_window.animal_id!r}, not {animal_id!r}")
    if not math.isfinite(sum_insured) or sum_insured <= 0:
        raise ValueError(f"sum_insured must be a positive number, got {sum_insured}")

    if as_of is not None:
        issued_at = _as_utc(as_of)
    elif feature_window is not None:
        issued_at = _as_utc(feature_window.window_end)
    else:
        issued_at = datetime.now(timezone.utc)
        logger.debug("No as_of or feature window for %s; issuing at wall-clock time", animal_id)

    season = season_for(issued_at, cfg.hemisphere)
    breed_class = cfg.breed_class_for(profile.breed)
    match, snapshot = _resolve_segment(registry, profile.region, breed_class, season)

    if match is None and feature_window is None:
        raise InsufficientDataError(animal_id)

    segment = match.segment if match is not None else None

    base_rate = segment.frequency if segment is not None else cfg.individual_base_rate
    individual_rate: Optional[float] = None
    if feature_window is not None:
        individual_rate = base_rate * (1.0 + cfg.anomaly_loading * feature_window.anomaly_score)

    if segment is None:
        credibility = 0.0
    elif individual_rate is None:
        credibility = 1.0
    else:
        credibility = policy_from_config(cfg, segment.credibility_k)(segment.observation_count)

    segment_rate = segment.frequency if segment is not None else 0.0
    frequency = credibility * segment_rate + (1.0 - credibility) * (individual_rate or 0.0)
    severity = segment.severity if segment is not None else cfg.individual_severity

    pure = frequency * severity * float(sum_insured) * cfg.loading_factor
    premium = round(pure, 2)
    if premium == 0.0 and frequency > 0.0:
        raise InsufficientDataError(
            animal_id, reason=f"premium {pure:.6f} {cfg.currency} rounds to zero (sum_insured={sum_insured})"
        )

    quote_id = sha256_json(
        {
            "animal_id": animal_id,
            "profile": asdict(profile),
            "feature_window": feature_window.to_dict() if feature_window is not None else None,
            "sum_insured": float(sum_insured),
            "issued_at": issued_at.isoformat(),
            "registry": None if snapshot is None else [snapshot.version, snapshot.fingerprint],
            "cfg": asdict(cfg),
            "supersedes": supersedes,
        }
    )

    quote = Quote(
        quote_id=quote_id,
        animal_id=animal_id,
        premium=premium,
        sum_insured=float(sum_insured),
        currency=cfg.currency,
        issued_at=issued_at,
        segment_key=segment.key.to_dict() if segment is not None else None,
        segment_level=match.level if match is not None else None,
        registry_version=snapshot.version if snapshot is not None else None,
        expected_frequency=float(frequency),
        severity=float(severity),
        credibility=float(credibility),
        individual_rate=individual_rate,
        loading_factor=cfg.loading_factor,
        risk_tier=assign_risk_tier(frequency, cfg),
        supersedes=supersedes,
    )
    logger.debug(
        "Priced %s: segment=%s level=%s Z=%.3f premium=%.2f",
        animal_id, quote.segment_key, quote.segment_level, credibility, premium,
    )
    return quote
