# src/herdrisk/pricing/config.py
"""
Pricing configuration.

Kept small and explainable:
- loading_factor: expense + margin multiplier on the pure premium (>= 1)
- anomaly_loading: how strongly the behaviour anomaly score lifts the
  individual claim rate
- credibility policy (buhlmann or limited_fluctuation) and its parameters
- individual_base_rate / individual_severity: used only when no risk segment
  is available and the animal is priced from its own signal
- breed_classes: breed -> breed class used in the segment key
- risk tier cutoffs on the blended expected frequency
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional

CREDIBILITY_POLICIES = ("buhlmann", "limited_fluctuation")

DEFAULT_BREED_CLASSES: Dict[str, str] = {
    "angus": "beef",
    "hereford": "beef",
    "brahman": "beef",
    "charolais": "beef",
    "wagyu": "beef",
    "holstein": "dairy",
    "friesian": "dairy",
    "jersey": "dairy",
    "guernsey": "dairy",
    "merino": "sheep",
    "dorper": "sheep",
}


@dataclass(frozen=True)
class PricingConfig:
    currency: str = "AUD"

    # Premium = frequency * severity * sum_insured * loading_factor
    loading_factor: float = 1.35

    # individual_rate = base_rate * (1 + anomaly_loading * anomaly_score)
    anomaly_loading: float = 1.0

    credibility_policy: str = "buhlmann"
    # Z = n / (n + k)
    credibility_k: float = 50.0
    # Z = min(1, sqrt(n / n_full))
    full_credibility_count: float = 1082.0

    # Standalone basis when no segment exists (livestock mortality: total loss)
    individual_base_rate: float = 0.03
    individual_severity: float = 1.0

    hemisphere: str = "south"
    breed_classes: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_BREED_CLASSES))

    # Tiering on expected annual frequency
    tier_low: float = 0.02
    tier_high: float = 0.06

    def __post_init__(self) -> None:
        if self.loading_factor < 1.0:
            raise ValueError(f"loading_factor must be >= 1, got {self.loading_factor}")
        if self.anomaly_loading < 0.0:
            raise ValueError(f"anomaly_loading must be >= 0, got {self.anomaly_loading}")
        if self.credibility_policy not in CREDIBILITY_POLICIES:
            raise ValueError(
                f"credibility_policy must be one of {CREDIBILITY_POLICIES}, got {self.credibility_policy!r}"
            )
        if self.credibility_k <= 0 or self.full_credibility_count <= 0:
            raise ValueError("credibility_k and full_credibility_count must be > 0")
        if self.individual_base_rate < 0 or not 0.0 < self.individual_severity <= 1.0:
            raise ValueError("individual_base_rate must be >= 0 and individual_severity in (0, 1]")
        if self.hemisphere not in ("north", "south"):
            raise ValueError(f"hemisphere must be 'north' or 'south', got {self.hemisphere!r}")
        if self.tier_low > self.tier_high:
            raise ValueError("tier_low must be <= tier_high")

    def breed_class_for(self, breed: Optional[str]) -> Optional[str]:
        if not breed:
            return None
        b = breed.strip().lower()
        return self.breed_classes.get(b, b)


_OVERRIDABLE = (
    "currency",
    "loading_factor",
    "anomaly_loading",
    "credibility_policy",
    "credibility_k",
    "full_credibility_count",
    "individual_base_rate",
    "individual_severity",
    "hemisphere",
    "tier_low",
    "tier_high",
)


def merge_pricing_overrides(overrides: Mapping[str, Any], base: PricingConfig) -> PricingConfig:
    """
    Apply caller overrides to PricingConfig safely.
    None values are ignored; unknown keys raise.
    """
    unknown = [k for k in overrides if k not in _OVERRIDABLE and k != "breed_classes"]
    if unknown:
        raise KeyError(f"Unknown pricing override(s): {unknown}")

    cfg_dict = asdict(base)
    for k in _OVERRIDABLE:
        v = overrides.get(k)
        if v is not None:
            cfg_dict[k] = v
    if overrides.get("breed_classes") is not None:
        merged = dict(base.breed_classes)
        merged.update({str(k).lower(): str(v).lower() for k, v in overrides["breed_classes"].items()})
        cfg_dict["breed_classes"] = merged
    return PricingConfig(**cfg_dict)  # type: ignore[arg-type]
