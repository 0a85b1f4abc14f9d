# src/herdrisk/pricing/credibility.py
"""
Credibility policies.

Contract: Z(n) is in [0, 1] and non-decreasing in the segment's observation
count n. Z is the weight on the segment rate, so the more history a segment
has, the more it is trusted over the individual animal's signal.
"""

from __future__ import annotations

import math
from typing import Callable

from herdrisk.pricing.config import PricingConfig

CredibilityPolicy = Callable[[int], float]


def buhlmann(observation_count: int, k: float) -> float:
    """Z = n / (n + k)."""
    n = max(int(observation_count), 0)
    return n / (n + k)


def limited_fluctuation(observation_count: int, full_count: float) -> float:
    """Square-root rule: Z = min(1, sqrt(n / n_full))."""
    n = max(int(observation_count), 0)
    return min(1.0, math.sqrt(n / full_count))


def policy_from_config(cfg: PricingConfig, k_override: float | None = None) -> CredibilityPolicy:
    if cfg.credibility_policy == "limited_fluctuation":
        return lambda n: limited_fluctuation(n, cfg.full_credibility_count)
    k = k_override if k_override is not None else cfg.credibility_k
    return lambda n: buhlmann(n, k)
