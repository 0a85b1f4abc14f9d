# src/herdrisk/inference/service.py
"""
End-to-end service for the herdrisk pipeline.

Single source of truth:
- raw telemetry dicts -> normalize -> derive features (per-batch reject report)
- profile + latest window + registry -> price -> Quote
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from herdrisk.domain.entities import AnimalProfile, FeatureWindow, Quote
from herdrisk.features.window import FeatureDeriver
from herdrisk.pricing.config import PricingConfig, merge_pricing_overrides
from herdrisk.pricing.quote import price
from herdrisk.registry.segments import RiskModelRegistry, load_snapshot
from herdrisk.telemetry.normalize import RejectedRecord, normalize_batch
from herdrisk.utils.config import get_aws_config, get_engine_settings
from herdrisk.utils.model_store import ensure_snapshot_downloaded

logger = logging.getLogger(__name__)

# In-process registry holder (shared, swapped atomically on reload)
_REGISTRY = RiskModelRegistry()


def get_registry(snapshot_path: Optional[str] = None, force_reload: bool = False) -> RiskModelRegistry:
    """
    Load the registry snapshot once and cache it.

    Path resolution: explicit snapshot_path, else REGISTRY_LOCAL_PATH, fetched
    from REGISTRY_S3_URI first when set and the local file is absent.
    """
    if force_reload or _REGISTRY.current() is None:
        settings = get_engine_settings()
        if snapshot_path is None:
            snapshot_path = settings.registry_local_path
            if settings.registry_s3_uri:
                snapshot_path = ensure_snapshot_downloaded(
                    snapshot_s3_uri=settings.registry_s3_uri,
                    local_path=snapshot_path,
                    aws_region=get_aws_config().region,
                )
        _REGISTRY.swap(load_snapshot(Path(snapshot_path)))
    return _REGISTRY


@dataclass
class IngestOutcome:
    windows: List[FeatureWindow] = field(default_factory=list)
    rejected: List[RejectedRecord] = field(default_factory=list)
    out_of_order: int = 0

    def latest_by_animal(self) -> Dict[str, FeatureWindow]:
        out: Dict[str, FeatureWindow] = {}
        for w in self.windows:
            out[w.animal_id] = w
        return out


def ingest_batch(raws: Iterable[Mapping[str, Any]], deriver: FeatureDeriver) -> IngestOutcome:
    """
    Normalize a raw batch and push the accepted records through the deriver.

    The deriver keeps its state, so consecutive batches continue each animal's window.
    """
    batch = normalize_batch(raws)
    windows = deriver.derive_batch(batch.records)
    return IngestOutcome(windows=windows, rejected=batch.rejected, out_of_order=batch.out_of_order)


def quote_animal(
    profile: AnimalProfile,
    feature_window: Optional[FeatureWindow],
    sum_insured: float,
    *,
    registry: Optional[RiskModelRegistry] = None,
    pricing_cfg: Optional[PricingConfig] = None,
    pricing_overrides: Optional[Dict[str, Any]] = None,
    as_of: Optional[datetime] = None,
) -> Quote:
    """
    Full quote generation for one animal:
      profile + latest window -> registry segment -> Quote
    """
    if pricing_cfg is None:
        settings = get_engine_settings()
        pricing_cfg = PricingConfig(
            loading_factor=settings.loading_factor,
            credibility_k=settings.credibility_k,
            hemisphere=settings.hemisphere,
        )
    cfg = merge_pricing_overrides(pricing_overrides or {}, pricing_cfg)
    reg = registry if registry is not None else get_registry()
    return price(profile.animal_id, profile, feature_window, sum_insured, registry=reg, cfg=cfg, as_of=as_of)
