# src/herdrisk/features/partition.py
"""
Partition telemetry by animal so workers never share window state.

Partition keys come from sha256 of the animal id, not Python's hash(), so
the assignment is stable across processes and interpreter runs.
"""

from __future__ import annotations

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional

from herdrisk.domain.entities import FeatureWindow, TelemetryRecord
from herdrisk.features.window import DEFAULT_WINDOW_SECONDS, AnomalyScorer, FeatureDeriver

logger = logging.getLogger(__name__)


def partition_key(animal_id: str, n_partitions: int) -> int:
    if n_partitions < 1:
        raise ValueError(f"n_partitions must be >= 1, got {n_partitions}")
    digest = hashlib.sha256(animal_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % n_partitions


def partition_records(records: Iterable[TelemetryRecord], n_partitions: int) -> List[List[TelemetryRecord]]:
    """Split records into n_partitions lists, keeping per-animal order."""
    parts: List[List[TelemetryRecord]] = [[] for _ in range(n_partitions)]
    for r in records:
        parts[partition_key(r.animal_id, n_partitions)].append(r)
    return parts


def derive_partitioned(
    records: Iterable[TelemetryRecord],
    *,
    n_workers: int = 4,
    window_seconds: float = DEFAULT_WINDOW_SECONDS,
    scorer: Optional[AnomalyScorer] = None,
) -> Dict[str, List[FeatureWindow]]:
    """
    Derive features with one FeatureDeriver per worker.

    Returns windows grouped by animal id, each list in record order.
    """
    parts = partition_records(records, n_workers)

    def _run(part: List[TelemetryRecord]) -> List[FeatureWindow]:
        return FeatureDeriver(window_seconds=window_seconds, scorer=scorer).derive_batch(part)

    with ThreadPoolExecutor(max_workers=n_workers) as ex:
        results = list(ex.map(_run, parts))

    out: Dict[str, List[FeatureWindow]] = {}
    for windows in results:
        for w in windows:
            out.setdefault(w.animal_id, []).append(w)

    logger.info("Derived %d windows for %d animals across %d workers",
                sum(len(v) for v in out.values()), len(out), n_workers)
    return out
