# src/herdrisk/pricing/run.py
"""
Batch quoting.

Inputs:
- feature windows (from herdrisk.features.build); the latest window per animal is used
- animal profiles CSV/Parquet with a sum_insured column
- registry snapshot (JSON or joblib), default REGISTRY_LOCAL_PATH

Outputs:
- data/processed/quotes.parquet
- reports/quote_report.json (quoted count, animals that could not be priced)

Usage:
  python -m herdrisk.pricing.run --features data/processed/feature_windows.parquet --profiles data/raw/profiles.csv
  python -m herdrisk.pricing.run --features ... --profiles ... --registry artifacts/registry/segments.json --loading_factor 1.5
"""

from __future__ import annotations

import argparse
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from herdrisk.domain.entities import AnimalProfile, FeatureWindow, Quote
from herdrisk.domain.errors import InsufficientDataError
from herdrisk.inference.service import get_registry, quote_animal
from herdrisk.pricing.config import PricingConfig
from herdrisk.registry.segments import RiskModelRegistry
from herdrisk.utils.config import get_aws_config, get_engine_settings, get_paths
from herdrisk.utils.io import ensure_dir, read_df, write_df, write_json
from herdrisk.utils.logs import setup_logging
from herdrisk.utils.model_store import publish_outputs

PROFILE_REQUIRED = ["animal_id", "sex", "breed", "date_of_birth", "owner_id", "sum_insured"]
PROFILE_TEXT_COLUMNS = {"animal_id": str, "owner_id": str, "brand": str, "tag_id": str, "region": str}


def _opt_str(v: Any) -> Optional[str]:
    if v is None or (isinstance(v, float) and pd.isna(v)):
        return None
    return str(v)


def profiles_from_frame(df: pd.DataFrame) -> List[Tuple[AnimalProfile, float]]:
    missing = [c for c in PROFILE_REQUIRED if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required profile columns: {missing}")

    out: List[Tuple[AnimalProfile, float]] = []
    for row in df.to_dict(orient="records"):
        dob = row["date_of_birth"]
        if isinstance(dob, datetime):
            dob = dob.date()
        elif not isinstance(dob, date):
            dob = pd.to_datetime(dob).date()
        profile = AnimalProfile(
            animal_id=str(row["animal_id"]),
            sex=str(row["sex"]),
            breed=str(row["breed"]),
            date_of_birth=dob,
            owner_id=str(row["owner_id"]),
            brand=_opt_str(row.get("brand")),
            tag_id=_opt_str(row.get("tag_id")),
            region=_opt_str(row.get("region")),
        )
        out.append((profile, float(row["sum_insured"])))
    return out


def latest_windows_from_frame(df: pd.DataFrame) -> Dict[str, FeatureWindow]:
    if df.empty:
        return {}
    df = df.copy()
    df["window_end"] = pd.to_datetime(df["window_end"], utc=True)
    latest = df.sort_values("window_end", kind="stable").groupby("animal_id", sort=False).tail(1)

    out: Dict[str, FeatureWindow] = {}
    for row in latest.to_dict(orient="records"):
        out[str(row["animal_id"])] = FeatureWindow(
            animal_id=str(row["animal_id"]),
            window_end=row["window_end"].to_pydatetime(),
            distance_m=float(row["distance_m"]),
            time_delta_s=float(row["time_delta_s"]),
            in_geofence=bool(row["in_geofence"]),
            anomaly_score=float(row["anomaly_score"]),
            sample_count=int(row["sample_count"]),
            out_of_order=bool(row.get("out_of_order", False)),
            geofence_id=_opt_str(row.get("geofence_id")),
        )
    return out


def quote_portfolio(
    profiles: List[Tuple[AnimalProfile, float]],
    windows: Dict[str, FeatureWindow],
    registry: RiskModelRegistry,
    cfg: PricingConfig,
    as_of: Optional[datetime] = None,
) -> Tuple[List[Quote], List[Dict[str, str]]]:
    quotes: List[Quote] = []
    unpriced: List[Dict[str, str]] = []
    for profile, sum_insured in profiles:
        try:
            quotes.append(
                quote_animal(
                    profile,
                    windows.get(profile.animal_id),
                    sum_insured,
                    registry=registry,
                    pricing_cfg=cfg,
                    as_of=as_of,
                )
            )
        except InsufficientDataError as e:
            unpriced.append({"animal_id": profile.animal_id, "reason": str(e)})
    return quotes, unpriced


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Quote a portfolio of animals from feature windows and profiles.")
    p.add_argument("--features", type=str, required=True, help="Feature windows parquet/CSV.")
    p.add_argument("--profiles", type=str, required=True, help="Animal profiles CSV/Parquet (with sum_insured).")
    p.add_argument("--registry", type=str, default=None, help="Registry snapshot path (default: REGISTRY_LOCAL_PATH).")
    p.add_argument("--out_path", type=str, default=None, help="Quotes output path. Default: data/processed/quotes.parquet")
    p.add_argument("--report_path", type=str, default=None, help="Quote report JSON path. Default: reports/quote_report.json")
    p.add_argument("--as_of", type=str, default=None, help="Issue timestamp (ISO-8601) for reproducible reruns.")
    p.add_argument("--loading_factor", type=float, default=None, help="Override loading factor (>= 1).")
    p.add_argument("--currency", type=str, default=None, help="Override quote currency.")
    p.add_argument("--upload_s3", action="store_true", help="Upload quotes + report to S3 (requires env S3_BUCKET)")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_engine_settings()
    setup_logging(settings.log_level)
    paths = get_paths()

    cfg = PricingConfig(
        currency=args.currency or "AUD",
        loading_factor=args.loading_factor or settings.loading_factor,
        credibility_k=settings.credibility_k,
        hemisphere=settings.hemisphere,
    )
    as_of = pd.Timestamp(args.as_of).to_pydatetime() if args.as_of else None

    registry = get_registry(snapshot_path=args.registry)
    windows = latest_windows_from_frame(read_df(args.features, dtype={"animal_id": str, "geofence_id": str}))
    profiles = profiles_from_frame(read_df(args.profiles, dtype=PROFILE_TEXT_COLUMNS))

    quotes, unpriced = quote_portfolio(profiles, windows, registry, cfg, as_of=as_of)

    out_path = Path(args.out_path) if args.out_path else paths.processed_dir / "quotes.parquet"
    report_path = Path(args.report_path) if args.report_path else paths.reports_dir / "quote_report.json"
    ensure_dir(out_path.parent)

    frame = pd.DataFrame([q.to_dict() for q in quotes])
    if not frame.empty:
        frame["segment_key"] = frame["segment_key"].astype(str)
    write_df(frame, out_path)

    snap = registry.current()
    write_json(
        {
            "registry_version": snap.version if snap else None,
            "registry_fingerprint": snap.fingerprint if snap else None,
            "profiles": len(profiles),
            "quoted": len(quotes),
            "unpriced": unpriced,
            "total_premium": float(sum(q.premium for q in quotes)),
            "currency": cfg.currency,
        },
        report_path,
    )

    print(f"[OK] Quotes saved      : {out_path}")
    print(f"[OK] Quote report saved: {report_path}")
    print(f"Quoted={len(quotes)} | Unpriced={len(unpriced)}")

    if args.upload_s3:
        for uri in publish_outputs([("quotes", out_path), ("reports", report_path)], get_aws_config()):
            print(f"[OK] Uploaded to S3: {uri}")


if __name__ == "__main__":
    main()
