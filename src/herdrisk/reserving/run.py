# src/herdrisk/reserving/run.py
"""
Run chain-ladder reserving over claims history.

Input: CSV/Parquet of (origin_period, development_period, cumulative_amount)
rows, optionally with a product-line column to reserve several triangles in
one run.

Outputs:
- reports/reserve_report.json (per triangle: factors, ultimates, IBNR, or the error)

Usage:
  python -m herdrisk.reserving.run --in_path data/raw/claims.csv
  python -m herdrisk.reserving.run --in_path data/raw/claims.parquet --group_col product_line --tail_factor 1.02
"""

from __future__ import annotations

import argparse
import time
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from herdrisk.domain.errors import MalformedTriangleError
from herdrisk.reserving.chain_ladder import (
    DEV_COL,
    ORIGIN_COL,
    VALUE_COL,
    ClaimsTriangle,
    ReserveOutcome,
    reserve_many,
)
from herdrisk.utils.config import get_aws_config, get_engine_settings, get_paths
from herdrisk.utils.io import read_df, sha256_file, write_json
from herdrisk.utils.logs import setup_logging
from herdrisk.utils.model_store import publish_outputs


def triangles_from_frame(df: pd.DataFrame, group_col: Optional[str] = None) -> Dict[str, Any]:
    """
    Split a claims frame into named triangles.

    Malformed groups are kept as the exception so the caller can report them
    without losing the other groups.
    """
    groups = [("all", df)] if group_col is None else [(str(k), g) for k, g in df.groupby(group_col, sort=True)]
    out: Dict[str, Any] = {}
    for name, g in groups:
        try:
            out[name] = ClaimsTriangle.from_frame(g, ORIGIN_COL, DEV_COL, VALUE_COL)
        except MalformedTriangleError as e:
            out[name] = e
    return out


def build_report(
    in_path: Path,
    group_col: Optional[str],
    tail_factor: float,
    max_workers: int = 4,
) -> Dict[str, Any]:
    df = read_df(in_path)
    if group_col is not None and group_col not in df.columns:
        raise ValueError(f"group column {group_col!r} not found in {in_path}")

    parsed = triangles_from_frame(df, group_col)
    valid = {k: v for k, v in parsed.items() if isinstance(v, ClaimsTriangle)}
    outcomes: Dict[str, ReserveOutcome] = reserve_many(valid, tail_factor=tail_factor, max_workers=max_workers)
    for name, err in parsed.items():
        if isinstance(err, MalformedTriangleError):
            outcomes[name] = ReserveOutcome(name=name, error=str(err))

    return {
        "created_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "source_path": str(in_path),
        "source_sha256": sha256_file(in_path),
        "tail_factor": tail_factor,
        "triangles": {
            name: (o.result.to_dict() if o.ok else {"error": o.error})  # type: ignore[union-attr]
            for name, o in sorted(outcomes.items())
        },
    }


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Chain-ladder IBNR from a cumulative claims table.")
    p.add_argument("--in_path", type=str, required=True, help="Claims CSV/Parquet with origin/development/cumulative columns.")
    p.add_argument("--report_path", type=str, default=None, help="Output report JSON path. Default: reports/reserve_report.json")
    p.add_argument("--group_col", type=str, default=None, help="Optional column splitting independent triangles (e.g. product_line).")
    p.add_argument("--tail_factor", type=float, default=1.0, help="Tail factor applied beyond the last observed lag.")
    p.add_argument("--max_workers", type=int, default=4, help="Parallel triangles.")
    p.add_argument("--upload_s3", action="store_true", help="Upload the report to S3 (requires env S3_BUCKET)")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    setup_logging(get_engine_settings().log_level)
    paths = get_paths()

    report_path = Path(args.report_path) if args.report_path else paths.reports_dir / "reserve_report.json"
    report = build_report(Path(args.in_path), args.group_col, args.tail_factor, args.max_workers)
    write_json(report, report_path)

    print(f"[OK] Reserve report saved: {report_path}")
    for name, tri in report["triangles"].items():
        if "error" in tri:
            print(f"[FAIL] {name}: {tri['error']}")
        else:
            print(f"[OK] {name}: total IBNR = {tri['total_ibnr']:.2f}")

    if args.upload_s3:
        for uri in publish_outputs([("reports", report_path)], get_aws_config()):
            print(f"[OK] Uploaded to S3: {uri}")


if __name__ == "__main__":
    main()
