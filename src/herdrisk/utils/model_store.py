# src/herdrisk/utils/model_store.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from herdrisk.utils.config import AwsConfig
from herdrisk.utils.io import s3_download_file, s3_upload_file

logger = logging.getLogger(__name__)


def parse_s3_uri(uri: str) -> tuple[str, str]:
    p = urlparse(uri)
    if p.scheme != "s3" or not p.netloc:
        raise ValueError(f"REGISTRY_S3_URI must be s3://bucket/key, got: {uri}")
    return p.netloc, p.path.lstrip("/")


def ensure_snapshot_downloaded(*, snapshot_s3_uri: str, local_path: str, aws_region: Optional[str] = None) -> str:
    """
    Ensure the registry snapshot exists at local_path. If not, download from S3.
    Returns local_path.
    """
    lp = Path(local_path)
    if lp.exists() and lp.stat().st_size > 0:
        return str(lp)

    bucket, key = parse_s3_uri(snapshot_s3_uri)
    logger.info("Downloading registry snapshot s3://%s/%s -> %s", bucket, key, lp)
    s3_download_file(bucket, key, lp, region=aws_region)
    return str(lp)


def publish_outputs(outputs: Sequence[Tuple[str, Path]], aws: AwsConfig) -> List[str]:
    """
    Upload pipeline outputs to S3 and return their URIs.

    Key layout: s3://<bucket>/<prefix>/<folder>/<filename>, one (folder, path)
    pair per output, e.g. ("features", windows.parquet), ("reports", report.json).
    """
    if not aws.enabled:
        raise RuntimeError("S3 upload requested but S3_BUCKET is not set in environment.")
    bucket = aws.s3_bucket  # type: ignore[assignment]
    prefix = aws.s3_prefix.rstrip("/")

    uris: List[str] = []
    for folder, local_path in outputs:
        key = f"{prefix}/{folder}/{Path(local_path).name}"
        s3_upload_file(Path(local_path), bucket=bucket, key=key, region=aws.region)
        uris.append(f"s3://{bucket}/{key}")
    return uris
