from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import pandas as pd


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


def sha256_json(obj: Any) -> str:
    """Stable content hash of a JSON-serialisable object (sorted keys)."""
    payload = json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def write_json(obj: Any, path: Path) -> None:
    ensure_dir(path.parent)

    if is_dataclass(obj) and not isinstance(obj, type):
        payload = asdict(obj)
    else:
        payload = obj

    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False, default=str)


def read_json(path: Union[str, Path]) -> Any:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def read_df(path: Union[str, Path], dtype: Optional[Mapping[str, Any]] = None) -> pd.DataFrame:
    """dtype applies to CSV only (parquet carries its own schema); unknown columns are ignored."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    suf = path.suffix.lower()
    if suf == ".csv":
        if dtype:
            header = pd.read_csv(path, nrows=0).columns
            dtype = {k: v for k, v in dtype.items() if k in header}
        return pd.read_csv(path, dtype=dtype or None)
    if suf == ".parquet":
        return pd.read_parquet(path)
    raise ValueError(f"Unsupported dataframe format: {suf}")


def write_df(df: pd.DataFrame, path: Union[str, Path]) -> None:
    path = Path(path)
    ensure_dir(path.parent)

    suf = path.suffix.lower()
    if suf == ".csv":
        df.to_csv(path, index=False)
        return
    if suf == ".parquet":
        df.to_parquet(path, index=False)
        return
    raise ValueError(f"Unsupported dataframe format: {suf}")


# ---------------------------
# Optional S3 support
# ---------------------------
def _boto3_client(service: str, region: Optional[str] = None):
    import boto3

    return boto3.client(service, region_name=region)


def s3_upload_file(
    local_path: Path, bucket: str, key: str, region: Optional[str] = None
) -> None:
    local_path = Path(local_path)
    if not local_path.exists():
        raise FileNotFoundError(f"Local file not found: {local_path}")
    s3 = _boto3_client("s3", region=region)
    s3.upload_file(str(local_path), bucket, key)


def s3_download_file(
    bucket: str, key: str, local_path: Path, region: Optional[str] = None
) -> None:
    local_path = Path(local_path)
    ensure_dir(local_path.parent)
    s3 = _boto3_client("s3", region=region)
    s3.download_file(bucket, key, str(local_path))
