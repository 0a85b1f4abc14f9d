from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    return v if v is not None and v != "" else default


def _env_float(key: str, default: float) -> float:
    raw = _env(key, None)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got: {raw!r}") from e


@dataclass(frozen=True)
class ProjectPaths:
    processed_dir: Path
    reports_dir: Path
    registry_dir: Path


def get_project_root() -> Path:
    """
    Resolve repo root robustly.
    Assumes this file lives at: <root>/src/herdrisk/utils/config.py
    """
    return Path(__file__).resolve().parents[3]


def get_paths() -> ProjectPaths:
    root = get_project_root()
    return ProjectPaths(
        processed_dir=root / "data" / "processed",
        reports_dir=root / "reports",
        registry_dir=root / "artifacts" / "registry",
    )


@dataclass(frozen=True)
class AwsConfig:
    region: str
    s3_bucket: Optional[str]
    s3_prefix: str

    @property
    def enabled(self) -> bool:
        return self.s3_bucket is not None


def get_aws_config() -> AwsConfig:
    """
    Configure S3 usage via environment variables.
    Keep it optional so local runs are frictionless.

    Env:
      AWS_REGION (default: eu-west-2)
      S3_BUCKET  (optional)
      S3_PREFIX  (default: herdrisk)
    """
    return AwsConfig(
        region=_env("AWS_REGION", "eu-west-2") or "eu-west-2",
        s3_bucket=_env("S3_BUCKET", None),
        s3_prefix=_env("S3_PREFIX", "herdrisk") or "herdrisk",
    )


@dataclass(frozen=True)
class EngineSettings:
    window_seconds: float
    loading_factor: float
    credibility_k: float
    hemisphere: str
    registry_local_path: str
    registry_s3_uri: Optional[str]
    log_level: str


def get_engine_settings() -> EngineSettings:
    """
    Engine knobs read from the environment.

    Env:
      HERDRISK_WINDOW_SECONDS  (default: 3600)
      HERDRISK_LOADING_FACTOR  (default: 1.35)
      HERDRISK_CREDIBILITY_K   (default: 50)
      HERDRISK_HEMISPHERE      (default: south)
      REGISTRY_LOCAL_PATH      (default: artifacts/registry/segments.json)
      REGISTRY_S3_URI          (optional, s3://bucket/key)
      HERDRISK_LOG_LEVEL       (default: INFO)
    """
    default_registry = get_paths().registry_dir / "segments.json"
    return EngineSettings(
        window_seconds=_env_float("HERDRISK_WINDOW_SECONDS", 3600.0),
        loading_factor=_env_float("HERDRISK_LOADING_FACTOR", 1.35),
        credibility_k=_env_float("HERDRISK_CREDIBILITY_K", 50.0),
        hemisphere=(_env("HERDRISK_HEMISPHERE", "south") or "south").lower(),
        registry_local_path=_env("REGISTRY_LOCAL_PATH", str(default_registry)) or str(default_registry),
        registry_s3_uri=_env("REGISTRY_S3_URI", None),
        log_level=(_env("HERDRISK_LOG_LEVEL", "INFO") or "INFO").upper(),
    )
