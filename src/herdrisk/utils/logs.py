from __future__ import annotations

import logging
from typing import Optional


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for CLI entry points."""
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
