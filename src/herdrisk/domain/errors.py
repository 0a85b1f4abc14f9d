# src/herdrisk/domain/errors.py
"""
Error kinds raised by the herdrisk core.

- ValidationError        : bad raw telemetry (recoverable, caller may re-submit)
- SegmentNotFoundError   : registry has no global default (fatal at startup)
- InsufficientDataError  : no pricing basis at all ("cannot price")
- MalformedTriangleError : claims triangle violates its invariants
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional


class HerdRiskError(Exception):
    """Base class for all herdrisk errors."""


class ValidationError(HerdRiskError):
    """
    Raised when a raw telemetry record fails validation.

    `violations` maps every offending field to a message, so a batch can
    report the complete problem in one pass.
    """

    def __init__(self, violations: Mapping[str, str], raw: Optional[Mapping[str, Any]] = None) -> None:
        self.violations: Dict[str, str] = dict(violations)
        self.raw = dict(raw) if raw is not None else None
        detail = "; ".join(f"{k}: {v}" for k, v in self.violations.items())
        super().__init__(f"Invalid telemetry record ({detail})")

    @property
    def fields(self) -> List[str]:
        return list(self.violations.keys())


class SegmentNotFoundError(HerdRiskError):
    """Raised when a registry snapshot cannot resolve even the global default segment."""


class InsufficientDataError(HerdRiskError):
    """Raised when neither a risk segment nor an individual signal is available."""

    def __init__(self, animal_id: str, reason: str = "no segment and no feature window") -> None:
        self.animal_id = animal_id
        super().__init__(f"Cannot price animal {animal_id!r}: {reason}")


class MalformedTriangleError(HerdRiskError):
    """Raised when a claims triangle violates its invariants (e.g. decreasing cumulative values)."""

    def __init__(self, message: str, origin: Optional[Any] = None) -> None:
        self.origin = origin
        super().__init__(message)
