"""Severity tiers and size/confidence helpers shared by the analyzers."""

from __future__ import annotations

from enum import Enum

from heapleak.config import KB, MB


class Severity(str, Enum):
    """Severity tier of an analyzer row or leak finding."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}

# Confidence is always reported within this range.
MIN_CONFIDENCE: float = 10.0
MAX_CONFIDENCE: float = 100.0

# Absolute deltas between two snapshots that set a finding's severity.
_CRITICAL_BYTES: int = 50 * MB
_HIGH_BYTES: int = 10 * MB
_MEDIUM_BYTES: int = 1 * MB
_CRITICAL_OBJECTS: int = 100_000
_HIGH_OBJECTS: int = 10_000
_MEDIUM_OBJECTS: int = 1_000


def clamp_confidence(value: float) -> float:
    return round(max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, value)), 1)


def severity_from_delta(bytes_delta: int, object_delta: int = 0) -> Severity:
    """Severity from absolute memory and object-count growth.

    Shrinking heaps (negative deltas) are always LOW.
    """
    if bytes_delta >= _CRITICAL_BYTES or object_delta >= _CRITICAL_OBJECTS:
        return Severity.CRITICAL
    if bytes_delta >= _HIGH_BYTES or object_delta >= _HIGH_OBJECTS:
        return Severity.HIGH
    if bytes_delta >= _MEDIUM_BYTES or object_delta >= _MEDIUM_OBJECTS:
        return Severity.MEDIUM
    return Severity.LOW


def format_bytes(num_bytes: float) -> str:
    """Human-readable byte count, e.g. ``1.5 MB``."""
    sign = "-" if num_bytes < 0 else ""
    value = abs(float(num_bytes))
    if value < KB:
        return f"{sign}{int(value)} B"
    for unit in ("KB", "MB", "GB"):
        value /= 1024.0
        if value < 1024.0 or unit == "GB":
            return f"{sign}{value:.1f} {unit}"
    return f"{sign}{value:.1f} GB"  # pragma: no cover
