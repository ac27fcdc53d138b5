"""Analysis configuration.

All tunable thresholds live on :class:`AnalysisConfig`.  Values can be
overridden from ``HEAPLEAK_*`` environment variables (see
:meth:`AnalysisConfig.from_env`) or from a JSON mapping.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from heapleak.snapshot.filters import BUILT_IN_NAMES, ExclusionFilter

logger = logging.getLogger(__name__)

_ENV_PREFIX = "HEAPLEAK_"

KB: int = 1024
MB: int = 1024 * 1024


@dataclass(frozen=True)
class AnalysisConfig:
    """Thresholds shared by the analyzers, growth tracker and classifier."""

    # Exclusion filter
    min_retained_size: int = 1 * KB
    extra_excluded_names: Tuple[str, ...] = ()
    excluded_prefixes: Tuple[str, ...] = ()

    # Size ranking
    top_n: int = 50

    # Shape deduplication
    min_shape_node_size: int = 100
    min_shape_count: int = 2

    # Fan-out
    fanout_high_threshold: int = 50
    fanout_critical_threshold: int = 200

    # Detached reachability
    detached_max_depth: int = 20

    # Growth tracking
    growth_threshold: int = 1 * MB
    max_tracked_objects: int = 10_000

    # Retainer tracing
    trace_max_depth: int = 20

    # Decoding
    compute_retained_sizes: bool = False
    chunk_size: int = 50_000

    @property
    def excluded_names(self) -> FrozenSet[str]:
        return BUILT_IN_NAMES | frozenset(self.extra_excluded_names)

    def exclusion_filter(self, min_retained_size: Optional[int] = None) -> ExclusionFilter:
        return ExclusionFilter(
            min_retained_size=(
                self.min_retained_size if min_retained_size is None else min_retained_size
            ),
            excluded_names=self.excluded_names,
            excluded_prefixes=tuple(self.excluded_prefixes),
        )

    # -- serialisation helpers ------------------------------------------------

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["extra_excluded_names"] = list(self.extra_excluded_names)
        data["excluded_prefixes"] = list(self.excluded_prefixes)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AnalysisConfig:
        """Build a config from *data*, ignoring unknown keys."""
        values: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            values[f.name] = _coerce(f.name, f.default, data[f.name])
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> AnalysisConfig:
        """Build a config from ``HEAPLEAK_<FIELD>`` environment variables.

        List-valued fields take comma-separated values, booleans accept
        ``1/true/yes/on``.  Unparseable values are logged and ignored.
        """
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                values[f.name] = _coerce(f.name, f.default, raw)
            except ValueError:
                logger.warning(
                    "Ignoring invalid value %r for %s%s.",
                    raw, _ENV_PREFIX, f.name.upper(),
                )
        return cls(**values)

    def merged(self, overrides: Mapping[str, Any]) -> AnalysisConfig:
        data: Dict[str, Any] = self.to_dict()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return AnalysisConfig.from_dict(data)


def _coerce(name: str, default: Any, value: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off", ""):
            return False
        raise ValueError(f"{name}: expected a boolean, got {value!r}")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, tuple):
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return tuple(str(v) for v in value)
    return value
