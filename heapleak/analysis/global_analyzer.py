"""User-defined globals hanging off window/global objects.

Every property edge leaving a window or global holder is a global
variable.  Built-in globals (``document``, ``fetch``, ``console``, ...) and
primitive values are skipped; what remains is ranked by retained size and
flagged when it is both likely app-owned state and large.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Set

from heapleak.analysis.thresholds import Severity, clamp_confidence, format_bytes
from heapleak.config import AnalysisConfig, KB, MB
from heapleak.snapshot.filters import clean_global_name
from heapleak.snapshot.model import EdgeKind, HeapNode, HeapSnapshot, NodeKind

logger = logging.getLogger(__name__)

_HOLDER_MARKERS = ("window", "global")

# Name fragments of state containers that tend to grow without bound.
GLOBAL_STATE_PATTERNS = (
    "Cache", "Store", "Registry", "Manager", "Pool", "Buffer", "Archive",
    "Collection", "Map", "Set", "Config", "Settings", "State", "Data",
)

_SKIPPED_KINDS = frozenset({NodeKind.number, NodeKind.hidden, NodeKind.synthetic, NodeKind.code})

# Globals retaining more than this are flagged even at LOW severity.
_SUSPICIOUS_SIZE: int = 50 * KB


def is_global_holder(node: HeapNode) -> bool:
    """True for window/global objects other than the synthetic root."""
    if node.index == 0 or node.kind is not NodeKind.object:
        return False
    lowered = node.name.lower()
    return not lowered.startswith("detached ") and any(m in lowered for m in _HOLDER_MARKERS)


def has_state_pattern(name: str) -> bool:
    return any(p in name for p in GLOBAL_STATE_PATTERNS)


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class GlobalVariable:
    """One property of a global holder."""

    name: str
    node_id: int
    holder_id: int
    kind: str
    type_name: str
    retained_size: int
    self_size: int
    severity: Severity
    confidence: float
    suggested_fix: str

    @property
    def is_suspicious(self) -> bool:
        return self.confidence > 60 and (
            self.severity.rank >= Severity.HIGH.rank or self.retained_size > _SUSPICIOUS_SIZE
        )

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["is_suspicious"] = self.is_suspicious
        return data


@dataclass
class GlobalAnalysisResult:
    """Output of :class:`GlobalAnalyzer`."""

    variables: List[GlobalVariable]
    holders_checked: int
    recommendations: List[str]

    @property
    def suspicious(self) -> List[GlobalVariable]:
        return [g for g in self.variables if g.is_suspicious]

    @property
    def total_memory_impact(self) -> int:
        return sum(g.retained_size for g in self.suspicious)

    def to_dict(self) -> Dict[str, object]:
        return {
            "variables": [g.to_dict() for g in self.variables],
            "holders_checked": self.holders_checked,
            "suspicious_count": len(self.suspicious),
            "total_memory_impact": self.total_memory_impact,
            "recommendations": list(self.recommendations),
        }


# ============================================================================
# Global Analyzer
# ============================================================================


class GlobalAnalyzer:
    """List the user-defined globals of a snapshot, largest first.

    Usage::

        result = GlobalAnalyzer().analyze(snapshot)
        for variable in result.suspicious:
            print(variable.name, format_bytes(variable.retained_size))
    """

    def __init__(self, config: Optional[AnalysisConfig] = None, top_n: int = 50) -> None:
        self._config = config or AnalysisConfig()
        self._top_n = top_n

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, snapshot: HeapSnapshot) -> GlobalAnalysisResult:
        node_filter = self._config.exclusion_filter()
        holders = [n for n in snapshot.nodes if is_global_holder(n)]
        seen: Set[int] = set()
        variables: List[GlobalVariable] = []
        for holder in holders:
            for edge in snapshot.outgoing(holder.index):
                if edge.kind is not EdgeKind.property or not edge.name:
                    continue
                if edge.to_id in seen:
                    continue
                name = edge.name
                if "<symbol>" in name or "Symbol(" in name:
                    continue
                if clean_global_name(name) in self._config.excluded_names:
                    continue
                target = snapshot.node_at(edge.to_index)
                if target.kind in _SKIPPED_KINDS:
                    continue
                if not node_filter.accepts(target):
                    continue
                seen.add(edge.to_id)
                variables.append(self._variable(name, holder, target))

        variables.sort(key=lambda g: (-g.retained_size, g.name, g.node_id))
        variables = variables[: self._top_n]
        logger.debug(
            "Global analysis: %d holder(s), %d user global(s).", len(holders), len(variables),
        )
        return GlobalAnalysisResult(
            variables=variables,
            holders_checked=len(holders),
            recommendations=self._recommendations([g for g in variables if g.is_suspicious]),
        )

    @staticmethod
    def severity(retained_size: int) -> Severity:
        if retained_size > 10 * MB:
            return Severity.CRITICAL
        if retained_size > MB:
            return Severity.HIGH
        if retained_size > 100 * KB:
            return Severity.MEDIUM
        return Severity.LOW

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _variable(self, name: str, holder: HeapNode, target: HeapNode) -> GlobalVariable:
        return GlobalVariable(
            name=name,
            node_id=target.id,
            holder_id=holder.id,
            kind=target.kind.value,
            type_name=target.display_name,
            retained_size=target.retained_size,
            self_size=target.self_size,
            severity=self.severity(target.retained_size),
            confidence=self._confidence(name, target),
            suggested_fix=self._suggested_fix(name, target),
        )

    @staticmethod
    def _confidence(name: str, target: HeapNode) -> float:
        confidence = 50.0
        if target.retained_size > 100 * KB:
            confidence += 30
        elif target.retained_size > 10 * KB:
            confidence += 20
        elif target.retained_size > KB:
            confidence += 10
        if has_state_pattern(name) or has_state_pattern(target.name):
            confidence += 20
        if target.kind is NodeKind.array:
            confidence += 10
        elif target.kind is NodeKind.object:
            confidence += 5
        return clamp_confidence(min(confidence, 95.0))

    @staticmethod
    def _suggested_fix(name: str, target: HeapNode) -> str:
        lowered = f"{name} {target.name}".lower()
        if "cache" in lowered:
            return f"Add a size limit and expiry to {name}, or key it with a WeakMap."
        if target.kind is NodeKind.array or "array" in lowered or "list" in lowered:
            return f"Bound {name}: trim old entries or reset it with {name}.length = 0."
        if "map" in lowered or "set" in lowered:
            return f"Evict entries from {name} (LRU) or call {name}.clear() on teardown."
        return f"Release {name} when it is no longer needed ({name} = null) or move it into local scope."

    @staticmethod
    def _recommendations(suspicious: List[GlobalVariable]) -> List[str]:
        recs: List[str] = []
        if not suspicious:
            return recs
        top = suspicious[0]
        recs.append(
            f"Global '{top.name}' retains {format_bytes(top.retained_size)}; check that "
            "it is cleared when its feature is torn down."
        )
        large = [g for g in suspicious if g.retained_size > MB]
        if len(large) > 1:
            recs.append(f"{len(large)} globals retain more than 1 MB each.")
        caches = [g for g in suspicious if "cache" in g.name.lower()]
        if caches:
            recs.append(f"{len(caches)} cache-like global(s): add size limits and expiry.")
        arrays = [g for g in suspicious if g.kind == NodeKind.array.value]
        if arrays:
            recs.append(f"{len(arrays)} global array(s): trim or bound them periodically.")
        return recs
