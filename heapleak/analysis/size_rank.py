"""Rank the largest objects of a single snapshot by retained size."""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from heapleak.analysis.thresholds import Severity, format_bytes
from heapleak.config import AnalysisConfig, MB
from heapleak.snapshot.filters import is_dom_like
from heapleak.snapshot.model import HeapNode, HeapSnapshot

logger = logging.getLogger(__name__)


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class RankedObject:
    """One row of the size ranking."""

    rank: int
    node_id: int
    name: str
    kind: str
    self_size: int
    retained_size: int
    size_percentage: float
    significance: Severity

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["significance"] = self.significance.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RankedObject:
        return cls(
            rank=int(data.get("rank", 0)),
            node_id=int(data.get("node_id", 0)),
            name=str(data.get("name", "")),
            kind=str(data.get("kind", "")),
            self_size=int(data.get("self_size", 0)),
            retained_size=int(data.get("retained_size", 0)),
            size_percentage=float(data.get("size_percentage", 0.0)),
            significance=Severity(data.get("significance", "LOW")),
        )


@dataclass(frozen=True)
class KindStats:
    """Aggregate of ranked objects sharing a node kind."""

    kind: str
    count: int
    total_size: int
    average_size: float
    largest_size: int

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class SizeRankResult:
    """Output of :class:`SizeRankAnalyzer`."""

    objects: List[RankedObject]
    total_analyzed: int
    total_memory_analyzed: int
    significance_breakdown: Dict[str, int]
    kind_stats: List[KindStats]
    recommendations: List[str]

    def to_dict(self) -> Dict[str, object]:
        return {
            "objects": [o.to_dict() for o in self.objects],
            "total_analyzed": self.total_analyzed,
            "total_memory_analyzed": self.total_memory_analyzed,
            "significance_breakdown": dict(self.significance_breakdown),
            "kind_stats": [k.to_dict() for k in self.kind_stats],
            "recommendations": list(self.recommendations),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SizeRankResult:
        raw_objects = data.get("objects", [])
        objects = (
            [RankedObject.from_dict(o) for o in raw_objects]
            if isinstance(raw_objects, list) else []
        )
        raw_stats = data.get("kind_stats", [])
        stats = (
            [KindStats(**s) for s in raw_stats]
            if isinstance(raw_stats, list) else []
        )
        return cls(
            objects=objects,
            total_analyzed=int(data.get("total_analyzed", 0)),
            total_memory_analyzed=int(data.get("total_memory_analyzed", 0)),
            significance_breakdown=dict(data.get("significance_breakdown", {})),
            kind_stats=stats,
            recommendations=[str(r) for r in data.get("recommendations", [])],
        )


# ============================================================================
# Size Rank Analyzer
# ============================================================================


class SizeRankAnalyzer:
    """Sort filtered nodes by retained size and grade their significance.

    Significance tiers combine an absolute size with the object's share of
    all filtered memory: CRITICAL at 10 MB or 5 %, HIGH at 5 MB or 2 %,
    MEDIUM at 1 MB or 0.5 %, LOW otherwise.

    Usage::

        result = SizeRankAnalyzer(AnalysisConfig(top_n=20)).analyze(snapshot)
        for row in result.objects:
            print(row.rank, row.name, row.significance.value)
    """

    _TIERS = (
        (Severity.CRITICAL, 10 * MB, 5.0),
        (Severity.HIGH, 5 * MB, 2.0),
        (Severity.MEDIUM, 1 * MB, 0.5),
    )

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self._config = config or AnalysisConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, snapshot: HeapSnapshot) -> SizeRankResult:
        candidates = list(self._config.exclusion_filter().apply(snapshot))
        if not candidates:
            logger.debug("No nodes passed the exclusion filter; size ranking empty.")
            return self._empty_result()

        total = sum(node.retained_size for node in candidates)
        # Ties break on id so the ranking is reproducible.
        candidates.sort(key=lambda n: (-n.retained_size, n.id))

        ranked: List[RankedObject] = []
        for rank, node in enumerate(candidates[: self._config.top_n], start=1):
            pct = (node.retained_size / total * 100.0) if total > 0 else 0.0
            ranked.append(
                RankedObject(
                    rank=rank,
                    node_id=node.id,
                    name=node.display_name,
                    kind=node.kind.value,
                    self_size=node.self_size,
                    retained_size=node.retained_size,
                    size_percentage=round(pct, 2),
                    significance=self.significance(node.retained_size, pct),
                )
            )

        breakdown = {s.value: 0 for s in Severity}
        for row in ranked:
            breakdown[row.significance.value] += 1

        return SizeRankResult(
            objects=ranked,
            total_analyzed=len(candidates),
            total_memory_analyzed=total,
            significance_breakdown=breakdown,
            kind_stats=self._kind_stats(candidates),
            recommendations=self._recommendations(ranked, candidates),
        )

    def significance(self, retained_size: int, percentage: float) -> Severity:
        for severity, min_bytes, min_pct in self._TIERS:
            if retained_size >= min_bytes or percentage >= min_pct:
                return severity
        return Severity.LOW

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _kind_stats(nodes: List[HeapNode]) -> List[KindStats]:
        grouped: Dict[str, List[int]] = {}
        for node in nodes:
            grouped.setdefault(node.kind.value, []).append(node.retained_size)
        stats = [
            KindStats(
                kind=kind,
                count=len(sizes),
                total_size=sum(sizes),
                average_size=round(sum(sizes) / len(sizes), 1),
                largest_size=max(sizes),
            )
            for kind, sizes in grouped.items()
        ]
        stats.sort(key=lambda s: (-s.total_size, s.kind))
        return stats

    @staticmethod
    def _recommendations(ranked: List[RankedObject], nodes: List[HeapNode]) -> List[str]:
        recs: List[str] = []
        critical = [r for r in ranked if r.significance is Severity.CRITICAL]
        if critical:
            top = critical[0]
            recs.append(
                f"{len(critical)} object(s) hold a critical share of memory; start with "
                f"'{top.name}' ({format_bytes(top.retained_size)}, {top.size_percentage}% of analyzed heap)."
            )
        arrays = [r for r in ranked if r.kind == "array" and r.significance.rank >= Severity.HIGH.rank]
        if arrays:
            recs.append(
                "Large arrays rank near the top: cap their length, paginate, "
                "or release entries that are no longer needed."
            )
        strings = [r for r in ranked if r.kind == "string" and r.significance.rank >= Severity.MEDIUM.rank]
        if strings:
            recs.append(
                "Large strings are retained: avoid keeping whole payloads or "
                "serialised responses alive after parsing."
            )
        if any(is_dom_like(n) for n in nodes[:50]):
            recs.append(
                "DOM nodes appear among the largest objects: check for detached "
                "subtrees held by listeners or caches."
            )
        return recs

    @staticmethod
    def _empty_result() -> SizeRankResult:
        return SizeRankResult(
            objects=[],
            total_analyzed=0,
            total_memory_analyzed=0,
            significance_breakdown={s.value: 0 for s in Severity},
            kind_stats=[],
            recommendations=[],
        )
