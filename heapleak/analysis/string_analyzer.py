"""Duplicate-string ranking for a single snapshot.

String nodes carry their content as the node name, so identical contents
held by several nodes are plain duplicates: all copies but one are waste.
Contents are also grouped into coarse patterns (URLs, JSON, UUIDs, ...) to
show which kind of text is being duplicated.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from heapleak.analysis.thresholds import Severity, clamp_confidence, format_bytes
from heapleak.config import AnalysisConfig, KB, MB
from heapleak.snapshot.model import HeapSnapshot, NodeKind

logger = logging.getLogger(__name__)

# Contents longer than this are compared on their prefix only.
MAX_CONTENT_LENGTH: int = 1000

# Shorter contents are too common to be worth interning.
MIN_CONTENT_LENGTH: int = 3

_DISPLAY_LENGTH: int = 100

_SYSTEM_CONTENTS = frozenset({"(system)", "(internal)"})

_URL_RE = re.compile(r"^https?://")
_CSS_CLASS_RE = re.compile(r"^[a-zA-Z_-][a-zA-Z0-9_-]*$")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+=*$")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE,
)
_TIMESTAMP_RE = re.compile(r"^\d{10,13}$|^\d{4}-\d{2}-\d{2}")


def _is_css_classes(text: str) -> bool:
    parts = text.split()
    return len(parts) >= 2 and all(_CSS_CLASS_RE.match(p) for p in parts)


def _is_base64(text: str) -> bool:
    return text.startswith("data:") or (len(text) >= 20 and bool(_BASE64_RE.match(text)))


def _is_repetitive(text: str) -> bool:
    if len(text) < 50:
        return False
    chunks = [text[i:i + 10] for i in range(0, len(text), 10)]
    return len(set(chunks)) < len(chunks) * 0.5


def _is_error_text(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in ("error", "exception", "failed"))


STRING_PATTERNS: Tuple[Tuple[str, Callable[[str], bool]], ...] = (
    ("URLs", lambda s: bool(_URL_RE.match(s)) or s.startswith("//") or "://" in s),
    ("JSON", lambda s: (s[:1], s[-1:]) in (("{", "}"), ("[", "]"))),
    ("CSS class lists", _is_css_classes),
    ("Base64 / data URLs", _is_base64),
    ("UUIDs", lambda s: bool(_UUID_RE.match(s))),
    ("File paths", lambda s: "/" in s and ("." in s or s.startswith("/"))),
    ("Error messages", _is_error_text),
    ("Timestamps", lambda s: bool(_TIMESTAMP_RE.match(s))),
    ("Repetitive text", _is_repetitive),
)


def string_content(name: str) -> str:
    """Normalise a string node's name into comparable content."""
    if len(name) >= 2 and name[0] == name[-1] and name[0] in ("'", '"'):
        name = name[1:-1]
    return name[:MAX_CONTENT_LENGTH]


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class StringRecord:
    """Every string node holding one content."""

    content: str
    node_ids: Tuple[int, ...]
    total_size: int

    @property
    def count(self) -> int:
        return len(self.node_ids)

    @property
    def average_size(self) -> float:
        return self.total_size / self.count if self.count else 0.0

    @property
    def wasted_memory(self) -> int:
        if self.count <= 1:
            return 0
        return self.total_size * (self.count - 1) // self.count

    @property
    def severity(self) -> Severity:
        wasted = self.wasted_memory
        if wasted > 5 * MB or self.count > 1000:
            return Severity.CRITICAL
        if wasted > MB or self.count > 500:
            return Severity.HIGH
        if wasted > 100 * KB or self.count > 100:
            return Severity.MEDIUM
        return Severity.LOW

    @property
    def confidence(self) -> float:
        confidence = 60.0
        if self.count > 100:
            confidence += 20
        elif self.count > 50:
            confidence += 15
        elif self.count > 10:
            confidence += 10
        elif self.count > 5:
            confidence += 5
        if self.average_size > KB:
            confidence += 15
        elif self.average_size > 100:
            confidence += 10
        elif self.average_size > 50:
            confidence += 5
        lowered = self.content.lower()
        if "http" in lowered or "data:" in lowered:
            confidence += 5
        if len(self.content) > 100:
            confidence += 5
        return clamp_confidence(min(confidence, 95.0))

    def to_dict(self) -> Dict[str, object]:
        content = self.content
        if len(content) > _DISPLAY_LENGTH:
            content = content[: _DISPLAY_LENGTH - 3] + "..."
        return {
            "content": content,
            "count": self.count,
            "total_size": self.total_size,
            "average_size": round(self.average_size, 1),
            "wasted_memory": self.wasted_memory,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "example_ids": list(self.node_ids[:5]),
        }


@dataclass(frozen=True)
class StringPatternRecord:
    """Duplication totals for the contents matching one pattern."""

    pattern: str
    total_count: int
    duplicated_count: int
    total_size: int
    wasted_memory: int
    examples: Tuple[str, ...] = ()

    @property
    def waste_percent(self) -> float:
        return self.wasted_memory / self.total_size * 100.0 if self.total_size else 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "pattern": self.pattern,
            "total_count": self.total_count,
            "duplicated_count": self.duplicated_count,
            "total_size": self.total_size,
            "wasted_memory": self.wasted_memory,
            "waste_percent": round(self.waste_percent, 1),
            "examples": list(self.examples),
        }


@dataclass
class StringAnalysisResult:
    """Output of :class:`StringAnalyzer`."""

    top_by_count: List[StringRecord]
    top_by_size: List[StringRecord]
    patterns: List[StringPatternRecord]
    total_strings: int
    unique_strings: int
    duplicated_strings: int
    total_memory: int
    wasted_memory: int
    recommendations: List[str]

    @property
    def waste_percent(self) -> float:
        return self.wasted_memory / self.total_memory * 100.0 if self.total_memory else 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "top_by_count": [r.to_dict() for r in self.top_by_count],
            "top_by_size": [r.to_dict() for r in self.top_by_size],
            "patterns": [p.to_dict() for p in self.patterns],
            "total_strings": self.total_strings,
            "unique_strings": self.unique_strings,
            "duplicated_strings": self.duplicated_strings,
            "total_memory": self.total_memory,
            "wasted_memory": self.wasted_memory,
            "waste_percent": round(self.waste_percent, 1),
            "recommendations": list(self.recommendations),
        }


# ============================================================================
# String Analyzer
# ============================================================================


class StringAnalyzer:
    """Rank duplicated string contents by copy count and by size.

    Usage::

        result = StringAnalyzer().analyze(snapshot)
        for record in result.top_by_size:
            print(record.count, format_bytes(record.wasted_memory), record.content[:40])
    """

    def __init__(self, config: Optional[AnalysisConfig] = None, top_n: int = 15) -> None:
        self._config = config or AnalysisConfig()
        self._top_n = top_n

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, snapshot: HeapSnapshot) -> StringAnalysisResult:
        records = self.group(snapshot)
        duplicated = [r for r in records if r.count > 1]
        by_count = sorted(duplicated, key=lambda r: (-r.count, -r.total_size, r.content))
        by_size = sorted(duplicated, key=lambda r: (-r.total_size, -r.count, r.content))

        total_memory = sum(r.total_size for r in records)
        wasted = sum(r.wasted_memory for r in records)
        patterns = self._patterns(records)
        logger.debug(
            "String analysis: %d strings, %d unique, %s wasted.",
            sum(r.count for r in records), len(records), format_bytes(wasted),
        )
        return StringAnalysisResult(
            top_by_count=by_count[: self._top_n],
            top_by_size=by_size[: self._top_n],
            patterns=patterns,
            total_strings=sum(r.count for r in records),
            unique_strings=len(records),
            duplicated_strings=sum(r.count - 1 for r in duplicated),
            total_memory=total_memory,
            wasted_memory=wasted,
            recommendations=self._recommendations(by_count, patterns, wasted),
        )

    def group(self, snapshot: HeapSnapshot) -> List[StringRecord]:
        """One record per distinct content, in first-seen order.

        Names of built-in globals are skipped as whole contents only; the
        system-name rules of the exclusion filter do not apply to text.
        """
        excluded_names = self._config.excluded_names
        excluded_prefixes = tuple(self._config.excluded_prefixes)
        contents: Dict[str, Tuple[List[int], List[int]]] = {}
        for node in snapshot.nodes:
            if node.kind is not NodeKind.string:
                continue
            content = string_content(node.name)
            if len(content) < MIN_CONTENT_LENGTH or content in _SYSTEM_CONTENTS:
                continue
            if content in excluded_names or (
                excluded_prefixes and content.startswith(excluded_prefixes)
            ):
                continue
            ids, sizes = contents.setdefault(content, ([], []))
            ids.append(node.id)
            sizes.append(node.self_size)
        return [
            StringRecord(content, tuple(ids), sum(sizes))
            for content, (ids, sizes) in contents.items()
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _patterns(records: List[StringRecord]) -> List[StringPatternRecord]:
        rows: List[StringPatternRecord] = []
        for name, matches in STRING_PATTERNS:
            selected = [r for r in records if matches(r.content)]
            if not selected:
                continue
            examples = tuple(
                r.content[:47] + "..." if len(r.content) > 50 else r.content
                for r in selected if r.count > 1
            )[:3]
            rows.append(
                StringPatternRecord(
                    pattern=name,
                    total_count=sum(r.count for r in selected),
                    duplicated_count=sum(r.count - 1 for r in selected),
                    total_size=sum(r.total_size for r in selected),
                    wasted_memory=sum(r.wasted_memory for r in selected),
                    examples=examples,
                )
            )
        rows.sort(key=lambda p: (-p.wasted_memory, p.pattern))
        return rows

    @staticmethod
    def _recommendations(
        by_count: List[StringRecord], patterns: List[StringPatternRecord], wasted: int,
    ) -> List[str]:
        recs: List[str] = []
        if wasted < 100 * KB:
            return recs
        top = by_count[0]
        recs.append(
            f"'{top.content[:40]}' is held {top.count} times; intern it or keep one "
            "shared constant."
        )
        wasteful = {p.pattern for p in patterns if p.wasted_memory >= 100 * KB}
        if "URLs" in wasteful:
            recs.append("Duplicate URLs: build them once and reuse a shared constant.")
        if "JSON" in wasteful:
            recs.append(
                "Duplicate JSON text: cache the parsed object instead of re-serialising it."
            )
        if "Base64 / data URLs" in wasteful:
            recs.append("Duplicate data URLs: share one reference or switch to object URLs.")
        if wasted > 10 * MB:
            recs.append(
                f"{format_bytes(wasted)} of string memory is duplicated; look for loops "
                "that rebuild the same text."
            )
        return recs
