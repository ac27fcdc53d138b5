"""heapleak: memory leak diagnosis from heap snapshots."""

__version__ = "0.1.0"

from heapleak.config import AnalysisConfig
from heapleak.errors import HeapLeakError, MalformedSnapshot, UnresolvableReference
from heapleak.snapshot import HeapSnapshot, decode_snapshot
from heapleak.analysis.pipeline import AnalysisResult, analyze_snapshot, analyze_snapshots

__all__ = [
    "__version__",
    "AnalysisConfig",
    "HeapLeakError",
    "MalformedSnapshot",
    "UnresolvableReference",
    "HeapSnapshot",
    "decode_snapshot",
    "AnalysisResult",
    "analyze_snapshot",
    "analyze_snapshots",
]
