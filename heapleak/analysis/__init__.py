"""Single-snapshot analyzers, growth tracking, leak classification and tracing."""

from heapleak.analysis.size_rank import SizeRankAnalyzer, SizeRankResult
from heapleak.analysis.shape_analyzer import ShapeAnalyzer, ShapeAnalysisResult, ShapeRecord
from heapleak.analysis.fanout_analyzer import FanoutAnalyzer, FanoutResult
from heapleak.analysis.detached_analyzer import DetachedAnalyzer, DetachedResult
from heapleak.analysis.growth_tracker import GrowthTracker, GrowthResult, GrowthPattern
from heapleak.analysis.snapshot_diff import SnapshotDiff, diff_snapshots
from heapleak.analysis.leak_classifier import LeakClassifier, LeakFinding, LeakCategory
from heapleak.analysis.retainer_tracer import RetainerTracer, RetainerPath, LeakAssessment
from heapleak.analysis.pipeline import AnalysisResult, SnapshotRole, analyze_snapshots
from heapleak.analysis.report_generator import ReportGenerator

__all__ = [
    "SizeRankAnalyzer",
    "SizeRankResult",
    "ShapeAnalyzer",
    "ShapeAnalysisResult",
    "ShapeRecord",
    "FanoutAnalyzer",
    "FanoutResult",
    "DetachedAnalyzer",
    "DetachedResult",
    "GrowthTracker",
    "GrowthResult",
    "GrowthPattern",
    "SnapshotDiff",
    "diff_snapshots",
    "LeakClassifier",
    "LeakFinding",
    "LeakCategory",
    "RetainerTracer",
    "RetainerPath",
    "LeakAssessment",
    "AnalysisResult",
    "SnapshotRole",
    "analyze_snapshots",
    "ReportGenerator",
]
