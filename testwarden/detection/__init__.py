"""Evidence-based red flag detection."""

from testwarden.detection.base import Detector
from testwarden.detection.coverage_analyzer import CoverageAnalyzer, CoverageData, parse_coverage
from testwarden.detection.inconsistent_evidence import InconsistentEvidenceDetector
from testwarden.detection.missing_evidence import MissingEvidenceDetector
from testwarden.detection.red_flag_detector import RedFlagDetector, RedFlagStore
from testwarden.detection.reporter import RedFlagReporter, parse_summary_table
from testwarden.detection.timing_anomaly import TimingAnomalyDetector, TimingHistoryProvider
from testwarden.detection.tool_execution import ToolExecutionDetector

__all__ = [
    "Detector",
    "CoverageAnalyzer",
    "CoverageData",
    "parse_coverage",
    "InconsistentEvidenceDetector",
    "MissingEvidenceDetector",
    "RedFlagDetector",
    "RedFlagStore",
    "RedFlagReporter",
    "parse_summary_table",
    "TimingAnomalyDetector",
    "TimingHistoryProvider",
    "ToolExecutionDetector",
]
