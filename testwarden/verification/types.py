"""Result types produced by the verification pipeline.

This module is headless - no CLI or HTTP dependencies.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from testwarden.core.models import Severity, _utc_now


class Recommendation(str, Enum):
    """What the verifier advises doing with a reported pass.

    Uses str mixin for easy JSON serialization and SQLite storage.
    """

    ACCEPT = "accept"
    MANUAL_REVIEW = "manual_review"
    REJECT = "reject"


@dataclass
class IntegrityCheckResult:
    """Structural validation of one test's evidence."""

    passed: bool
    checks: Dict[str, bool] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CrossValidationResult:
    """Comparison of two evidence sources.

    Attributes:
        check: Name of the comparison (e.g. ``screenshot_vs_console``)
        matched: False when the sources contradict each other
        description: Plain-language outcome
        evidence: Values that were compared
        severity: Set only for mismatches
    """

    check: str
    matched: bool
    description: str
    evidence: Dict[str, Any] = field(default_factory=dict)
    severity: Optional[Severity] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "check": self.check,
            "matched": self.matched,
            "description": self.description,
            "evidence": self.evidence,
            "severity": self.severity.value if self.severity else None,
        }


@dataclass
class SuspiciousPattern:
    pattern: str
    description: str
    severity: Severity
    evidence: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.pattern,
            "description": self.description,
            "severity": self.severity.value,
            "evidence": self.evidence,
        }


@dataclass
class SkepticalAnalysisResult:
    suspicious: bool = False
    concerns: List[str] = field(default_factory=list)
    recommend_manual_review: bool = False
    patterns: List[SuspiciousPattern] = field(default_factory=list)

    @classmethod
    def from_patterns(cls, patterns: List[SuspiciousPattern]) -> "SkepticalAnalysisResult":
        return cls(
            suspicious=bool(patterns),
            concerns=[p.description for p in patterns],
            recommend_manual_review=any(p.severity == Severity.HIGH for p in patterns),
            patterns=list(patterns),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suspicious": self.suspicious,
            "concerns": self.concerns,
            "recommend_manual_review": self.recommend_manual_review,
            "patterns": [p.to_dict() for p in self.patterns],
        }


@dataclass
class EvidenceReviewSummary:
    """Counts of the evidence available for one test."""

    screenshots: int = 0
    logs: int = 0
    traces: int = 0
    coverage: bool = False
    dom: bool = False
    total_artifacts: int = 0
    missing_artifacts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RedFlagBreakdown:
    """Unresolved red flags as seen by the verifier."""

    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    descriptions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConfidenceFactors:
    """Per-factor audit trail of a confidence score (each 0-100 except the penalty)."""

    evidence_completeness: float = 0.0
    evidence_consistency: float = 0.0
    red_flag_penalty: int = 0
    historical_success: float = 0.0
    integrity_score: float = 0.0
    skeptical_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConfidenceCalculation:
    final_score: int
    factors: ConfidenceFactors
    explanation: str
    thresholds: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "final_score": self.final_score,
            "factors": self.factors.to_dict(),
            "explanation": self.explanation,
            "thresholds": dict(self.thresholds),
        }


@dataclass
class VerificationResult:
    """Everything the verifier concluded about one test."""

    test_id: str
    epic_id: str
    verified: bool
    confidence_score: int
    recommendation: Recommendation
    evidence_review: EvidenceReviewSummary
    red_flags: RedFlagBreakdown
    integrity: IntegrityCheckResult
    cross_validation: List[CrossValidationResult]
    skeptical_analysis: SkepticalAnalysisResult
    confidence: ConfidenceCalculation
    summary: str = ""
    reasoning: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    verifier_model: str = ""
    verified_at: datetime = field(default_factory=_utc_now)
    execution_time_ms: int = 0

    @property
    def mismatches(self) -> List[CrossValidationResult]:
        return [check for check in self.cross_validation if not check.matched]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "epic_id": self.epic_id,
            "verified": self.verified,
            "confidence_score": self.confidence_score,
            "recommendation": self.recommendation.value,
            "evidence_review": self.evidence_review.to_dict(),
            "red_flags": self.red_flags.to_dict(),
            "integrity": self.integrity.to_dict(),
            "cross_validation": [check.to_dict() for check in self.cross_validation],
            "skeptical_analysis": self.skeptical_analysis.to_dict(),
            "confidence": self.confidence.to_dict(),
            "summary": self.summary,
            "reasoning": self.reasoning,
            "recommendations": self.recommendations,
            "verifier_model": self.verifier_model,
            "verified_at": self.verified_at.isoformat(),
            "execution_time_ms": self.execution_time_ms,
        }
