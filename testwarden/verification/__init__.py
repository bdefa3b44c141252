"""Independent verification of reported test outcomes."""

from testwarden.verification.analyzer import EvidenceAnalyzer
from testwarden.verification.confidence import calculate_confidence
from testwarden.verification.cross_validator import CrossValidator
from testwarden.verification.errors import (
    CriticalRedFlagError,
    EvidenceNotFoundError,
    IntegrityCheckFailedError,
    VerificationError,
    VerifierTierError,
)
from testwarden.verification.integrity import IntegrityChecker
from testwarden.verification.reporter import VerificationReporter
from testwarden.verification.skeptical import SkepticalAnalyzer
from testwarden.verification.types import (
    ConfidenceCalculation,
    ConfidenceFactors,
    CrossValidationResult,
    EvidenceReviewSummary,
    IntegrityCheckResult,
    Recommendation,
    RedFlagBreakdown,
    SkepticalAnalysisResult,
    SuspiciousPattern,
    VerificationResult,
)
from testwarden.verification.verifier import IndependentVerifier

__all__ = [
    "EvidenceAnalyzer",
    "calculate_confidence",
    "CrossValidator",
    "CriticalRedFlagError",
    "EvidenceNotFoundError",
    "IntegrityCheckFailedError",
    "VerificationError",
    "VerifierTierError",
    "IntegrityChecker",
    "VerificationReporter",
    "SkepticalAnalyzer",
    "ConfidenceCalculation",
    "ConfidenceFactors",
    "CrossValidationResult",
    "EvidenceReviewSummary",
    "IntegrityCheckResult",
    "Recommendation",
    "RedFlagBreakdown",
    "SkepticalAnalysisResult",
    "SuspiciousPattern",
    "VerificationResult",
    "IndependentVerifier",
]
