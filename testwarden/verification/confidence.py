"""Explainable confidence scoring.

The score starts at 100 and every deduction is recorded so a reviewer can see
exactly why a test landed where it did:

- 50 per critical, 20 per high, 10 per medium red flag
- 15 per cross-validation mismatch
- 25 per missing required artifact
- 20 per high-severity suspicious pattern, 10 per other pattern
- 30 if the integrity check failed
- +10 bonus when before/after screenshots and console logs are all present

The result is clamped to 0-100 and rounded.
"""

from typing import List, Sequence

from testwarden.core.config import ConfidenceThresholds
from testwarden.core.models import (
    ArtifactType,
    EvidenceArtifact,
    Severity,
    TestType,
    artifact_types,
)
from testwarden.verification.types import (
    ConfidenceCalculation,
    ConfidenceFactors,
    CrossValidationResult,
    EvidenceReviewSummary,
    IntegrityCheckResult,
    RedFlagBreakdown,
    SkepticalAnalysisResult,
)

RED_FLAG_WEIGHTS = {Severity.CRITICAL: 50, Severity.HIGH: 20, Severity.MEDIUM: 10, Severity.LOW: 0}
MISMATCH_PENALTY = 15
MISSING_ARTIFACT_PENALTY = 25
HIGH_PATTERN_PENALTY = 20
PATTERN_PENALTY = 10
INTEGRITY_PENALTY = 30
COMPLETE_EVIDENCE_BONUS = 10

# Artifact count that counts as complete evidence for each test type
EXPECTED_ARTIFACT_COUNT = {
    TestType.UI: 5,
    TestType.API: 2,
    TestType.UNIT: 1,
    TestType.INTEGRATION: 1,
}

BONUS_ARTIFACTS = (
    ArtifactType.SCREENSHOT_BEFORE,
    ArtifactType.SCREENSHOT_AFTER,
    ArtifactType.CONSOLE_LOG,
)


def red_flag_penalty(red_flags: RedFlagBreakdown) -> int:
    return (
        red_flags.critical * RED_FLAG_WEIGHTS[Severity.CRITICAL]
        + red_flags.high * RED_FLAG_WEIGHTS[Severity.HIGH]
        + red_flags.medium * RED_FLAG_WEIGHTS[Severity.MEDIUM]
    )


def calculate_confidence(
    test_type: TestType,
    evidence: Sequence[EvidenceArtifact],
    evidence_review: EvidenceReviewSummary,
    red_flags: RedFlagBreakdown,
    integrity: IntegrityCheckResult,
    cross_validation: Sequence[CrossValidationResult],
    skeptical: SkepticalAnalysisResult,
    thresholds: ConfidenceThresholds,
) -> ConfidenceCalculation:
    """Compute the confidence score and its per-factor breakdown."""
    explanation: List[str] = []
    score = 100

    expected = EXPECTED_ARTIFACT_COUNT[test_type]
    completeness = min(100.0, evidence_review.total_artifacts / expected * 100)
    explanation.append(f"Evidence completeness: {completeness:.0f}%")

    mismatches = [check for check in cross_validation if not check.matched]
    consistency = max(0, 100 - MISMATCH_PENALTY * len(mismatches))
    explanation.append(f"Evidence consistency: {consistency}%")

    flag_penalty = red_flag_penalty(red_flags)
    score -= flag_penalty
    if flag_penalty:
        explanation.append(f"Red flag penalty: -{flag_penalty}")

    score -= MISMATCH_PENALTY * len(mismatches)

    missing_penalty = MISSING_ARTIFACT_PENALTY * len(evidence_review.missing_artifacts)
    score -= missing_penalty
    if missing_penalty:
        explanation.append(
            f"Missing artifacts ({', '.join(evidence_review.missing_artifacts)}): "
            f"-{missing_penalty}"
        )

    if not integrity.passed:
        score -= INTEGRITY_PENALTY
        explanation.append(f"Integrity issues detected: {INTEGRITY_PENALTY} point penalty")

    pattern_penalty = 0
    if skeptical.suspicious:
        pattern_penalty = sum(
            HIGH_PATTERN_PENALTY if p.severity == Severity.HIGH else PATTERN_PENALTY
            for p in skeptical.patterns
        )
        score -= pattern_penalty
        explanation.append(f"Suspicious patterns detected: {pattern_penalty} point penalty")

    if set(BONUS_ARTIFACTS) <= artifact_types(evidence):
        score += COMPLETE_EVIDENCE_BONUS
        explanation.append(f"Complete UI evidence bonus: +{COMPLETE_EVIDENCE_BONUS}")

    final_score = int(round(max(0, min(100, score))))
    factors = ConfidenceFactors(
        evidence_completeness=round(completeness, 2),
        evidence_consistency=consistency,
        red_flag_penalty=flag_penalty,
        # No cross-run success history is tracked yet
        historical_success=0.0,
        integrity_score=100.0 if integrity.passed else 100.0 - INTEGRITY_PENALTY,
        skeptical_score=50.0 if skeptical.suspicious else 100.0,
    )
    return ConfidenceCalculation(
        final_score=final_score,
        factors=factors,
        explanation="; ".join(explanation),
        thresholds={
            "autoPass": thresholds.auto_pass,
            "manualReview": thresholds.manual_review,
            "autoFail": thresholds.manual_review,
        },
    )
