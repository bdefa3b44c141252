"""Independent verifier.

Judges whether a reported pass can be trusted, working only from persisted
evidence and red flags. It never executes anything. The verifier runs at a
capability tier above the lowest execution tier so it does not share the
executor's blind spots.

Pipeline per (test_id, epic_id):

1. Load the latest evidence run (none -> EvidenceNotFoundError)
2. Load unresolved red flags
3. Integrity check (failure -> IntegrityCheckFailedError, never scored)
4. Unresolved critical flags with auto-fail -> CriticalRedFlagError
5. Cross-validation, skeptical analysis, evidence summary
6. Confidence score, verified flag and recommendation
7. Plain-language report, persisted when a report store is configured

This module is headless - no CLI or HTTP dependencies.
"""

import logging
import time
from typing import List, Optional, Protocol, Sequence, Tuple

from testwarden.core.config import VerificationConfig
from testwarden.core.models import (
    REQUIRED_EVIDENCE,
    ArtifactType,
    EvidenceArtifact,
    RedFlag,
    Severity,
    TestResult,
    TimingBaseline,
)
from testwarden.core.tiers import DEFAULT_LADDER, CapabilityTier, TierLadder
from testwarden.verification.analyzer import EvidenceAnalyzer
from testwarden.verification.confidence import calculate_confidence
from testwarden.verification.cross_validator import CrossValidator
from testwarden.verification.errors import (
    CriticalRedFlagError,
    EvidenceNotFoundError,
    IntegrityCheckFailedError,
    VerifierTierError,
)
from testwarden.verification.integrity import IntegrityChecker
from testwarden.verification.reporter import VerificationReporter
from testwarden.verification.skeptical import SkepticalAnalyzer
from testwarden.verification.types import (
    EvidenceReviewSummary,
    Recommendation,
    RedFlagBreakdown,
    SkepticalAnalysisResult,
    VerificationResult,
)

logger = logging.getLogger(__name__)

SCREENSHOT_TYPES = (ArtifactType.SCREENSHOT_BEFORE, ArtifactType.SCREENSHOT_AFTER)
LOG_TYPES = (ArtifactType.CONSOLE_LOG,)
TRACE_TYPES = (ArtifactType.NETWORK_TRACE, ArtifactType.HTTP_REQUEST, ArtifactType.HTTP_RESPONSE)
COVERAGE_TYPES = (ArtifactType.COVERAGE_BEFORE, ArtifactType.COVERAGE_AFTER)


class EvidenceSource(Protocol):
    async def get_latest_run(
        self, test_id: str, epic_id: str
    ) -> Optional[Tuple[TestResult, List[EvidenceArtifact]]]: ...


class UnresolvedFlagSource(Protocol):
    async def get_unresolved_flags(self, test_id: str, epic_id: str) -> List[RedFlag]: ...


class ReportStore(Protocol):
    async def save_report(self, result: VerificationResult, markdown: Optional[str] = None) -> int: ...


class TimingSource(Protocol):
    async def get_baseline(self, test_name: str) -> Optional[TimingBaseline]: ...


def summarize_evidence(
    test: TestResult, evidence: Sequence[EvidenceArtifact]
) -> EvidenceReviewSummary:
    present = {artifact.artifact_type for artifact in evidence}
    return EvidenceReviewSummary(
        screenshots=sum(1 for a in evidence if a.artifact_type in SCREENSHOT_TYPES),
        logs=sum(1 for a in evidence if a.artifact_type in LOG_TYPES),
        traces=sum(1 for a in evidence if a.artifact_type in TRACE_TYPES),
        coverage=any(t in present for t in COVERAGE_TYPES),
        dom=ArtifactType.DOM_SNAPSHOT in present,
        total_artifacts=len(evidence),
        missing_artifacts=[
            t.value for t in REQUIRED_EVIDENCE[test.test_type] if t not in present
        ],
    )


def summarize_red_flags(flags: Sequence[RedFlag]) -> RedFlagBreakdown:
    breakdown = RedFlagBreakdown(total=len(flags))
    for flag in flags:
        setattr(breakdown, flag.severity.value, getattr(breakdown, flag.severity.value) + 1)
        breakdown.descriptions.append(f"[{flag.severity.value.upper()}] {flag.description}")
    return breakdown


def determine_recommendation(
    verified: bool, confidence_score: int, manual_review_threshold: int
) -> Recommendation:
    if verified:
        return Recommendation.ACCEPT
    if confidence_score >= manual_review_threshold:
        return Recommendation.MANUAL_REVIEW
    return Recommendation.REJECT


class IndependentVerifier:
    """Scores trust in a reported test outcome.

    Args:
        evidence_repo: Source of the latest evidence run per test
        red_flag_repo: Source of unresolved red flags
        config: Thresholds, verifier tier and enabled analyses
        ladder: Capability ladder the verifier tier is looked up on
        report_repo: Optional store for rendered reports
        reporter: Report builder (defaults to VerificationReporter)
        history: Optional timing baseline source for cross-validation
        report_dir: Optional directory for markdown/JSON report files

    Raises:
        VerifierTierError: If the verifier tier is unknown or not above the lowest tier
    """

    def __init__(
        self,
        evidence_repo: EvidenceSource,
        red_flag_repo: UnresolvedFlagSource,
        config: Optional[VerificationConfig] = None,
        ladder: Optional[TierLadder] = None,
        report_repo: Optional[ReportStore] = None,
        reporter: Optional[VerificationReporter] = None,
        history: Optional[TimingSource] = None,
        report_dir: Optional[str] = None,
    ):
        self.evidence_repo = evidence_repo
        self.red_flag_repo = red_flag_repo
        self.config = config or VerificationConfig()
        self.ladder = ladder or DEFAULT_LADDER
        self.report_repo = report_repo
        self.reporter = reporter or VerificationReporter()
        self.report_dir = report_dir
        self.tier = self._resolve_tier(self.config.verifier_tier)

        analyzer = EvidenceAnalyzer(self.config.evidence_dir)
        self.integrity_checker = IntegrityChecker(analyzer, self.config.strict_mode)
        self.cross_validator = CrossValidator(analyzer, history)
        self.skeptical_analyzer = SkepticalAnalyzer(analyzer)

    def _resolve_tier(self, name: str) -> CapabilityTier:
        try:
            tier = self.ladder.get(name)
        except ValueError as e:
            raise VerifierTierError(name) from e
        lowest = self.ladder.lowest()
        if not self.ladder.is_above(tier, lowest):
            raise VerifierTierError(name, lowest.name)
        return tier

    async def verify(self, test_id: str, epic_id: str) -> VerificationResult:
        """Verify the latest reported outcome of one test.

        Raises:
            EvidenceNotFoundError: No evidence run recorded for the test
            IntegrityCheckFailedError: Evidence failed structural validation
            CriticalRedFlagError: Unresolved critical flags with auto-fail enabled
        """
        started = time.perf_counter()
        logger.info(f"Verifying test {test_id} (epic {epic_id}) at tier {self.tier.name}")

        run = await self.evidence_repo.get_latest_run(test_id, epic_id)
        if run is None:
            raise EvidenceNotFoundError(test_id, epic_id)
        test, evidence = run

        flags = await self.red_flag_repo.get_unresolved_flags(test_id, epic_id)

        integrity = self.integrity_checker.check(test, evidence)
        if not integrity.passed:
            raise IntegrityCheckFailedError(test_id, epic_id, integrity.errors)

        critical = [flag for flag in flags if flag.severity == Severity.CRITICAL]
        if critical and self.config.critical_auto_fail:
            logger.warning(f"Test {test_id} auto-failed on {len(critical)} critical red flag(s)")
            raise CriticalRedFlagError(test_id, epic_id, len(critical))

        cross_validation = []
        if self.config.cross_validation_enabled:
            cross_validation = await self.cross_validator.validate(test, evidence)

        skeptical = SkepticalAnalysisResult()
        if self.config.skeptical_analysis_enabled:
            skeptical = self.skeptical_analyzer.analyze(test, evidence, flags)

        evidence_review = summarize_evidence(test, evidence)
        red_flags = summarize_red_flags(flags)
        thresholds = self.config.thresholds
        confidence = calculate_confidence(
            test.test_type,
            evidence,
            evidence_review,
            red_flags,
            integrity,
            cross_validation,
            skeptical,
            thresholds,
        )

        score = confidence.final_score
        # Any unresolved critical flag vetoes verification regardless of score
        verified = red_flags.critical == 0 and score >= thresholds.auto_pass
        result = VerificationResult(
            test_id=test_id,
            epic_id=epic_id,
            verified=verified,
            confidence_score=score,
            recommendation=determine_recommendation(verified, score, thresholds.manual_review),
            evidence_review=evidence_review,
            red_flags=red_flags,
            integrity=integrity,
            cross_validation=cross_validation,
            skeptical_analysis=skeptical,
            confidence=confidence,
            verifier_model=self.tier.model or self.tier.name,
        )
        self.reporter.annotate(result)
        result.execution_time_ms = int((time.perf_counter() - started) * 1000)

        await self._persist(result)
        logger.info(
            f"Test {test_id}: confidence {score}%, recommendation {result.recommendation.value}"
        )
        return result

    async def _persist(self, result: VerificationResult) -> None:
        markdown = self.reporter.generate_markdown(result)
        if self.report_repo is not None:
            await self.report_repo.save_report(result, markdown)
        if self.report_dir:
            self.reporter.save_report(result, self.report_dir)
