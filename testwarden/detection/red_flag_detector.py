"""Red flag detection orchestrator.

Runs the enabled detection modules concurrently over one test's evidence,
persists the resulting flags, and derives a verdict purely from severities:

- any critical flag -> fail
- else any high flag -> review
- else pass (medium/low flags are reported but do not block)

Batch detection runs many tests concurrently, bounded by a semaphore.
"""

import asyncio
import logging
import time
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from testwarden.core.config import DetectionConfig
from testwarden.core.models import (
    BatchSummary,
    DetectionResult,
    EvidenceArtifact,
    RedFlag,
    Severity,
    SeveritySummary,
    TestResult,
    Verdict,
)
from testwarden.detection.base import Detector
from testwarden.detection.coverage_analyzer import CoverageAnalyzer
from testwarden.detection.inconsistent_evidence import InconsistentEvidenceDetector
from testwarden.detection.missing_evidence import MissingEvidenceDetector
from testwarden.detection.timing_anomaly import TimingAnomalyDetector, TimingHistoryProvider
from testwarden.detection.tool_execution import ToolExecutionDetector

logger = logging.getLogger(__name__)


class RedFlagStore(Protocol):
    """Persistence for detected flags (the red flag repository)."""

    async def insert_flag(self, flag: RedFlag) -> RedFlag: ...


def determine_verdict(summary: SeveritySummary) -> Verdict:
    if summary.critical > 0:
        return Verdict.FAIL
    if summary.high > 0:
        return Verdict.REVIEW
    return Verdict.PASS


def generate_recommendation(
    verdict: Verdict, summary: SeveritySummary, flags: Sequence[RedFlag]
) -> str:
    """Recommendation sentence citing the flag that determined the verdict."""
    if verdict == Verdict.FAIL:
        flag = next(f for f in flags if f.severity == Severity.CRITICAL)
        return (
            f"❌ VERIFICATION FAILED: {summary.critical} critical red flag(s) detected. "
            f"{flag.description}"
        )
    if verdict == Verdict.REVIEW:
        flag = next(f for f in flags if f.severity == Severity.HIGH)
        return (
            f"⚠️  MANUAL REVIEW REQUIRED: {summary.high} high-severity red flag(s) detected. "
            f"{flag.description}"
        )
    minor = summary.medium + summary.low
    if minor > 0:
        return (
            f"✅ VERIFICATION PASSED (with {minor} minor flag(s)). "
            f"Review logs for suspicious patterns."
        )
    return "✅ VERIFICATION PASSED: No red flags detected."


class RedFlagDetector:
    """Coordinates the five detection modules.

    Args:
        store: Optional flag persistence; without it detection is in-memory only
        history: Optional timing baseline source for the timing module
        config: Which modules run and the default batch concurrency
        evidence_dir: Base directory for relative artifact paths
    """

    def __init__(
        self,
        store: Optional[RedFlagStore] = None,
        history: Optional[TimingHistoryProvider] = None,
        config: Optional[DetectionConfig] = None,
        evidence_dir: Optional[str] = None,
    ):
        self.store = store
        self.config = config or DetectionConfig()
        self.missing_evidence = MissingEvidenceDetector(evidence_dir)
        self.inconsistent_evidence = InconsistentEvidenceDetector(evidence_dir)
        self.tool_execution = ToolExecutionDetector(evidence_dir)
        self.timing_anomalies = TimingAnomalyDetector(history, evidence_dir)
        self.coverage_analysis = CoverageAnalyzer(evidence_dir)

    def enabled_detectors(self, config: Optional[DetectionConfig] = None) -> List[Detector]:
        config = config or self.config
        toggles = [
            (config.enable_missing_evidence, self.missing_evidence),
            (config.enable_inconsistent_evidence, self.inconsistent_evidence),
            (config.enable_tool_execution, self.tool_execution),
            (config.enable_timing_anomalies, self.timing_anomalies),
            (config.enable_coverage_analysis, self.coverage_analysis),
        ]
        return [detector for enabled, detector in toggles if enabled]

    async def detect(
        self,
        epic_id: str,
        test: TestResult,
        evidence: Sequence[EvidenceArtifact],
        config: Optional[DetectionConfig] = None,
    ) -> DetectionResult:
        """Run detection for one test.

        A module that raises is logged and contributes no flags; the other
        modules' results are kept. Storage failures propagate.
        """
        started = time.perf_counter()
        detectors = self.enabled_detectors(config)
        outcomes = await asyncio.gather(
            *(detector.detect(epic_id, test, evidence) for detector in detectors),
            return_exceptions=True,
        )

        flags: List[RedFlag] = []
        for detector, outcome in zip(detectors, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Detector {detector.name} failed for test {test.id}: {outcome}",
                    exc_info=outcome,
                )
                continue
            flags.extend(outcome)

        if self.store is not None:
            flags = [await self.store.insert_flag(flag) for flag in flags]

        summary = SeveritySummary.from_flags(flags)
        verdict = determine_verdict(summary)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        if flags:
            logger.info(
                f"Test {test.id}: {summary.total} red flag(s), verdict {verdict.value}"
            )
        return DetectionResult(
            epic_id=epic_id,
            test_id=test.id,
            verdict=verdict,
            summary=summary,
            flags=flags,
            recommendation=generate_recommendation(verdict, summary, flags),
            execution_time_ms=elapsed_ms,
        )

    async def detect_batch(
        self,
        epic_id: str,
        tests: Sequence[TestResult],
        evidence_by_test: Mapping[str, Sequence[EvidenceArtifact]],
        config: Optional[DetectionConfig] = None,
        concurrency: Optional[int] = None,
    ) -> List[DetectionResult]:
        """Run detection for many tests, at most ``concurrency`` at a time.

        Results are returned in the order of ``tests``.
        """
        limit = concurrency or (config or self.config).batch_concurrency
        if limit < 1:
            raise ValueError(f"concurrency must be at least 1, got {limit}")
        semaphore = asyncio.Semaphore(limit)

        async def run(test: TestResult) -> DetectionResult:
            async with semaphore:
                return await self.detect(
                    epic_id, test, evidence_by_test.get(test.id, []), config
                )

        return list(await asyncio.gather(*(run(test) for test in tests)))

    @staticmethod
    def aggregate_batch_results(results: Sequence[DetectionResult]) -> BatchSummary:
        """Epic-level totals over a batch of detection results."""
        batch = BatchSummary(total_tests=len(results))
        counts: Dict[Verdict, int] = {verdict: 0 for verdict in Verdict}
        for result in results:
            counts[result.verdict] += 1
            batch.flags.total += result.summary.total
            batch.flags.critical += result.summary.critical
            batch.flags.high += result.summary.high
            batch.flags.medium += result.summary.medium
            batch.flags.low += result.summary.low
        batch.passed_tests = counts[Verdict.PASS]
        batch.failed_tests = counts[Verdict.FAIL]
        batch.review_tests = counts[Verdict.REVIEW]
        return batch
