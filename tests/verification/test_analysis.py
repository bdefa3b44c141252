"""Tests for integrity checks, cross-validation, skeptical analysis and scoring."""

from dataclasses import replace
from datetime import timedelta

import pytest

from testwarden.core.config import ConfidenceThresholds
from testwarden.core.models import ArtifactType, Severity, TestType, TimingBaseline
from testwarden.verification import (
    CrossValidationResult,
    CrossValidator,
    EvidenceAnalyzer,
    EvidenceReviewSummary,
    IntegrityChecker,
    IntegrityCheckResult,
    RedFlagBreakdown,
    SkepticalAnalysisResult,
    SkepticalAnalyzer,
    SuspiciousPattern,
    calculate_confidence,
)
from tests.helpers import BASE_TIME, ArtifactFactory, api_evidence, make_test, ui_evidence


class StaticHistory:
    def __init__(self, baseline):
        self.baseline = baseline

    async def get_baseline(self, test_name):
        return self.baseline


def score(
    evidence=(),
    test_type=TestType.API,
    review=None,
    flags=None,
    integrity_passed=True,
    cross_validation=(),
    patterns=(),
):
    return calculate_confidence(
        test_type,
        list(evidence),
        review or EvidenceReviewSummary(total_artifacts=len(evidence)),
        flags or RedFlagBreakdown(),
        IntegrityCheckResult(passed=integrity_passed),
        list(cross_validation),
        SkepticalAnalysisResult.from_patterns(list(patterns)),
        ConfidenceThresholds(),
    )


class TestConfidence:
    """Tests for calculate_confidence."""

    def test_clean_evidence_scores_100(self):
        assert score(api_evidence()).final_score == 100

    def test_deductions_are_additive(self):
        calculation = score(
            api_evidence(),
            flags=RedFlagBreakdown(total=2, high=1, medium=1),
            cross_validation=[CrossValidationResult("request_vs_trace", False, "mismatch")],
            patterns=[SuspiciousPattern("too_fast", "fast", Severity.HIGH)],
        )
        # 100 - 20 - 10 - 15 - 20
        assert calculation.final_score == 35
        assert calculation.factors.red_flag_penalty == 30
        assert calculation.factors.evidence_consistency == 85

    def test_score_clamped_at_zero(self):
        calculation = score(
            api_evidence(),
            flags=RedFlagBreakdown(total=3, critical=3),
            integrity_passed=False,
        )
        assert calculation.final_score == 0
        assert calculation.factors.integrity_score == 70.0

    def test_complete_ui_evidence_bonus(self):
        calculation = score(
            ui_evidence(), test_type=TestType.UI, flags=RedFlagBreakdown(total=1, high=1)
        )
        assert calculation.final_score == 90
        assert "bonus" in calculation.explanation

    def test_score_clamped_at_100(self):
        assert score(ui_evidence(), test_type=TestType.UI).final_score == 100

    def test_missing_artifacts(self):
        review = EvidenceReviewSummary(total_artifacts=0, missing_artifacts=["http_request"])
        assert score(review=review).final_score == 75


class TestIntegrityChecker:
    """Tests for the structural checks."""

    def check(self, evidence, test=None, strict=False, evidence_dir=None):
        checker = IntegrityChecker(EvidenceAnalyzer(evidence_dir), strict)
        return checker.check(test or make_test(), evidence)

    def test_complete_metadata_only_evidence_passes(self):
        result = self.check(ui_evidence())
        assert result.passed is True
        assert all(result.checks.values())

    def test_out_of_order_timestamps(self):
        artifact = ArtifactFactory()
        after = artifact(ArtifactType.SCREENSHOT_AFTER)
        before = artifact(ArtifactType.SCREENSHOT_BEFORE)
        result = self.check([before, after, artifact(ArtifactType.CONSOLE_LOG)])

        assert result.passed is False
        assert result.checks["timestamps_sequential"] is False
        assert "out of sequence" in result.errors[0]

    def test_tiny_screenshot_is_corrupt(self, temp_dir):
        (temp_dir / "before.png").write_bytes(b"x" * 100)
        artifact = ArtifactFactory()
        result = self.check(
            [artifact(ArtifactType.SCREENSHOT_BEFORE, path="before.png")],
            evidence_dir=str(temp_dir),
        )
        assert result.checks["sizes_reasonable"] is False
        assert "too small" in result.errors[0]

    def test_wrong_extension(self, temp_dir):
        (temp_dir / "request.txt").write_text('{"method": "GET", "url": "/users"}')
        artifact = ArtifactFactory()
        result = self.check(
            [artifact(ArtifactType.HTTP_REQUEST, path=str(temp_dir / "request.txt"))],
            test=make_test(test_type=TestType.API),
        )
        assert result.checks["formats_correct"] is False

    def test_strict_mode_promotes_warnings(self):
        artifact = ArtifactFactory()
        evidence = [artifact(ArtifactType.HTTP_RESPONSE, statusCode=200, body="{}")]
        test = make_test(test_type=TestType.API)

        assert self.check(evidence, test).passed is True
        assert self.check(evidence, test, strict=True).passed is False


class TestCrossValidator:
    """Tests for pairwise evidence comparison."""

    @pytest.mark.asyncio
    async def test_consistent_api_evidence(self):
        results = await CrossValidator(EvidenceAnalyzer()).validate(
            make_test(test_type=TestType.API), api_evidence()
        )
        checks = {r.check: r.matched for r in results}
        assert checks == {"http_vs_schema": True, "timestamps_across_artifacts": True}

    @pytest.mark.asyncio
    async def test_request_missing_from_trace(self):
        artifact = ArtifactFactory()
        evidence = [
            artifact(ArtifactType.HTTP_REQUEST, method="POST", url="https://api.test/orders"),
            artifact(
                ArtifactType.NETWORK_TRACE,
                requests=[{"method": "GET", "url": "https://api.test/health", "statusCode": 200}],
            ),
        ]
        results = await CrossValidator(EvidenceAnalyzer()).validate(
            make_test(test_type=TestType.API), evidence
        )
        mismatch = next(r for r in results if r.check == "request_vs_trace")
        assert mismatch.matched is False
        assert mismatch.severity == Severity.MEDIUM

    @pytest.mark.asyncio
    async def test_artifact_outside_execution_window(self):
        artifact = ArtifactFactory()
        late = replace(
            artifact(ArtifactType.CONSOLE_LOG, lines=["[info] ok"]),
            captured_at=BASE_TIME + timedelta(hours=1),
        )
        results = await CrossValidator(EvidenceAnalyzer()).validate(make_test(), [late])
        window = next(r for r in results if r.check == "timestamps_across_artifacts")
        assert window.matched is False

    @pytest.mark.asyncio
    async def test_duration_far_from_history(self):
        history = StaticHistory(TimingBaseline(mean_ms=1000.0, stddev_ms=50.0, samples=4))
        results = await CrossValidator(EvidenceAnalyzer(), history).validate(
            make_test(test_type=TestType.API), api_evidence(duration_ms=250)
        )
        historical = next(r for r in results if r.check == "duration_vs_historical")
        assert historical.matched is False
        assert historical.evidence["deviation"] == 75

    @pytest.mark.asyncio
    async def test_passing_test_with_critical_log_errors(self):
        artifact = ArtifactFactory()
        evidence = [artifact(ArtifactType.CONSOLE_LOG, lines=["Uncaught exception in handler"])]
        results = await CrossValidator(EvidenceAnalyzer()).validate(make_test(), evidence)
        errors = next(r for r in results if r.check == "error_vs_result")
        assert errors.matched is False
        assert errors.severity == Severity.HIGH


class TestSkepticalAnalyzer:
    """Tests for suspicious pattern heuristics."""

    def analyze(self, test, evidence, flags=()):
        return SkepticalAnalyzer(EvidenceAnalyzer()).analyze(test, evidence, list(flags))

    def patterns(self, result):
        return {p.pattern for p in result.patterns}

    def test_clean_ui_evidence(self):
        result = self.analyze(make_test(), ui_evidence())
        assert result.suspicious is False
        assert result.concerns == []

    def test_identical_before_after_screenshots(self):
        artifact = ArtifactFactory()
        evidence = [
            artifact(ArtifactType.SCREENSHOT_BEFORE, contentHash="same"),
            artifact(ArtifactType.SCREENSHOT_AFTER, contentHash="same"),
        ]
        result = self.analyze(make_test(test_type=TestType.API, duration_ms=300), evidence)
        assert "identical_snapshots" in self.patterns(result)
        assert result.recommend_manual_review is True

    def test_templated_response_body(self):
        evidence = api_evidence(body="Lorem ipsum dolor sit amet")
        result = self.analyze(make_test(test_type=TestType.API), evidence)
        assert self.patterns(result) == {"templated_text"}

    def test_repeated_log_line(self):
        artifact = ArtifactFactory()
        evidence = api_evidence() + [
            artifact(ArtifactType.CONSOLE_LOG, lines=["request ok", "request ok", "request ok"])
        ]
        result = self.analyze(make_test(test_type=TestType.API), evidence)
        templated = next(p for p in result.patterns if p.pattern == "templated_text")
        assert templated.evidence["repeatedLine"] == "request ok"

    def test_too_fast(self):
        result = self.analyze(make_test(test_type=TestType.API), api_evidence(duration_ms=20))
        assert self.patterns(result) == {"too_fast"}

    def test_no_artifacts(self):
        result = self.analyze(make_test(test_type=TestType.UNIT), [])
        assert "missing_artifacts" in self.patterns(result)
