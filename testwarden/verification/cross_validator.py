"""Cross-validation of evidence sources against each other.

Every check compares two independent sources and reports whether they tell
the same story. A check whose inputs are absent is not run; a check whose
inputs cannot be read is reported as skipped (matched) unless the unreadable
artifact is itself the thing being validated.
"""

import logging
from datetime import timedelta
from typing import List, Optional, Protocol, Sequence

from testwarden.core.models import (
    ArtifactType,
    EvidenceArtifact,
    Severity,
    TestResult,
    TestType,
    TimingBaseline,
    find_artifact,
)
from testwarden.detection.inconsistent_evidence import is_expected_error_test
from testwarden.detection.timing_anomaly import (
    MIN_SAMPLES,
    count_dom_changes,
    count_network_requests,
    extract_duration,
)
from testwarden.verification.analyzer import EvidenceAnalyzer
from testwarden.verification.types import CrossValidationResult

logger = logging.getLogger(__name__)

DURATION_MISMATCH_RATIO = 0.5
DURATION_HIGH_RATIO = 1.0
MIN_COVERAGE_CHANGE = {TestType.UNIT: 0.5, TestType.INTEGRATION: 0.5}
TIMESTAMP_TOLERANCE = timedelta(minutes=5)

_READ_ERRORS = (OSError, ValueError, TypeError, KeyError, AttributeError)


class BaselineSource(Protocol):
    async def get_baseline(self, test_name: str) -> Optional[TimingBaseline]: ...


class CrossValidator:
    """Compares evidence sources pairwise.

    Args:
        analyzer: Artifact readers
        history: Optional timing baseline source for duration_vs_historical
    """

    def __init__(self, analyzer: EvidenceAnalyzer, history: Optional[BaselineSource] = None):
        self.analyzer = analyzer
        self.history = history

    async def validate(
        self, test: TestResult, evidence: Sequence[EvidenceArtifact]
    ) -> List[CrossValidationResult]:
        evidence = list(evidence)
        sync_checks = [
            self._screenshot_vs_console,
            self._http_vs_schema,
            self._request_vs_trace,
            self._timestamps_across_artifacts,
            self._coverage_vs_scope,
            self._network_vs_ui,
            self._error_vs_result,
        ]
        results: List[CrossValidationResult] = []
        for check in sync_checks:
            outcome = check(test, evidence)
            if outcome is not None:
                results.append(outcome)

        historical = await self._duration_vs_historical(test, evidence)
        if historical is not None:
            results.append(historical)

        mismatches = [r.check for r in results if not r.matched]
        if mismatches:
            logger.info(f"Cross-validation mismatches for test {test.id}: {mismatches}")
        return results

    def _screenshot_vs_console(self, test, evidence) -> Optional[CrossValidationResult]:
        screenshot = find_artifact(evidence, ArtifactType.SCREENSHOT_AFTER)
        console = find_artifact(evidence, ArtifactType.CONSOLE_LOG)
        if screenshot is None or console is None:
            return None
        try:
            shot = self.analyzer.analyze_screenshot(screenshot)
            logs = self.analyzer.analyze_console_logs(console)
        except _READ_ERRORS as e:
            logger.error(f"Failed to validate screenshot vs console for {test.id}: {e}")
            return CrossValidationResult(
                "screenshot_vs_console", False, f"Validation failed: {e}", {}, Severity.MEDIUM
            )
        error_count = logs.error_count if logs else 0
        mismatch = shot.has_error_ui and error_count == 0
        return CrossValidationResult(
            check="screenshot_vs_console",
            matched=not mismatch,
            description=(
                "Screenshot shows error UI but console has no errors"
                if mismatch
                else "Screenshot and console logs are consistent"
            ),
            evidence={"screenshotErrors": shot.errors, "consoleErrorCount": error_count},
            severity=Severity.HIGH if mismatch else None,
        )

    def _http_vs_schema(self, test, evidence) -> Optional[CrossValidationResult]:
        if test.test_type != TestType.API:
            return None
        response_artifact = find_artifact(evidence, ArtifactType.HTTP_RESPONSE)
        if response_artifact is None:
            return None
        try:
            response = self.analyzer.parse_http_response(response_artifact)
        except _READ_ERRORS as e:
            logger.error(f"Failed to validate HTTP response for {test.id}: {e}")
            return CrossValidationResult(
                "http_vs_schema", False, f"Validation failed: {e}", {}, Severity.MEDIUM
            )
        if response is None:
            return CrossValidationResult(
                check="http_vs_schema",
                matched=False,
                description="HTTP response could not be parsed",
                evidence={"responsePath": response_artifact.path},
                severity=Severity.HIGH,
            )
        has_status = "statusCode" in response or "status" in response
        has_body = "body" in response
        matched = has_status and has_body
        return CrossValidationResult(
            check="http_vs_schema",
            matched=matched,
            description=(
                "HTTP response matches expected structure"
                if matched
                else "HTTP response missing required fields (status, body)"
            ),
            evidence={
                "hasStatus": has_status,
                "hasBody": has_body,
                "responseKeys": sorted(response.keys()),
            },
            severity=None if matched else Severity.MEDIUM,
        )

    def _request_vs_trace(self, test, evidence) -> Optional[CrossValidationResult]:
        """The logged request must appear in the recorded network trace."""
        request_artifact = find_artifact(evidence, ArtifactType.HTTP_REQUEST)
        trace_artifact = find_artifact(evidence, ArtifactType.NETWORK_TRACE)
        if request_artifact is None or trace_artifact is None:
            return None
        try:
            request = self.analyzer.parse_http_request(request_artifact)
            trace = self.analyzer.analyze_http_traces(trace_artifact)
        except _READ_ERRORS as e:
            logger.debug(f"Skipping request vs trace for {test.id}: {e}")
            return CrossValidationResult("request_vs_trace", True, f"Validation skipped: {e}")
        if not request or not request.get("url") or trace is None or not trace.requests:
            return None

        method = str(request.get("method", "GET")).upper()
        url = str(request["url"])
        matched = any(
            m == method and (u == url or u.endswith(url) or url.endswith(u))
            for m, u in trace.requests
        )
        return CrossValidationResult(
            check="request_vs_trace",
            matched=matched,
            description=(
                f"Logged request {method} {url} found in network trace"
                if matched
                else f"Logged request {method} {url} not found in network trace"
            ),
            evidence={
                "request": {"method": method, "url": url},
                "traceRequests": [f"{m} {u}" for m, u in trace.requests],
            },
            severity=None if matched else Severity.MEDIUM,
        )

    def _timestamps_across_artifacts(self, test, evidence) -> Optional[CrossValidationResult]:
        """All artifacts must be captured within the test's execution window."""
        if not evidence:
            return None
        duration = extract_duration(test, evidence) or 0
        start = test.executed_at - timedelta(milliseconds=duration) - TIMESTAMP_TOLERANCE
        end = test.executed_at + timedelta(milliseconds=duration) + TIMESTAMP_TOLERANCE
        outside = [
            f"{a.artifact_type.value} ({a.captured_at.isoformat()})"
            for a in evidence
            if not start <= a.captured_at <= end
        ]
        matched = not outside
        return CrossValidationResult(
            check="timestamps_across_artifacts",
            matched=matched,
            description=(
                "All artifacts captured within the test execution window"
                if matched
                else f"{len(outside)} artifact(s) captured outside the test execution window"
            ),
            evidence={
                "windowStart": start.isoformat(),
                "windowEnd": end.isoformat(),
                "outsideWindow": outside,
            },
            severity=None if matched else Severity.MEDIUM,
        )

    async def _duration_vs_historical(self, test, evidence) -> Optional[CrossValidationResult]:
        if self.history is None:
            return None
        duration = extract_duration(test, evidence)
        if duration is None:
            return None
        try:
            baseline = await self.history.get_baseline(test.name)
        except Exception as e:
            # Default to matched so a store failure cannot reject a test
            logger.error(f"Failed to load timing baseline for '{test.name}': {e}")
            return CrossValidationResult(
                "duration_vs_historical",
                True,
                f"Validation skipped: {e}",
                {"durationMs": duration},
            )
        if baseline is None or baseline.samples < MIN_SAMPLES or baseline.mean_ms <= 0:
            return CrossValidationResult(
                "duration_vs_historical",
                True,
                "No historical data available for comparison",
                {"durationMs": duration},
            )

        average = baseline.mean_ms
        deviation = abs(duration - average) / average
        matched = deviation <= DURATION_MISMATCH_RATIO
        if matched:
            description = (
                f"Test duration {duration:g}ms is within expected range (avg: {average:.0f}ms)"
            )
            severity = None
        else:
            description = (
                f"Test duration {duration:g}ms vs historical avg {average:.0f}ms "
                f"({deviation * 100:.0f}% deviation)"
            )
            severity = Severity.HIGH if deviation > DURATION_HIGH_RATIO else Severity.MEDIUM
        return CrossValidationResult(
            check="duration_vs_historical",
            matched=matched,
            description=description,
            evidence={
                "actual": duration,
                "historical": average,
                "deviation": round(deviation * 100),
            },
            severity=severity,
        )

    def _coverage_vs_scope(self, test, evidence) -> Optional[CrossValidationResult]:
        before_artifact = find_artifact(evidence, ArtifactType.COVERAGE_BEFORE)
        after_artifact = find_artifact(evidence, ArtifactType.COVERAGE_AFTER)
        if before_artifact is None or after_artifact is None:
            return None
        before = self.analyzer.analyze_coverage(before_artifact)
        after = self.analyzer.analyze_coverage(after_artifact)
        if before is None or after is None:
            return CrossValidationResult(
                "coverage_vs_scope", True, "Validation skipped: coverage could not be parsed"
            )

        change = round(after.percentage - before.percentage, 2)
        expected = MIN_COVERAGE_CHANGE.get(test.test_type, 0)
        matched = change >= expected
        return CrossValidationResult(
            check="coverage_vs_scope",
            matched=matched,
            description=(
                f"Coverage changed {change}% as expected for {test.test_type.value} test"
                if matched
                else f"Coverage changed {change}% but expected >={expected}% "
                f"for {test.test_type.value} test"
            ),
            evidence={"actual": change, "expected": expected, "testType": test.test_type.value},
            # Coverage can vary between runs
            severity=None if matched else Severity.LOW,
        )

    def _network_vs_ui(self, test, evidence) -> Optional[CrossValidationResult]:
        if test.test_type != TestType.UI:
            return None
        trace = find_artifact(evidence, ArtifactType.NETWORK_TRACE)
        dom = find_artifact(evidence, ArtifactType.DOM_SNAPSHOT)
        if trace is None or dom is None:
            return None
        requests = count_network_requests(trace)
        changes = count_dom_changes(dom)
        matched = (requests > 0) == (changes > 0)
        return CrossValidationResult(
            check="network_vs_ui",
            matched=matched,
            description=(
                "Network activity and UI changes are consistent"
                if matched
                else f"Inconsistent: {requests} network requests but {changes} DOM changes"
            ),
            evidence={"networkRequests": requests, "domChanges": changes},
            severity=None if matched else Severity.MEDIUM,
        )

    def _error_vs_result(self, test, evidence) -> Optional[CrossValidationResult]:
        console = find_artifact(evidence, ArtifactType.CONSOLE_LOG)
        if console is None:
            return None
        try:
            logs = self.analyzer.analyze_console_logs(console)
        except _READ_ERRORS as e:
            logger.debug(f"Skipping error vs result for {test.id}: {e}")
            return CrossValidationResult("error_vs_result", True, f"Validation skipped: {e}")
        if logs is None:
            return None

        mismatch = test.passed and bool(logs.critical_errors) and not is_expected_error_test(test)
        return CrossValidationResult(
            check="error_vs_result",
            matched=not mismatch,
            description=(
                f"Test passed but has {len(logs.critical_errors)} critical errors in logs"
                if mismatch
                else "Error logs match test result"
            ),
            evidence={
                "testResult": test.pass_fail.value,
                "errorCount": logs.error_count,
                "criticalErrors": logs.critical_errors,
            },
            severity=Severity.HIGH if mismatch else None,
        )
