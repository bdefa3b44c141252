"""Skeptical analysis: heuristics for evidence that looks too good to be true.

Each check returns one SuspiciousPattern or None. Checks never raise; an
artifact that cannot be read simply does not contribute a pattern.
"""

import logging
import re
from typing import Iterable, List, Optional, Sequence

from testwarden.core.models import (
    REQUIRED_EVIDENCE,
    ArtifactType,
    EvidenceArtifact,
    RedFlag,
    Severity,
    TestResult,
    TestType,
    find_artifact,
)
from testwarden.detection.timing_anomaly import extract_duration
from testwarden.verification.analyzer import EvidenceAnalyzer
from testwarden.verification.types import SkepticalAnalysisResult, SuspiciousPattern

logger = logging.getLogger(__name__)

# Faster than this and the test almost certainly did not run
SUSPICIOUS_DURATION_MS = {
    TestType.UI: 500,
    TestType.API: 50,
    TestType.UNIT: 10,
    TestType.INTEGRATION: 200,
}

NETWORK_TIME_FACTOR = 2
MIN_REPEATED_LINES = 3

TEMPLATE_PATTERNS = [
    re.compile(r"lorem ipsum", re.IGNORECASE),
    re.compile(r"\bTODO\b"),
    re.compile(r"\{\{[^}]*\}\}"),
    re.compile(r"\bplaceholder\b", re.IGNORECASE),
]


class SkepticalAnalyzer:
    """Looks for suspicious patterns across a test's evidence and red flags."""

    def __init__(self, analyzer: EvidenceAnalyzer):
        self.analyzer = analyzer

    def analyze(
        self,
        test: TestResult,
        evidence: Sequence[EvidenceArtifact],
        red_flags: Sequence[RedFlag],
    ) -> SkepticalAnalysisResult:
        evidence = list(evidence)
        candidates = [
            self._too_perfect(test, evidence),
            self._too_fast(test, evidence),
            self._missing_artifacts(test, evidence),
            self._red_flags_ignored(test, red_flags),
            self._inconsistent_timing(test, evidence),
            self._identical_snapshots(test, evidence),
            self._templated_text(test, evidence),
        ]
        if test.test_type == TestType.UI:
            candidates.extend(
                [
                    self._zero_network(evidence),
                    self._zero_dom_changes(evidence),
                    self._empty_logs(evidence),
                ]
            )
        patterns = [pattern for pattern in candidates if pattern is not None]
        if patterns:
            logger.info(
                f"Suspicious patterns for test {test.id}: {[p.pattern for p in patterns]}"
            )
        return SkepticalAnalysisResult.from_patterns(patterns)

    def _too_perfect(self, test, evidence) -> Optional[SuspiciousPattern]:
        coverage_artifact = find_artifact(evidence, ArtifactType.COVERAGE_AFTER)
        if coverage_artifact is None:
            return None
        coverage = self.analyzer.analyze_coverage(coverage_artifact)
        if coverage is None or coverage.percentage < 100:
            return None

        no_errors = no_warnings = True
        console = find_artifact(evidence, ArtifactType.CONSOLE_LOG)
        logs = self.analyzer.analyze_console_logs(console) if console else None
        if logs is not None:
            no_errors = logs.error_count == 0
            no_warnings = logs.warning_count == 0
        if not (no_errors and no_warnings):
            return None
        return SuspiciousPattern(
            pattern="too_perfect",
            description="Results are suspiciously perfect (no errors, no warnings, 100% coverage)",
            severity=Severity.MEDIUM,
            evidence={"noErrors": no_errors, "noWarnings": no_warnings, "perfectCoverage": True},
        )

    def _too_fast(self, test, evidence) -> Optional[SuspiciousPattern]:
        duration = extract_duration(test, evidence)
        minimum = SUSPICIOUS_DURATION_MS[test.test_type]
        if duration is None or duration >= minimum:
            return None
        return SuspiciousPattern(
            pattern="too_fast",
            description=(
                f"Test completed in {duration:g}ms "
                f"(expected >={minimum}ms for {test.test_type.value} test)"
            ),
            severity=Severity.HIGH,
            evidence={
                "duration": duration,
                "expectedMinimum": minimum,
                "testType": test.test_type.value,
            },
        )

    def _missing_artifacts(self, test, evidence) -> Optional[SuspiciousPattern]:
        if not evidence:
            return SuspiciousPattern(
                pattern="missing_artifacts",
                description="Test has NO artifacts collected - likely not actually run",
                severity=Severity.HIGH,
                evidence={"testType": test.test_type.value},
            )
        present = {artifact.artifact_type for artifact in evidence}
        missing = [t.value for t in REQUIRED_EVIDENCE[test.test_type] if t not in present]
        if not missing:
            return None
        return SuspiciousPattern(
            pattern="missing_artifacts",
            description=f"Missing expected artifacts: {', '.join(missing)}",
            severity=Severity.MEDIUM,
            evidence={"missing": missing, "testType": test.test_type.value},
        )

    def _zero_network(self, evidence) -> Optional[SuspiciousPattern]:
        trace = find_artifact(evidence, ArtifactType.NETWORK_TRACE)
        if trace is None:
            # Not collected, nothing to judge
            return None
        analysis = self.analyzer.analyze_http_traces(trace)
        if analysis is None or analysis.request_count > 0:
            return None
        return SuspiciousPattern(
            pattern="zero_network",
            description="UI test has no network activity (likely not actually run)",
            severity=Severity.HIGH,
            evidence={"requestCount": 0},
        )

    def _zero_dom_changes(self, evidence) -> Optional[SuspiciousPattern]:
        dom = find_artifact(evidence, ArtifactType.DOM_SNAPSHOT)
        if dom is None:
            return None
        analysis = self.analyzer.analyze_dom(dom)
        if analysis is None or analysis.change_count > 0:
            return None
        return SuspiciousPattern(
            pattern="zero_dom_changes",
            description="UI test has no DOM changes (likely not actually run)",
            severity=Severity.MEDIUM,
            evidence={"changeCount": 0},
        )

    def _red_flags_ignored(self, test, red_flags) -> Optional[SuspiciousPattern]:
        serious = [f for f in red_flags if f.severity in (Severity.HIGH, Severity.CRITICAL)]
        if not serious or not test.passed:
            return None
        return SuspiciousPattern(
            pattern="red_flags_ignored",
            description=f"Test passed but {len(serious)} high/critical red flags detected",
            severity=Severity.HIGH,
            evidence={
                "flagCount": len(serious),
                "testResult": test.pass_fail.value,
                "flags": [
                    {
                        "type": f.flag_type.value,
                        "severity": f.severity.value,
                        "description": f.description,
                    }
                    for f in serious
                ],
            },
        )

    def _inconsistent_timing(self, test, evidence) -> Optional[SuspiciousPattern]:
        duration = extract_duration(test, evidence)
        trace = find_artifact(evidence, ArtifactType.NETWORK_TRACE)
        if not duration or trace is None:
            return None
        analysis = self.analyzer.analyze_http_traces(trace)
        if analysis is None:
            return None
        network_time = analysis.request_count * analysis.average_response_time
        if network_time <= duration * NETWORK_TIME_FACTOR:
            return None
        return SuspiciousPattern(
            pattern="inconsistent_timing",
            description=(
                f"Network requests took {network_time:.0f}ms "
                f"but total test duration was {duration:g}ms"
            ),
            severity=Severity.MEDIUM,
            evidence={
                "testDuration": duration,
                "networkTime": network_time,
                "requestCount": analysis.request_count,
            },
        )

    def _empty_logs(self, evidence) -> Optional[SuspiciousPattern]:
        console = find_artifact(evidence, ArtifactType.CONSOLE_LOG)
        if console is None:
            return None
        logs = self.analyzer.analyze_console_logs(console)
        if logs is None or logs.total > 0:
            return None
        return SuspiciousPattern(
            pattern="empty_logs",
            description="UI test has no console output (suspicious)",
            severity=Severity.LOW,
            evidence={"totalLogs": 0},
        )

    def _identical_snapshots(self, test, evidence) -> Optional[SuspiciousPattern]:
        """Before and after captures with the same content mean nothing happened."""
        identical: List[str] = []

        before = find_artifact(evidence, ArtifactType.SCREENSHOT_BEFORE)
        after = find_artifact(evidence, ArtifactType.SCREENSHOT_AFTER)
        if before is not None and after is not None:
            before_hash = self.analyzer.content_hash(before)
            if before_hash is not None and before_hash == self.analyzer.content_hash(after):
                identical.append("screenshots")

        dom = find_artifact(evidence, ArtifactType.DOM_SNAPSHOT)
        if dom is not None:
            dom_before = dom.meta("beforeHash", "before")
            dom_after = dom.meta("afterHash", "after")
            if dom_before is not None and dom_before == dom_after:
                identical.append("dom_snapshots")

        if not identical:
            return None
        return SuspiciousPattern(
            pattern="identical_snapshots",
            description=(
                f"Before and after {' and '.join(identical)} are identical "
                f"(test had no visible effect)"
            ),
            severity=Severity.HIGH,
            evidence={"identical": identical},
        )

    def _templated_text(self, test, evidence) -> Optional[SuspiciousPattern]:
        """Boilerplate placeholder text or a single line repeated as the whole log."""
        matches: List[str] = []
        for text in self._evidence_texts(evidence):
            for pattern in TEMPLATE_PATTERNS:
                found = pattern.search(text)
                if found and found.group(0) not in matches:
                    matches.append(found.group(0))

        repeated = None
        console = find_artifact(evidence, ArtifactType.CONSOLE_LOG)
        logs = self.analyzer.analyze_console_logs(console) if console else None
        if logs is not None:
            lines = [m.strip() for m in logs.messages if m.strip()]
            if len(lines) >= MIN_REPEATED_LINES and len(set(lines)) == 1:
                repeated = lines[0]

        if not matches and repeated is None:
            return None
        evidence_summary = {"placeholders": matches}
        if repeated is not None:
            evidence_summary["repeatedLine"] = repeated
        return SuspiciousPattern(
            pattern="templated_text",
            description="Evidence contains templated or boilerplate text",
            severity=Severity.MEDIUM,
            evidence=evidence_summary,
        )

    def _evidence_texts(self, evidence: Iterable[EvidenceArtifact]) -> List[str]:
        texts: List[str] = []
        console = find_artifact(evidence, ArtifactType.CONSOLE_LOG)
        if console is not None:
            logs = self.analyzer.analyze_console_logs(console)
            if logs is not None:
                texts.extend(logs.messages)
        response = find_artifact(evidence, ArtifactType.HTTP_RESPONSE)
        if response is not None:
            body = response.meta("body")
            if body is not None:
                texts.append(body if isinstance(body, str) else str(body))
        for artifact in evidence:
            text = artifact.meta("text", "visibleText")
            if isinstance(text, str):
                texts.append(text)
        return texts
