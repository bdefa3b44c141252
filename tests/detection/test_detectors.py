"""Tests for the five red flag detection modules."""

import pytest

from testwarden.core.models import (
    ArtifactType,
    FlagType,
    PassFail,
    Severity,
    TestType,
    TimingBaseline,
)
from testwarden.detection.coverage_analyzer import (
    CoverageAnalyzer,
    parse_istanbul_json,
    parse_lcov,
)
from testwarden.detection.inconsistent_evidence import (
    InconsistentEvidenceDetector,
    is_expected_error_test,
)
from testwarden.detection.missing_evidence import MissingEvidenceDetector
from testwarden.detection.timing_anomaly import TimingAnomalyDetector
from testwarden.detection.tool_execution import (
    ToolExecutionDetector,
    extract_expected_tools,
    normalize_tool,
)
from tests.helpers import (
    EPIC_ID,
    ArtifactFactory,
    api_evidence,
    make_test,
    ui_evidence,
    unit_coverage_evidence,
)


class StaticHistory:
    """Timing history that always returns the same baseline."""

    def __init__(self, baseline):
        self.baseline = baseline
        self.calls = []

    async def get_baseline(self, test_name):
        self.calls.append(test_name)
        return self.baseline


class TestMissingEvidenceDetector:
    """Tests for MissingEvidenceDetector."""

    @pytest.mark.asyncio
    async def test_ui_test_with_only_before_screenshot(self, artifact):
        """A UI pass with only screenshot_before is one critical flag."""
        test = make_test()
        flags = await MissingEvidenceDetector().detect(
            EPIC_ID, test, [artifact(ArtifactType.SCREENSHOT_BEFORE)]
        )

        assert len(flags) == 1
        assert flags[0].severity == Severity.CRITICAL
        assert flags[0].flag_type == FlagType.MISSING_EVIDENCE
        assert flags[0].proof["missingArtifacts"] == ["screenshot_after", "console_log"]

    @pytest.mark.asyncio
    async def test_complete_evidence_has_no_flags(self):
        flags = await MissingEvidenceDetector().detect(EPIC_ID, make_test(), ui_evidence())
        assert flags == []

    @pytest.mark.asyncio
    async def test_empty_console_log_is_critical(self, artifact):
        evidence = ui_evidence()
        evidence.append(artifact(ArtifactType.CONSOLE_LOG, lineCount=0))
        evidence = [e for e in evidence if e.metadata.get("lines") is None]

        flags = await MissingEvidenceDetector().detect(EPIC_ID, make_test(), evidence)

        assert len(flags) == 1
        assert "console log is empty" in flags[0].description

    @pytest.mark.asyncio
    async def test_empty_console_log_file(self, temp_dir, artifact):
        log = temp_dir / "console.log"
        log.write_text("")
        evidence = [
            artifact(ArtifactType.SCREENSHOT_BEFORE),
            artifact(ArtifactType.SCREENSHOT_AFTER),
            artifact(ArtifactType.CONSOLE_LOG, path=str(log)),
        ]
        flags = await MissingEvidenceDetector().detect(EPIC_ID, make_test(), evidence)
        assert [f.severity for f in flags] == [Severity.CRITICAL]

    @pytest.mark.asyncio
    async def test_failing_test_is_not_scrutinized(self):
        test = make_test(pass_fail=PassFail.FAIL)
        assert await MissingEvidenceDetector().detect(EPIC_ID, test, []) == []


class TestInconsistentEvidenceDetector:
    """Tests for InconsistentEvidenceDetector."""

    @pytest.mark.asyncio
    async def test_http_404_is_high(self):
        """An API pass with a 404 response is one high flag."""
        test = make_test(name="Get user by id", test_type=TestType.API)
        flags = await InconsistentEvidenceDetector().detect(
            EPIC_ID, test, api_evidence(status=404, body="Not Found")
        )

        assert len(flags) == 1
        assert flags[0].severity == Severity.HIGH
        assert flags[0].proof["httpStatus"] == 404
        assert "HTTP response was 404" in flags[0].description

    @pytest.mark.asyncio
    async def test_console_errors_are_high(self, artifact):
        evidence = [
            artifact(
                ArtifactType.CONSOLE_LOG,
                lines=["[info] start", "Uncaught TypeError: x is undefined", "[info] done"],
            )
        ]
        flags = await InconsistentEvidenceDetector().detect(EPIC_ID, make_test(), evidence)

        assert len(flags) == 1
        assert flags[0].proof["consoleErrors"] == ["Uncaught TypeError: x is undefined"]

    @pytest.mark.asyncio
    async def test_expected_error_test_is_suppressed(self, artifact):
        test = make_test(name="Login should fail with bad password")
        evidence = [artifact(ArtifactType.CONSOLE_LOG, lines=["Error: invalid credentials"])]
        assert is_expected_error_test(test)
        assert await InconsistentEvidenceDetector().detect(EPIC_ID, test, evidence) == []

    @pytest.mark.asyncio
    async def test_screenshot_filename_marks_error(self, artifact):
        evidence = [artifact(ArtifactType.SCREENSHOT_AFTER, path="shots/login-error.png")]
        flags = await InconsistentEvidenceDetector().detect(EPIC_ID, make_test(), evidence)
        assert flags[0].proof["detectedError"] == "Screenshot filename indicates error state"

    @pytest.mark.asyncio
    async def test_dom_missing_expected_elements(self, artifact):
        evidence = [
            artifact(
                ArtifactType.DOM_SNAPSHOT,
                expectedElements=["#welcome", "#logout"],
                foundElements=["#welcome"],
            )
        ]
        flags = await InconsistentEvidenceDetector().detect(EPIC_ID, make_test(), evidence)
        assert flags[0].proof["missingElements"] == ["#logout"]

    @pytest.mark.asyncio
    async def test_clean_evidence(self):
        assert await InconsistentEvidenceDetector().detect(EPIC_ID, make_test(), ui_evidence()) == []


class TestToolExecutionDetector:
    """Tests for ToolExecutionDetector."""

    def test_extract_expected_tools(self):
        tools = extract_expected_tools(
            "Creates issue via github::create_issue", "then mcp__github__add_label"
        )
        assert tools == ["github::create_issue", "github::add_label"]

    def test_normalize_tool(self):
        assert normalize_tool("Create_Issue", "GitHub") == "github::create_issue"
        assert normalize_tool("mcp__github__create_issue") == "github::create_issue"

    @pytest.mark.asyncio
    async def test_wrong_tool_called(self, artifact):
        """A different tool from the same namespace is one critical flag naming both."""
        test = make_test(name="Files bug with github::create_issue", test_type=TestType.API)
        evidence = [
            artifact(
                ArtifactType.MCP_TOOL_CALL,
                toolCalls=[{"tool": "create_pull_request", "server": "github"}],
            ),
            artifact(ArtifactType.TOOL_RESULT, result={"number": 3}),
        ]
        flags = await ToolExecutionDetector().detect(EPIC_ID, test, evidence)

        assert len(flags) == 1
        assert flags[0].severity == Severity.CRITICAL
        assert "github::create_pull_request" in flags[0].description
        assert "github::create_issue" in flags[0].description

    @pytest.mark.asyncio
    async def test_wrong_tool_from_other_namespace(self, artifact):
        test = make_test(name="Calls github::create_issue", test_type=TestType.API)
        evidence = [
            artifact(
                ArtifactType.MCP_TOOL_CALL,
                toolCalls=[{"tool": "send_message", "server": "slack"}],
            ),
            artifact(ArtifactType.TOOL_RESULT, result={"ok": True}),
        ]
        flags = await ToolExecutionDetector().detect(EPIC_ID, test, evidence)

        assert len(flags) == 1
        assert flags[0].severity == Severity.CRITICAL
        assert "called wrong tools: slack::send_message instead of github::create_issue" in (
            flags[0].description
        )
        assert flags[0].proof["wrongToolCalled"] == {
            "actual": "slack::send_message",
            "expected": "github::create_issue",
        }

    @pytest.mark.asyncio
    async def test_expected_tool_never_called(self, artifact):
        test = make_test(name="Searches with search::query")
        flags = await ToolExecutionDetector().detect(EPIC_ID, test, [])
        assert len(flags) == 1
        assert flags[0].proof["missingTools"] == ["search::query"]

    @pytest.mark.asyncio
    async def test_tool_called_without_result(self, artifact):
        test = make_test(name="Searches with search::query")
        evidence = [artifact(ArtifactType.MCP_TOOL_CALL, tool="query", server="search")]
        flags = await ToolExecutionDetector().detect(EPIC_ID, test, evidence)
        assert len(flags) == 1
        assert flags[0].proof["missingArtifacts"] == ["tool_result"]

    @pytest.mark.asyncio
    async def test_expected_tool_called_with_result(self, artifact):
        test = make_test(name="Searches with search::query")
        evidence = [
            artifact(ArtifactType.MCP_TOOL_CALL, tool="query", server="search"),
            artifact(ArtifactType.TOOL_RESULT),
        ]
        assert await ToolExecutionDetector().detect(EPIC_ID, test, evidence) == []


class TestTimingAnomalyDetector:
    """Tests for TimingAnomalyDetector."""

    @pytest.mark.asyncio
    async def test_fast_api_test_without_history(self):
        """30ms API test with too few samples: exactly one medium flag."""
        history = StaticHistory(TimingBaseline(mean_ms=300.0, stddev_ms=10.0, samples=2))
        test = make_test(name="Get user", test_type=TestType.API)

        flags = await TimingAnomalyDetector(history).detect(
            EPIC_ID, test, api_evidence(duration_ms=30)
        )

        assert len(flags) == 1
        assert flags[0].severity == Severity.MEDIUM
        assert flags[0].proof["expectedMinDuration"] == 100
        assert "historicalAvg" not in flags[0].proof

    @pytest.mark.asyncio
    async def test_historical_outlier_is_medium(self):
        history = StaticHistory(TimingBaseline(mean_ms=1000.0, stddev_ms=100.0, samples=5))
        test = make_test(name="Get user", test_type=TestType.API)

        flags = await TimingAnomalyDetector(history).detect(
            EPIC_ID, test, api_evidence(duration_ms=300)
        )

        assert len(flags) == 1
        assert flags[0].severity == Severity.MEDIUM
        assert flags[0].proof["historicalAvg"] == 1000.0
        assert history.calls == ["Get user"]

    @pytest.mark.asyncio
    async def test_noisy_history_is_low(self):
        history = StaticHistory(TimingBaseline(mean_ms=1000.0, stddev_ms=400.0, samples=5))
        test = make_test(name="Get user", test_type=TestType.API)

        flags = await TimingAnomalyDetector(history).detect(
            EPIC_ID, test, api_evidence(duration_ms=300)
        )

        assert [f.severity for f in flags] == [Severity.LOW]

    @pytest.mark.asyncio
    async def test_history_failure_keeps_other_checks(self):
        class BrokenHistory:
            async def get_baseline(self, test_name):
                raise RuntimeError("store offline")

        test = make_test(name="Get user", test_type=TestType.API)
        flags = await TimingAnomalyDetector(BrokenHistory()).detect(
            EPIC_ID, test, api_evidence(duration_ms=30)
        )
        assert [f.severity for f in flags] == [Severity.MEDIUM]

    @pytest.mark.asyncio
    async def test_ui_test_without_activity(self, artifact):
        evidence = [artifact(ArtifactType.TEST_DURATION, durationMs=2000)]
        flags = await TimingAnomalyDetector().detect(EPIC_ID, make_test(), evidence)

        descriptions = [f.description for f in flags]
        assert len(flags) == 2
        assert any("zero network activity" in d for d in descriptions)
        assert any("zero DOM changes" in d for d in descriptions)

    @pytest.mark.asyncio
    async def test_ui_test_with_activity(self):
        assert await TimingAnomalyDetector().detect(EPIC_ID, make_test(), ui_evidence()) == []

    @pytest.mark.asyncio
    async def test_no_duration_no_flags(self):
        test = make_test(test_type=TestType.API)
        assert await TimingAnomalyDetector().detect(EPIC_ID, test, []) == []


class TestCoverageAnalyzer:
    """Tests for CoverageAnalyzer and its parsers."""

    @pytest.mark.asyncio
    async def test_unchanged_coverage_is_high(self):
        """100/100 lines before and after: one high 'coverage unchanged' flag."""
        test = make_test(name="adds numbers", test_type=TestType.UNIT)
        flags = await CoverageAnalyzer().detect(EPIC_ID, test, unit_coverage_evidence(100, 100))

        assert len(flags) == 1
        assert flags[0].severity == Severity.HIGH
        assert "coverage unchanged" in flags[0].description
        assert flags[0].proof["diff"] == 0

    @pytest.mark.asyncio
    async def test_decreased_coverage_is_high(self):
        test = make_test(test_type=TestType.UNIT)
        flags = await CoverageAnalyzer().detect(EPIC_ID, test, unit_coverage_evidence(50, 40))
        assert "decreased by 10 lines" in flags[0].description
        assert flags[0].severity == Severity.HIGH

    @pytest.mark.asyncio
    async def test_small_increase_is_medium(self):
        test = make_test(test_type=TestType.UNIT)
        flags = await CoverageAnalyzer().detect(EPIC_ID, test, unit_coverage_evidence(50, 52))
        assert flags[0].severity == Severity.MEDIUM
        assert flags[0].proof["expectedMinIncrease"] == 5

    @pytest.mark.asyncio
    async def test_healthy_increase(self):
        test = make_test(test_type=TestType.UNIT)
        assert await CoverageAnalyzer().detect(EPIC_ID, test, unit_coverage_evidence(50, 70)) == []

    @pytest.mark.asyncio
    async def test_ui_tests_are_skipped(self):
        assert await CoverageAnalyzer().detect(EPIC_ID, make_test(), unit_coverage_evidence(1, 1)) == []

    @pytest.mark.asyncio
    async def test_malformed_report_degrades_to_no_flag(self, temp_dir, artifact):
        broken = temp_dir / "after.json"
        broken.write_text("{not json")
        evidence = [
            artifact(ArtifactType.COVERAGE_BEFORE, coverage={"linesCovered": 5, "linesTotal": 10}),
            artifact(ArtifactType.COVERAGE_AFTER, path=str(broken)),
        ]
        test = make_test(test_type=TestType.UNIT)
        assert await CoverageAnalyzer().detect(EPIC_ID, test, evidence) == []

    def test_parse_lcov(self):
        coverage = parse_lcov("TN:\nSF:a.py\nLH:8\nLF:10\nBRH:1\nBRF:2\nend_of_record\n")
        assert coverage.lines_covered == 8
        assert coverage.lines_total == 10
        assert coverage.percentage == 80.0

    def test_parse_istanbul_json(self):
        coverage = parse_istanbul_json(
            {"a.js": {"s": {"1": 1, "2": 0}, "b": {"1": [0, 1]}, "f": {"1": 2}}}
        )
        assert (coverage.lines_covered, coverage.lines_total) == (1, 2)
        assert (coverage.branches_covered, coverage.functions_covered) == (1, 1)

    @pytest.mark.asyncio
    async def test_reads_lcov_file_relative_to_evidence_dir(self, temp_dir):
        (temp_dir / "before.info").write_text("SF:a.py\nLH:10\nLF:20\n")
        (temp_dir / "after.info").write_text("SF:a.py\nLH:10\nLF:20\n")
        artifact = ArtifactFactory()
        evidence = [
            artifact(ArtifactType.COVERAGE_BEFORE, path="before.info"),
            artifact(ArtifactType.COVERAGE_AFTER, path="after.info"),
        ]
        test = make_test(test_type=TestType.INTEGRATION)

        flags = await CoverageAnalyzer(str(temp_dir)).detect(EPIC_ID, test, evidence)

        assert len(flags) == 1
        assert "10/20 lines" in flags[0].description
