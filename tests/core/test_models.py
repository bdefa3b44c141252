"""Unit tests for testwarden/core/models.py."""

from datetime import timezone

import pytest

from testwarden.core.models import (
    REQUIRED_EVIDENCE,
    SEVERITY_ORDER,
    ArtifactType,
    EvidenceArtifact,
    FlagType,
    PassFail,
    RedFlag,
    Severity,
    SeveritySummary,
    TestResult,
    TestType,
    find_artifact,
    parse_timestamp,
)
from tests.helpers import EPIC_ID, ArtifactFactory, make_test


class TestEnums:
    """Tests for the str-mixin enums."""

    def test_enums_serialize_as_strings(self):
        assert TestType.API == "api"
        assert Severity.CRITICAL.value == "critical"
        assert ArtifactType.MCP_TOOL_CALL == "mcp_tool_call"

    def test_severity_total_order(self):
        """critical > high > medium > low."""
        assert SEVERITY_ORDER == [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW]
        assert Severity.CRITICAL.rank > Severity.HIGH.rank > Severity.MEDIUM.rank > Severity.LOW.rank

    def test_required_evidence_per_type(self):
        assert REQUIRED_EVIDENCE[TestType.UI] == (
            ArtifactType.SCREENSHOT_BEFORE,
            ArtifactType.SCREENSHOT_AFTER,
            ArtifactType.CONSOLE_LOG,
        )
        assert REQUIRED_EVIDENCE[TestType.API] == (
            ArtifactType.HTTP_REQUEST,
            ArtifactType.HTTP_RESPONSE,
        )


class TestTestResult:
    """Tests for TestResult."""

    def test_from_dict_round_trip(self):
        test = make_test(duration_ms=120, description="checks login")
        assert TestResult.from_dict(test.to_dict()) == test

    def test_from_dict_requires_fields(self):
        with pytest.raises(KeyError):
            TestResult.from_dict({"id": "t", "name": "n", "test_type": "ui"})

    def test_from_dict_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            TestResult.from_dict(
                {"id": "t", "name": "n", "test_type": "smoke", "pass_fail": "pass"}
            )

    def test_is_immutable(self):
        test = make_test()
        with pytest.raises(AttributeError):
            test.pass_fail = PassFail.FAIL

    def test_passed_property(self):
        assert make_test().passed is True
        assert make_test(pass_fail=PassFail.FAIL).passed is False


class TestEvidenceArtifact:
    """Tests for EvidenceArtifact and lookups."""

    def test_meta_returns_first_present_key(self):
        artifact = ArtifactFactory()(ArtifactType.HTTP_RESPONSE, status=404)
        assert artifact.meta("statusCode", "status") == 404
        assert artifact.meta("missing", default="x") == "x"

    def test_from_dict_fills_ids_from_context(self):
        artifact = EvidenceArtifact.from_dict(
            {"artifact_type": "console_log", "captured_at": "2026-03-01T12:00:00Z"},
            epic_id=EPIC_ID,
            test_id="test-9",
        )
        assert artifact.epic_id == EPIC_ID
        assert artifact.test_id == "test-9"
        assert artifact.captured_at.tzinfo == timezone.utc

    def test_find_artifact_returns_first_match_in_order(self):
        artifact = ArtifactFactory()
        evidence = [
            artifact(ArtifactType.CONSOLE_LOG),
            artifact(ArtifactType.HTTP_REQUEST, url="/a"),
            artifact(ArtifactType.NETWORK_TRACE),
        ]
        found = find_artifact(evidence, ArtifactType.NETWORK_TRACE, ArtifactType.HTTP_REQUEST)
        assert found.artifact_type == ArtifactType.HTTP_REQUEST
        assert find_artifact(evidence, ArtifactType.DOM_SNAPSHOT) is None

    def test_parse_timestamp_assumes_utc(self):
        assert parse_timestamp("2026-03-01T12:00:00").tzinfo == timezone.utc


class TestSeveritySummary:
    """Tests for SeveritySummary.from_flags."""

    def test_counts_by_severity(self):
        flags = [
            RedFlag(EPIC_ID, "t", FlagType.TIMING, severity, "d")
            for severity in (Severity.CRITICAL, Severity.HIGH, Severity.HIGH, Severity.LOW)
        ]
        summary = SeveritySummary.from_flags(flags)
        assert summary.to_dict() == {"total": 4, "critical": 1, "high": 2, "medium": 0, "low": 1}
        assert summary.count(Severity.HIGH) == 2
