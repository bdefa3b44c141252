"""Core data model for testwarden.

Tests, evidence artifacts and red flags are the shared vocabulary of the
detection, verification and workflow packages. Records that describe what
happened during a test run (TestResult, EvidenceArtifact) are frozen: once
captured they are never edited.

This module is headless - no CLI or HTTP dependencies.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp (or pass a datetime through), assuming UTC if naive."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TestType(str, Enum):
    """Kind of test that produced the evidence."""

    __test__ = False

    UI = "ui"
    API = "api"
    UNIT = "unit"
    INTEGRATION = "integration"


class PassFail(str, Enum):
    """Outcome reported by the executor."""

    PASS = "pass"
    FAIL = "fail"
    PENDING = "pending"


class ArtifactType(str, Enum):
    """Typed evidence payloads captured during a test run."""

    SCREENSHOT_BEFORE = "screenshot_before"
    SCREENSHOT_AFTER = "screenshot_after"
    CONSOLE_LOG = "console_log"
    NETWORK_TRACE = "network_trace"
    HTTP_REQUEST = "http_request"
    HTTP_RESPONSE = "http_response"
    DOM_SNAPSHOT = "dom_snapshot"
    COVERAGE_BEFORE = "coverage_before"
    COVERAGE_AFTER = "coverage_after"
    TEST_DURATION = "test_duration"
    MCP_TOOL_CALL = "mcp_tool_call"
    TOOL_RESULT = "tool_result"
    VALIDATION_REPORT = "validation_report"
    SIDE_EFFECT_REPORT = "side_effect_report"
    ERROR_SCENARIO_REPORT = "error_scenario_report"


# Evidence a passing test must carry to be trusted
REQUIRED_EVIDENCE: Dict[TestType, Tuple[ArtifactType, ...]] = {
    TestType.UI: (
        ArtifactType.SCREENSHOT_BEFORE,
        ArtifactType.SCREENSHOT_AFTER,
        ArtifactType.CONSOLE_LOG,
    ),
    TestType.API: (ArtifactType.HTTP_REQUEST, ArtifactType.HTTP_RESPONSE),
    TestType.UNIT: (ArtifactType.COVERAGE_BEFORE, ArtifactType.COVERAGE_AFTER),
    TestType.INTEGRATION: (ArtifactType.COVERAGE_BEFORE, ArtifactType.COVERAGE_AFTER),
}


class Severity(str, Enum):
    """Red flag severity. Ordered critical > high > medium > low."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}

# Highest first, used wherever flags are grouped or reported
SEVERITY_ORDER: List[Severity] = sorted(Severity, key=lambda s: s.rank, reverse=True)


class FlagType(str, Enum):
    """Which detector raised a red flag."""

    MISSING_EVIDENCE = "missing_evidence"
    INCONSISTENT = "inconsistent"
    TOOL_EXECUTION = "tool_execution"
    TIMING = "timing"
    COVERAGE = "coverage"


class Verdict(str, Enum):
    """Classification derived purely from red flag severities."""

    PASS = "pass"
    REVIEW = "review"
    FAIL = "fail"


@dataclass(frozen=True)
class TestResult:
    """A test outcome as reported by the execution engine.

    Attributes:
        id: Unique test identifier
        name: Human readable test name (tool identifiers are parsed from it)
        test_type: Kind of test
        pass_fail: Reported outcome
        executed_at: When the test ran
        description: Optional longer description
        duration_ms: Optional duration reported alongside the result
    """

    __test__ = False

    id: str
    name: str
    test_type: TestType
    pass_fail: PassFail
    executed_at: datetime = field(default_factory=_utc_now)
    description: Optional[str] = None
    duration_ms: Optional[int] = None

    @property
    def passed(self) -> bool:
        return self.pass_fail == PassFail.PASS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestResult":
        """Build a TestResult from a JSON-style mapping.

        Raises:
            KeyError: If id, name, test_type or pass_fail is missing
            ValueError: If an enum value is not recognised
        """
        executed_at = data.get("executed_at")
        return cls(
            id=str(data["id"]),
            name=data["name"],
            test_type=TestType(data["test_type"]),
            pass_fail=PassFail(data["pass_fail"]),
            executed_at=parse_timestamp(executed_at) if executed_at else _utc_now(),
            description=data.get("description"),
            duration_ms=data.get("duration_ms"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "test_type": self.test_type.value,
            "pass_fail": self.pass_fail.value,
            "executed_at": self.executed_at.isoformat(),
            "description": self.description,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class EvidenceArtifact:
    """One captured byproduct of a test run.

    Attributes:
        epic_id: Epic the test belongs to
        test_id: Test that produced the artifact
        artifact_type: Typed payload kind
        path: Optional file path of the artifact on disk
        metadata: Payload details recorded by the collector
        captured_at: When the artifact was written
        id: Storage id, None until persisted
    """

    epic_id: str
    test_id: str
    artifact_type: ArtifactType
    path: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    captured_at: datetime = field(default_factory=_utc_now)
    id: Optional[int] = None

    def meta(self, *keys: str, default: Any = None) -> Any:
        """Return the first metadata value present under any of ``keys``."""
        for key in keys:
            if key in self.metadata and self.metadata[key] is not None:
                return self.metadata[key]
        return default

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], epic_id: str = "", test_id: str = ""
    ) -> "EvidenceArtifact":
        """Build an artifact from a JSON-style mapping.

        ``epic_id``/``test_id`` fill in keys the mapping leaves out, which is how
        artifacts nested under a test in an evidence bundle are read.
        """
        captured_at = data.get("captured_at")
        return cls(
            epic_id=data.get("epic_id") or epic_id,
            test_id=data.get("test_id") or test_id,
            artifact_type=ArtifactType(data["artifact_type"]),
            path=data.get("path"),
            metadata=dict(data.get("metadata") or {}),
            captured_at=parse_timestamp(captured_at) if captured_at else _utc_now(),
            id=data.get("id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "epic_id": self.epic_id,
            "test_id": self.test_id,
            "artifact_type": self.artifact_type.value,
            "path": self.path,
            "metadata": self.metadata,
            "captured_at": self.captured_at.isoformat(),
        }


def find_artifact(
    evidence: Iterable[EvidenceArtifact], *types: ArtifactType
) -> Optional[EvidenceArtifact]:
    """Return the first artifact matching any of ``types``."""
    for artifact in evidence:
        if artifact.artifact_type in types:
            return artifact
    return None


def artifact_types(evidence: Iterable[EvidenceArtifact]) -> set:
    return {artifact.artifact_type for artifact in evidence}


@dataclass
class RedFlag:
    """A detected signal that a reported outcome may be false.

    The proof is a JSON snapshot captured at detection time. It is deep-copied
    on construction so later mutation of the source evidence cannot alter it.
    """

    epic_id: str
    test_id: str
    flag_type: FlagType
    severity: Severity
    description: str
    proof: Dict[str, Any] = field(default_factory=dict)
    evidence_id: Optional[int] = None
    detected_at: datetime = field(default_factory=_utc_now)
    resolved: bool = False
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self):
        self.proof = copy.deepcopy(self.proof)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "epic_id": self.epic_id,
            "test_id": self.test_id,
            "evidence_id": self.evidence_id,
            "flag_type": self.flag_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "proof": self.proof,
            "detected_at": self.detected_at.isoformat(),
            "resolved": self.resolved,
            "resolution_notes": self.resolution_notes,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass
class SeveritySummary:
    """Red flag counts by severity."""

    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    @classmethod
    def from_flags(cls, flags: Iterable[RedFlag]) -> "SeveritySummary":
        summary = cls()
        for flag in flags:
            summary.total += 1
            setattr(summary, flag.severity.value, getattr(summary, flag.severity.value) + 1)
        return summary

    def count(self, severity: Severity) -> int:
        return getattr(self, severity.value)

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "critical": self.critical,
            "high": self.high,
            "medium": self.medium,
            "low": self.low,
        }


@dataclass
class DetectionResult:
    """Outcome of running the detectors over one test."""

    epic_id: str
    test_id: str
    verdict: Verdict
    summary: SeveritySummary
    flags: List[RedFlag]
    recommendation: str
    execution_time_ms: int = 0
    generated_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epic_id": self.epic_id,
            "test_id": self.test_id,
            "verdict": self.verdict.value,
            "summary": self.summary.to_dict(),
            "flags": [flag.to_dict() for flag in self.flags],
            "recommendation": self.recommendation,
            "execution_time_ms": self.execution_time_ms,
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass(frozen=True)
class TimingBaseline:
    """Historical duration statistics for one test name."""

    mean_ms: float
    stddev_ms: float
    samples: int


@dataclass
class BatchSummary:
    """Epic-level aggregate over many detection results."""

    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    review_tests: int = 0
    flags: SeveritySummary = field(default_factory=SeveritySummary)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tests": self.total_tests,
            "passed_tests": self.passed_tests,
            "failed_tests": self.failed_tests,
            "review_tests": self.review_tests,
            "flags": self.flags.to_dict(),
        }
