"""Shared test helpers for testwarden tests.

This module provides builders that can be imported by any test file
without conftest.py resolution issues.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from testwarden.core.models import (
    ArtifactType,
    EvidenceArtifact,
    PassFail,
    TestResult,
    TestType,
)

EPIC_ID = "epic-7"
BASE_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_test(
    test_id: str = "test-1",
    name: str = "User can log in",
    test_type: TestType = TestType.UI,
    pass_fail: PassFail = PassFail.PASS,
    description: Optional[str] = None,
    duration_ms: Optional[int] = None,
    executed_at: datetime = BASE_TIME,
) -> TestResult:
    """Build a TestResult with sensible defaults."""
    return TestResult(
        id=test_id,
        name=name,
        test_type=test_type,
        pass_fail=pass_fail,
        executed_at=executed_at,
        description=description,
        duration_ms=duration_ms,
    )


class ArtifactFactory:
    """Builds artifacts whose capture times increase by 100ms per artifact.

    Artifacts are timestamped just after BASE_TIME so they sit inside the
    execution window of tests built with make_test().
    """

    def __init__(self, epic_id: str = EPIC_ID, test_id: str = "test-1"):
        self.epic_id = epic_id
        self.test_id = test_id
        self._count = 0

    def __call__(
        self,
        artifact_type: ArtifactType,
        path: Optional[str] = None,
        **metadata: Any,
    ) -> EvidenceArtifact:
        self._count += 1
        return EvidenceArtifact(
            epic_id=self.epic_id,
            test_id=self.test_id,
            artifact_type=artifact_type,
            path=path,
            metadata=dict(metadata),
            captured_at=BASE_TIME + timedelta(milliseconds=100 * self._count),
        )


def api_evidence(
    status: int = 200, duration_ms: int = 250, body: str = '{"id": 1}', test_id: str = "test-1"
) -> List[EvidenceArtifact]:
    """Complete evidence for a passing API test."""
    artifact = ArtifactFactory(test_id=test_id)
    return [
        artifact(ArtifactType.HTTP_REQUEST, method="GET", url="https://api.test/users/1"),
        artifact(ArtifactType.HTTP_RESPONSE, statusCode=status, body=body),
        artifact(ArtifactType.TEST_DURATION, durationMs=duration_ms),
    ]


def ui_evidence(test_id: str = "test-1") -> List[EvidenceArtifact]:
    """Complete evidence for a passing UI test with network and DOM activity."""
    artifact = ArtifactFactory(test_id=test_id)
    return [
        artifact(ArtifactType.SCREENSHOT_BEFORE, contentHash="aaa"),
        artifact(ArtifactType.DOM_SNAPSHOT, changes=4, before="h1", after="h2"),
        artifact(ArtifactType.NETWORK_TRACE, requestCount=3),
        artifact(ArtifactType.CONSOLE_LOG, lines=["[info] page loaded", "[info] login ok"]),
        artifact(ArtifactType.SCREENSHOT_AFTER, contentHash="bbb"),
        artifact(ArtifactType.TEST_DURATION, durationMs=1800),
    ]


def unit_coverage_evidence(
    before: int, after: int, total: int = 100, test_id: str = "test-1"
) -> List[EvidenceArtifact]:
    """Before/after coverage metadata for a unit test."""
    artifact = ArtifactFactory(test_id=test_id)
    return [
        artifact(
            ArtifactType.COVERAGE_BEFORE, coverage={"linesCovered": before, "linesTotal": total}
        ),
        artifact(
            ArtifactType.COVERAGE_AFTER, coverage={"linesCovered": after, "linesTotal": total}
        ),
        artifact(ArtifactType.TEST_DURATION, durationMs=400),
    ]
