"""Inconsistent evidence detector.

Flags passing tests whose own evidence shows a failure: an error state in the
final screenshot, an HTTP error status, error lines in the console log, or a
DOM snapshot missing elements the test expected. Every hit is high severity.

Tests that deliberately exercise error paths are recognised from their name
and description through EXPECTED_ERROR_PATTERNS and are not flagged. That
list is a tunable policy; it can over-suppress as well as under-suppress.
"""

import logging
import re
from typing import List, Optional

from testwarden.core.models import (
    ArtifactType,
    EvidenceArtifact,
    FlagType,
    RedFlag,
    Severity,
    TestResult,
    TestType,
    find_artifact,
)
from testwarden.detection.base import Detector

logger = logging.getLogger(__name__)

ERROR_PATTERNS = [
    re.compile(r"error", re.IGNORECASE),
    re.compile(r"exception", re.IGNORECASE),
    re.compile(r"failed", re.IGNORECASE),
    re.compile(r"failure", re.IGNORECASE),
    re.compile(r"fatal", re.IGNORECASE),
    re.compile(r"critical", re.IGNORECASE),
    re.compile(r"stack trace", re.IGNORECASE),
    re.compile(r"traceback", re.IGNORECASE),
    re.compile(r"\d{3} error", re.IGNORECASE),
    re.compile(r"4\d{2}\s"),
    re.compile(r"5\d{2}\s"),
    re.compile(r"uncaught", re.IGNORECASE),
    re.compile(r"unhandled", re.IGNORECASE),
    re.compile(r"refused", re.IGNORECASE),
    re.compile(r"timeout", re.IGNORECASE),
    re.compile(r"cannot", re.IGNORECASE),
    re.compile(r"unable to", re.IGNORECASE),
    re.compile(r"not found", re.IGNORECASE),
]

EXPECTED_ERROR_PATTERNS = [
    re.compile(r"test.*error.*handling", re.IGNORECASE),
    re.compile(r"expected.*error", re.IGNORECASE),
    re.compile(r"should.*fail", re.IGNORECASE),
    re.compile(r"expect.*throw", re.IGNORECASE),
    re.compile(r"error.?scenario", re.IGNORECASE),
    re.compile(r"negative.?test", re.IGNORECASE),
]

SCREENSHOT_ERROR_MARKERS = ("error", "fail", "exception")

MAX_CONSOLE_ERRORS_IN_PROOF = 5
MAX_LINE_LENGTH = 200
MAX_BODY_LENGTH = 500


def is_expected_error_test(test: TestResult) -> bool:
    """True if the test's name or description says it expects an error."""
    text = f"{test.name} {test.description or ''}"
    return any(pattern.search(text) for pattern in EXPECTED_ERROR_PATTERNS)


def find_error_lines(content: str) -> List[str]:
    """Lines matching an error keyword, skipping lines that announce expected errors."""
    errors = []
    for line in content.splitlines():
        if any(pattern.search(line) for pattern in EXPECTED_ERROR_PATTERNS):
            continue
        if any(pattern.search(line) for pattern in ERROR_PATTERNS):
            errors.append(line.strip()[:MAX_LINE_LENGTH])
    return errors


class InconsistentEvidenceDetector(Detector):
    """Flags passing tests whose evidence contradicts the reported pass."""

    name = "inconsistent_evidence"
    flag_type = FlagType.INCONSISTENT

    async def _scan(
        self, epic_id: str, test: TestResult, evidence: List[EvidenceArtifact]
    ) -> List[RedFlag]:
        if is_expected_error_test(test):
            return []

        checks = [
            (ArtifactType.SCREENSHOT_AFTER, self._check_screenshot),
            (ArtifactType.HTTP_RESPONSE, self._check_http_response),
            (ArtifactType.CONSOLE_LOG, self._check_console),
        ]
        if test.test_type == TestType.UI:
            checks.append((ArtifactType.DOM_SNAPSHOT, self._check_dom))

        flags: List[RedFlag] = []
        for artifact_type, check in checks:
            artifact = find_artifact(evidence, artifact_type)
            if artifact is None:
                continue
            try:
                flag = check(epic_id, test, artifact)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(
                    f"Skipping {artifact_type.value} check for test {test.id}: {e}"
                )
                continue
            if flag is not None:
                flags.append(flag)
        return flags

    def _check_screenshot(
        self, epic_id: str, test: TestResult, screenshot: EvidenceArtifact
    ) -> Optional[RedFlag]:
        path = (screenshot.path or "").lower()
        if any(marker in path for marker in SCREENSHOT_ERROR_MARKERS):
            return self._flag(
                epic_id,
                test,
                Severity.HIGH,
                f'Test "{test.name}" passed but screenshot indicates error state',
                {
                    "screenshot": screenshot.path,
                    "detectedError": "Screenshot filename indicates error state",
                },
                screenshot.id,
            )

        error_text = screenshot.meta("errorText")
        if screenshot.meta("containsError") or error_text:
            return self._flag(
                epic_id,
                test,
                Severity.HIGH,
                f'Test "{test.name}" passed but screenshot shows error: '
                f"{error_text or 'error detected in screenshot'}",
                {
                    "screenshot": screenshot.path,
                    "detectedError": error_text or "Error detected in screenshot",
                },
                screenshot.id,
            )
        return None

    def _check_http_response(
        self, epic_id: str, test: TestResult, response: EvidenceArtifact
    ) -> Optional[RedFlag]:
        status = response.meta("statusCode", "status")
        if status is None or int(status) < 400:
            return None

        body = response.meta("body")
        if body is None:
            body = self.read_text(response) or ""
        if not isinstance(body, str):
            body = str(body)

        return self._flag(
            epic_id,
            test,
            Severity.HIGH,
            f'Test "{test.name}" passed but HTTP response was {int(status)}',
            {"httpStatus": int(status), "httpResponse": body[:MAX_BODY_LENGTH]},
            response.id,
        )

    def _check_console(
        self, epic_id: str, test: TestResult, console_log: EvidenceArtifact
    ) -> Optional[RedFlag]:
        content = self.read_text(console_log)
        if content is None:
            content = console_log.meta("content")
        if content is None:
            lines = console_log.meta("lines")
            if isinstance(lines, list):
                content = "\n".join(str(line) for line in lines)
        if not content:
            return None

        errors = find_error_lines(content)
        if not errors:
            return None

        return self._flag(
            epic_id,
            test,
            Severity.HIGH,
            f'Test "{test.name}" passed but console contains {len(errors)} error(s)',
            {"consoleErrors": errors[:MAX_CONSOLE_ERRORS_IN_PROOF]},
            console_log.id,
        )

    def _check_dom(
        self, epic_id: str, test: TestResult, dom_snapshot: EvidenceArtifact
    ) -> Optional[RedFlag]:
        expected = list(dom_snapshot.meta("expectedElements", default=[]))
        if not expected:
            return None

        found = set(dom_snapshot.meta("foundElements", default=[]))
        missing = [element for element in expected if element not in found]
        if not missing:
            return None

        return self._flag(
            epic_id,
            test,
            Severity.HIGH,
            f'Test "{test.name}" passed but DOM missing expected elements: {", ".join(missing)}',
            {"expectedElements": expected, "missingElements": missing},
            dom_snapshot.id,
        )
