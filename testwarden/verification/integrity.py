"""Structural integrity checks over one test's evidence.

Four checks run over every artifact set:

- files_exist: artifacts that declare a path must exist on disk
- timestamps_sequential: capture times follow the before -> action -> after order
- sizes_reasonable: screenshots 10 KB-5 MB, JSON files > 10 bytes, DOM > 100 bytes
- formats_correct: file extensions match the artifact type

Errors fail the check; warnings are reported only. In strict mode warnings
count as errors. Missing required artifacts are warnings here because the
confidence score already penalizes them.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from testwarden.core.models import REQUIRED_EVIDENCE, ArtifactType, EvidenceArtifact, TestResult
from testwarden.verification.analyzer import EvidenceAnalyzer
from testwarden.verification.types import IntegrityCheckResult

logger = logging.getLogger(__name__)

# Expected capture order, earliest first
CAPTURE_SEQUENCE: Tuple[ArtifactType, ...] = (
    ArtifactType.SCREENSHOT_BEFORE,
    ArtifactType.DOM_SNAPSHOT,
    ArtifactType.HTTP_REQUEST,
    ArtifactType.NETWORK_TRACE,
    ArtifactType.CONSOLE_LOG,
    ArtifactType.HTTP_RESPONSE,
    ArtifactType.SCREENSHOT_AFTER,
    ArtifactType.COVERAGE_AFTER,
)

MIN_SEQUENCE_GAP_MS = 10
MIN_SCREENSHOT_BYTES = 10 * 1024
MAX_SCREENSHOT_BYTES = 5 * 1024 * 1024
MIN_JSON_BYTES = 10
MIN_DOM_BYTES = 100

SCREENSHOT_TYPES = (ArtifactType.SCREENSHOT_BEFORE, ArtifactType.SCREENSHOT_AFTER)
JSON_TYPES = (
    ArtifactType.CONSOLE_LOG,
    ArtifactType.NETWORK_TRACE,
    ArtifactType.HTTP_REQUEST,
    ArtifactType.HTTP_RESPONSE,
    ArtifactType.COVERAGE_BEFORE,
    ArtifactType.COVERAGE_AFTER,
)

ALLOWED_EXTENSIONS: Dict[ArtifactType, Tuple[str, ...]] = {
    ArtifactType.SCREENSHOT_BEFORE: (".png", ".jpg", ".jpeg"),
    ArtifactType.SCREENSHOT_AFTER: (".png", ".jpg", ".jpeg"),
    ArtifactType.CONSOLE_LOG: (".json", ".log", ".txt"),
    ArtifactType.NETWORK_TRACE: (".json", ".har"),
    ArtifactType.HTTP_REQUEST: (".json",),
    ArtifactType.HTTP_RESPONSE: (".json",),
    ArtifactType.COVERAGE_BEFORE: (".json", ".info", ".lcov"),
    ArtifactType.COVERAGE_AFTER: (".json", ".info", ".lcov"),
}


class IntegrityChecker:
    """Validates that evidence is complete, ordered and plausibly sized."""

    def __init__(self, analyzer: EvidenceAnalyzer, strict_mode: bool = False):
        self.analyzer = analyzer
        self.strict_mode = strict_mode

    def check(
        self, test: TestResult, evidence: Sequence[EvidenceArtifact]
    ) -> IntegrityCheckResult:
        errors: List[str] = []
        warnings: List[str] = []

        present = {artifact.artifact_type for artifact in evidence}
        missing = [t.value for t in REQUIRED_EVIDENCE[test.test_type] if t not in present]
        if missing:
            warnings.append(f"Missing required artifacts: {', '.join(missing)}")

        checks = {
            "files_exist": self._check_files_exist(evidence, errors),
            "timestamps_sequential": self._check_timestamps(evidence, errors, warnings),
            "sizes_reasonable": self._check_sizes(evidence, errors, warnings),
            "formats_correct": self._check_formats(evidence, errors, warnings),
        }

        if self.strict_mode and warnings:
            errors.extend(f"(strict) {warning}" for warning in warnings)
            warnings = []

        passed = all(checks.values()) and not errors
        if not passed:
            logger.warning(f"Integrity check failed for test {test.id}: {errors}")
        return IntegrityCheckResult(passed=passed, checks=checks, errors=errors, warnings=warnings)

    def _check_files_exist(self, evidence: Sequence[EvidenceArtifact], errors: List[str]) -> bool:
        ok = True
        for artifact in evidence:
            path = self.analyzer.resolve_path(artifact)
            if path is not None and not path.exists():
                errors.append(
                    f"Artifact file does not exist: {artifact.path} ({artifact.artifact_type.value})"
                )
                ok = False
        return ok

    def _check_timestamps(
        self, evidence: Sequence[EvidenceArtifact], errors: List[str], warnings: List[str]
    ) -> bool:
        ordered = sorted(
            (a for a in evidence if a.artifact_type in CAPTURE_SEQUENCE),
            key=lambda a: CAPTURE_SEQUENCE.index(a.artifact_type),
        )
        ok = True
        for previous, current in zip(ordered, ordered[1:]):
            gap_ms = (current.captured_at - previous.captured_at).total_seconds() * 1000
            if gap_ms < 0:
                errors.append(
                    f"Timestamp out of sequence: {current.artifact_type.value} "
                    f"({current.captured_at.isoformat()}) is before "
                    f"{previous.artifact_type.value} ({previous.captured_at.isoformat()})"
                )
                ok = False
            elif gap_ms < MIN_SEQUENCE_GAP_MS:
                warnings.append(
                    f"Timestamps very close together (<{MIN_SEQUENCE_GAP_MS}ms): "
                    f"{previous.artifact_type.value} and {current.artifact_type.value}"
                )
        return ok

    def _check_sizes(
        self, evidence: Sequence[EvidenceArtifact], errors: List[str], warnings: List[str]
    ) -> bool:
        ok = True
        for artifact in evidence:
            size: Optional[int] = self.analyzer.file_size(artifact)
            if size is None:
                continue
            kind = artifact.artifact_type.value
            if artifact.artifact_type in SCREENSHOT_TYPES:
                if size < MIN_SCREENSHOT_BYTES:
                    errors.append(f"{kind} is too small ({size} bytes) - likely corrupted")
                    ok = False
                elif size > MAX_SCREENSHOT_BYTES:
                    warnings.append(f"{kind} is very large ({size} bytes) - may indicate issue")
            elif artifact.artifact_type in JSON_TYPES and size < MIN_JSON_BYTES:
                errors.append(f"{kind} file is too small ({size} bytes): {artifact.path}")
                ok = False
            elif artifact.artifact_type == ArtifactType.DOM_SNAPSHOT and size < MIN_DOM_BYTES:
                errors.append(f"DOM snapshot is too small ({size} bytes) - likely invalid")
                ok = False
        return ok

    def _check_formats(
        self, evidence: Sequence[EvidenceArtifact], errors: List[str], warnings: List[str]
    ) -> bool:
        ok = True
        for artifact in evidence:
            if not artifact.path:
                continue
            path = artifact.path.lower()
            if artifact.artifact_type == ArtifactType.DOM_SNAPSHOT:
                if not path.endswith((".html", ".htm")):
                    warnings.append(f"DOM snapshot should be HTML format: {artifact.path}")
                continue
            allowed = ALLOWED_EXTENSIONS.get(artifact.artifact_type)
            if allowed and not path.endswith(allowed):
                errors.append(
                    f"{artifact.artifact_type.value} has invalid format: {artifact.path} "
                    f"(expected {', '.join(allowed)})"
                )
                ok = False
        return ok
