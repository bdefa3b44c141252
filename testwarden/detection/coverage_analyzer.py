"""Coverage analyzer.

Compares coverage reports captured before and after a unit or integration
test. A test that really ran must add covered lines; unchanged coverage means
it did not execute, and decreased coverage means the reporting is broken.

Supported report shapes:
- metadata ``coverage`` dict (flat ``linesCovered`` or nested ``lines.covered``)
- Istanbul/NYC JSON: per-file ``lines`` (or ``s``), ``b`` and ``f`` maps
- lcov text with LH/LF/BRH/BRF/FNH/FNF summary tags

Parsers return None on malformed input instead of raising.
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

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
from testwarden.detection.base import Detector, read_artifact_text

logger = logging.getLogger(__name__)

# Minimum covered-line increase expected from one test
MIN_COVERAGE_INCREASE: Dict[TestType, int] = {
    TestType.UNIT: 5,
    TestType.INTEGRATION: 1,
}

_LCOV_TAGS = {
    "LH": "lines_covered",
    "LF": "lines_total",
    "BRH": "branches_covered",
    "BRF": "branches_total",
    "FNH": "functions_covered",
    "FNF": "functions_total",
}


@dataclass
class CoverageData:
    """Normalized coverage totals."""

    lines_covered: int = 0
    lines_total: int = 0
    branches_covered: int = 0
    branches_total: int = 0
    functions_covered: int = 0
    functions_total: int = 0
    percentage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _percentage(covered: int, total: int) -> float:
    return (covered / total) * 100 if total > 0 else 0.0


def normalize_coverage(data: Dict[str, Any]) -> Optional[CoverageData]:
    """Normalize a pre-parsed coverage dict (flat or nested keys)."""
    if not isinstance(data, dict):
        return None

    def pick(flat: str, nested: str, leaf: str) -> int:
        value = data.get(flat)
        if not value and isinstance(data.get(nested), dict):
            value = data[nested].get(leaf)
        return int(value or 0)

    try:
        coverage = CoverageData(
            lines_covered=pick("linesCovered", "lines", "covered"),
            lines_total=pick("linesTotal", "lines", "total"),
            branches_covered=pick("branchesCovered", "branches", "covered"),
            branches_total=pick("branchesTotal", "branches", "total"),
            functions_covered=pick("functionsCovered", "functions", "covered"),
            functions_total=pick("functionsTotal", "functions", "total"),
        )
    except (TypeError, ValueError) as e:
        logger.warning(f"Malformed coverage metadata: {e}")
        return None

    percentage = data.get("percentage")
    if isinstance(percentage, (int, float)):
        coverage.percentage = float(percentage)
    else:
        coverage.percentage = _percentage(coverage.lines_covered, coverage.lines_total)
    return coverage


def parse_istanbul_json(report: Dict[str, Any]) -> Optional[CoverageData]:
    """Parse an Istanbul/NYC per-file coverage map."""
    if not isinstance(report, dict):
        return None

    coverage = CoverageData()
    try:
        for file_data in report.values():
            if not isinstance(file_data, dict):
                continue
            line_hits = file_data.get("lines") or file_data.get("s")
            if isinstance(line_hits, dict):
                coverage.lines_covered += sum(1 for hits in line_hits.values() if hits > 0)
                coverage.lines_total += len(line_hits)
            branches = file_data.get("b")
            if isinstance(branches, dict):
                for branch in branches.values():
                    coverage.branches_total += 1
                    if isinstance(branch, list) and any(hits > 0 for hits in branch):
                        coverage.branches_covered += 1
            functions = file_data.get("f")
            if isinstance(functions, dict):
                coverage.functions_covered += sum(1 for hits in functions.values() if hits > 0)
                coverage.functions_total += len(functions)
    except TypeError as e:
        logger.warning(f"Malformed Istanbul coverage report: {e}")
        return None

    coverage.percentage = _percentage(coverage.lines_covered, coverage.lines_total)
    return coverage


def parse_lcov(content: str) -> Optional[CoverageData]:
    """Sum the summary tags of an lcov report."""
    totals = {name: 0 for name in _LCOV_TAGS.values()}
    try:
        for line in content.splitlines():
            tag, sep, value = line.strip().partition(":")
            if sep and tag in _LCOV_TAGS:
                totals[_LCOV_TAGS[tag]] += int(value)
    except ValueError as e:
        logger.warning(f"Malformed lcov report: {e}")
        return None

    coverage = CoverageData(**totals)
    coverage.percentage = _percentage(coverage.lines_covered, coverage.lines_total)
    return coverage


def parse_coverage(
    artifact: EvidenceArtifact, evidence_dir: Optional[Path] = None
) -> Optional[CoverageData]:
    """Parse a coverage artifact from its metadata or its file."""
    embedded = artifact.metadata.get("coverage")
    if embedded:
        return normalize_coverage(embedded)

    content = read_artifact_text(artifact, evidence_dir)
    if not content:
        return None

    if artifact.path and artifact.path.endswith(".json"):
        try:
            return parse_istanbul_json(json.loads(content))
        except json.JSONDecodeError as e:
            logger.warning(f"Could not parse coverage JSON {artifact.path}: {e}")
            return None

    if "TN:" in content or "SF:" in content:
        return parse_lcov(content)
    return None


class CoverageAnalyzer(Detector):
    """Flags unit/integration tests whose coverage did not move as it should."""

    name = "coverage_analysis"
    flag_type = FlagType.COVERAGE

    async def _scan(
        self, epic_id: str, test: TestResult, evidence: List[EvidenceArtifact]
    ) -> List[RedFlag]:
        if test.test_type not in MIN_COVERAGE_INCREASE:
            return []

        before_artifact = find_artifact(evidence, ArtifactType.COVERAGE_BEFORE)
        after_artifact = find_artifact(evidence, ArtifactType.COVERAGE_AFTER)
        if before_artifact is None or after_artifact is None:
            # Missing reports are the missing evidence detector's concern
            return []

        before = parse_coverage(before_artifact, self.evidence_dir)
        after = parse_coverage(after_artifact, self.evidence_dir)
        if before is None or after is None:
            return []

        diff = after.lines_covered - before.lines_covered
        proof = {"coverageBefore": before.to_dict(), "coverageAfter": after.to_dict(), "diff": diff}

        if diff == 0:
            return [
                self._flag(
                    epic_id,
                    test,
                    Severity.HIGH,
                    f'Test "{test.name}" passed but coverage unchanged '
                    f"({before.lines_covered}/{before.lines_total} lines) - tests didn't run",
                    proof,
                    after_artifact.id,
                )
            ]

        if diff < 0:
            return [
                self._flag(
                    epic_id,
                    test,
                    Severity.HIGH,
                    f'Test "{test.name}" passed but coverage decreased by {-diff} lines '
                    f"(impossible, indicates error)",
                    proof,
                    after_artifact.id,
                )
            ]

        minimum = MIN_COVERAGE_INCREASE[test.test_type]
        if diff < minimum:
            proof["expectedMinIncrease"] = minimum
            return [
                self._flag(
                    epic_id,
                    test,
                    Severity.MEDIUM,
                    f'Test "{test.name}" coverage increased by only {diff} lines '
                    f"(expected at least {minimum} for {test.test_type.value} test)",
                    proof,
                    after_artifact.id,
                )
            ]
        return []
