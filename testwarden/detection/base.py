"""Base detector interface.

Every red flag module implements the same contract:
``detect(epic_id, test, evidence) -> list[RedFlag]``. Only passing tests are
scrutinized, since the goal is catching false positives. Detectors never
mutate their inputs and never raise for malformed evidence; a check that
cannot be evaluated emits nothing.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from testwarden.core.models import EvidenceArtifact, FlagType, RedFlag, Severity, TestResult

logger = logging.getLogger(__name__)


class Detector(ABC):
    """One red flag module.

    Args:
        evidence_dir: Base directory used to resolve relative artifact paths
    """

    name: str = "detector"
    flag_type: FlagType

    def __init__(self, evidence_dir: Optional[str] = None):
        self.evidence_dir = Path(evidence_dir) if evidence_dir else None

    async def detect(
        self, epic_id: str, test: TestResult, evidence: Sequence[EvidenceArtifact]
    ) -> List[RedFlag]:
        """Scan the evidence of one test and return any red flags."""
        if not test.passed:
            return []
        return await self._scan(epic_id, test, list(evidence))

    @abstractmethod
    async def _scan(
        self, epic_id: str, test: TestResult, evidence: List[EvidenceArtifact]
    ) -> List[RedFlag]:
        """Run the module's checks over a passing test."""

    def _flag(
        self,
        epic_id: str,
        test: TestResult,
        severity: Severity,
        description: str,
        proof: Dict[str, Any],
        evidence_id: Optional[int] = None,
    ) -> RedFlag:
        base_proof = {
            "testId": test.id,
            "testType": test.test_type.value,
            "testResult": test.pass_fail.value,
            "timestamp": test.executed_at.isoformat(),
        }
        base_proof.update(proof)
        return RedFlag(
            epic_id=epic_id,
            test_id=test.id,
            evidence_id=evidence_id,
            flag_type=self.flag_type,
            severity=severity,
            description=description,
            proof=base_proof,
        )

    def resolve_path(self, artifact: EvidenceArtifact) -> Optional[Path]:
        return resolve_artifact_path(artifact, self.evidence_dir)

    def read_text(self, artifact: EvidenceArtifact) -> Optional[str]:
        """Read an artifact's file as text, or None if it cannot be read."""
        return read_artifact_text(artifact, self.evidence_dir)


def resolve_artifact_path(
    artifact: EvidenceArtifact, evidence_dir: Optional[Path] = None
) -> Optional[Path]:
    """Resolve an artifact path, relative paths against ``evidence_dir``."""
    if not artifact.path:
        return None
    path = Path(artifact.path)
    if not path.is_absolute() and evidence_dir is not None:
        path = evidence_dir / path
    return path


def read_artifact_text(
    artifact: EvidenceArtifact, evidence_dir: Optional[Path] = None
) -> Optional[str]:
    path = resolve_artifact_path(artifact, evidence_dir)
    if path is None:
        return None
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Could not read artifact {path}: {e}")
        return None
