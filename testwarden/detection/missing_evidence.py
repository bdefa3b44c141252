"""Missing evidence detector.

An unverifiable pass is not a pass: every passing test must carry the
evidence its type requires, and a console log that exists but is empty could
not have come from a test that actually ran. Both are critical.
"""

import logging
from typing import List

from testwarden.core.models import (
    REQUIRED_EVIDENCE,
    ArtifactType,
    EvidenceArtifact,
    FlagType,
    RedFlag,
    Severity,
    TestResult,
    artifact_types,
    find_artifact,
)
from testwarden.detection.base import Detector

logger = logging.getLogger(__name__)


class MissingEvidenceDetector(Detector):
    """Flags passing tests whose required evidence is absent or empty."""

    name = "missing_evidence"
    flag_type = FlagType.MISSING_EVIDENCE

    async def _scan(
        self, epic_id: str, test: TestResult, evidence: List[EvidenceArtifact]
    ) -> List[RedFlag]:
        flags: List[RedFlag] = []
        required = REQUIRED_EVIDENCE.get(test.test_type, ())
        present = artifact_types(evidence)
        missing = [artifact.value for artifact in required if artifact not in present]

        if missing:
            flags.append(
                self._flag(
                    epic_id,
                    test,
                    Severity.CRITICAL,
                    f'Test "{test.name}" passed but missing required evidence: '
                    f"{', '.join(missing)}",
                    {
                        "expectedArtifacts": [artifact.value for artifact in required],
                        "missingArtifacts": missing,
                        "presentArtifacts": sorted(a.value for a in present),
                    },
                )
            )

        console_log = find_artifact(evidence, ArtifactType.CONSOLE_LOG)
        if console_log is not None and self._is_empty_console_log(console_log):
            flags.append(
                self._flag(
                    epic_id,
                    test,
                    Severity.CRITICAL,
                    f'Test "{test.name}" passed but console log is empty (impossible if test ran)',
                    {"missingArtifacts": ["console_output"], "consoleLog": console_log.path},
                    console_log.id,
                )
            )

        return flags

    def _is_empty_console_log(self, artifact: EvidenceArtifact) -> bool:
        if artifact.metadata.get("lineCount") == 0 or artifact.metadata.get("fileSize") == 0:
            return True
        path = self.resolve_path(artifact)
        if path is None:
            return False
        try:
            return path.stat().st_size == 0
        except OSError:
            # A missing file is the integrity checker's concern
            return False
