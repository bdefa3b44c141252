"""Repository for test results and their evidence artifacts."""

import dataclasses
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from testwarden.core.models import (
    ArtifactType,
    EvidenceArtifact,
    PassFail,
    TestResult,
    TestType,
)
from testwarden.persistence.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class EvidenceRepository(BaseRepository):
    """Stores each reported test run with the artifacts captured during it.

    Every call to ``save_run`` creates a new run row, so "latest evidence" for a
    test is the artifact set attached to its most recent run.
    """

    async def save_run(
        self,
        epic_id: str,
        test: TestResult,
        evidence: Sequence[EvidenceArtifact],
    ) -> Tuple[int, List[EvidenceArtifact]]:
        """Persist a test result and its artifacts.

        Returns:
            Tuple of (run id, artifacts with storage ids assigned)
        """
        cursor = await self._execute_async(
            """
            INSERT INTO test_results (
                test_id, epic_id, name, test_type, pass_fail,
                description, duration_ms, executed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                test.id,
                epic_id,
                test.name,
                test.test_type.value,
                test.pass_fail.value,
                test.description,
                test.duration_ms,
                self._format_datetime(test.executed_at),
            ),
        )
        run_id = cursor.lastrowid

        stored: List[EvidenceArtifact] = []
        for artifact in evidence:
            cursor = await self._execute_async(
                """
                INSERT INTO evidence_artifacts (
                    result_id, test_id, epic_id, artifact_type, path, metadata, captured_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run_id,
                    test.id,
                    epic_id,
                    artifact.artifact_type.value,
                    artifact.path,
                    self._dump_json(artifact.metadata),
                    self._format_datetime(artifact.captured_at),
                ),
            )
            stored.append(
                dataclasses.replace(
                    artifact, id=cursor.lastrowid, epic_id=epic_id, test_id=test.id
                )
            )

        await self._commit_async()
        logger.debug(f"Stored run {run_id} for test {test.id} with {len(stored)} artifact(s)")
        return run_id, stored

    async def get_latest_run(
        self, test_id: str, epic_id: str
    ) -> Optional[Tuple[TestResult, List[EvidenceArtifact]]]:
        """Load the most recent test result and its artifacts, or None."""
        row = await self._fetchone_async(
            """
            SELECT * FROM test_results
            WHERE test_id = ? AND epic_id = ?
            ORDER BY id DESC LIMIT 1
            """,
            (test_id, epic_id),
        )
        if row is None:
            return None

        result = self._row_to_test_result(row)
        artifact_rows = await self._fetchall_async(
            "SELECT * FROM evidence_artifacts WHERE result_id = ? ORDER BY id",
            (row["id"],),
        )
        return result, [self._row_to_artifact(r) for r in artifact_rows]

    def list_runs(self, epic_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """List stored test runs, newest first."""
        if epic_id:
            rows = self._fetchall(
                "SELECT * FROM test_results WHERE epic_id = ? ORDER BY id DESC", (epic_id,)
            )
        else:
            rows = self._fetchall("SELECT * FROM test_results ORDER BY id DESC")
        return [self._row_to_dict(row) for row in rows]

    def _row_to_test_result(self, row) -> TestResult:
        return TestResult(
            id=row["test_id"],
            name=row["name"],
            test_type=TestType(row["test_type"]),
            pass_fail=PassFail(row["pass_fail"]),
            executed_at=self._parse_datetime(row["executed_at"], "executed_at", row["id"]),
            description=row["description"],
            duration_ms=row["duration_ms"],
        )

    def _row_to_artifact(self, row) -> EvidenceArtifact:
        return EvidenceArtifact(
            epic_id=row["epic_id"],
            test_id=row["test_id"],
            artifact_type=ArtifactType(row["artifact_type"]),
            path=row["path"],
            metadata=self._load_json(row["metadata"], default={}),
            captured_at=self._parse_datetime(row["captured_at"], "captured_at", row["id"]),
            id=row["id"],
        )
