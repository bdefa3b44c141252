"""Repository for persisted verification reports."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from testwarden.persistence.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class VerificationReportRepository(BaseRepository):
    """Stores one row per verification attempt (results are never updated)."""

    async def save_report(self, result: Any, markdown: Optional[str] = None) -> int:
        """Persist a VerificationResult with its rendered markdown.

        Args:
            result: VerificationResult (anything exposing the same attributes and to_dict)
            markdown: Rendered markdown report

        Returns:
            Report row id
        """
        cursor = await self._execute_async(
            """
            INSERT INTO verification_reports (
                test_id, epic_id, verified, confidence_score, recommendation,
                verifier_model, report_json, report_markdown, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                result.test_id,
                result.epic_id,
                result.verified,
                result.confidence_score,
                result.recommendation.value,
                result.verifier_model,
                self._dump_json(result.to_dict()),
                markdown,
                self._format_datetime(datetime.now(timezone.utc)),
            ),
        )
        await self._commit_async()
        return cursor.lastrowid

    def get_latest_report(self, test_id: str, epic_id: str) -> Optional[Dict[str, Any]]:
        row = self._fetchone(
            """
            SELECT * FROM verification_reports
            WHERE test_id = ? AND epic_id = ?
            ORDER BY id DESC LIMIT 1
            """,
            (test_id, epic_id),
        )
        return self._row_to_report(row) if row else None

    def list_reports(self, epic_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if epic_id:
            rows = self._fetchall(
                "SELECT * FROM verification_reports WHERE epic_id = ? ORDER BY id DESC",
                (epic_id,),
            )
        else:
            rows = self._fetchall("SELECT * FROM verification_reports ORDER BY id DESC")
        return [self._row_to_report(row) for row in rows]

    def _row_to_report(self, row) -> Dict[str, Any]:
        report = self._row_to_dict(row)
        report["verified"] = bool(report["verified"])
        report["report_json"] = self._load_json(report["report_json"], default={})
        return report
