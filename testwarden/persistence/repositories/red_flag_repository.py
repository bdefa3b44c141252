"""Repository for red flag storage, querying and resolution."""

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from testwarden.core.models import FlagType, RedFlag, Severity
from testwarden.persistence.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class RedFlagRepository(BaseRepository):
    """Repository for red flag operations.

    Flags are inserted once and never edited afterwards, except for the
    resolved/resolution_notes/resolved_at columns.
    """

    async def insert_flag(self, flag: RedFlag) -> RedFlag:
        """Insert a red flag and return a copy carrying its storage id."""
        cursor = await self._execute_async(
            """
            INSERT INTO red_flags (
                epic_id, test_id, evidence_id, flag_type, severity,
                description, proof, detected_at, resolved, resolution_notes, resolved_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                flag.epic_id,
                flag.test_id,
                flag.evidence_id,
                flag.flag_type.value,
                flag.severity.value,
                flag.description,
                self._dump_json(flag.proof),
                self._format_datetime(flag.detected_at),
                flag.resolved,
                flag.resolution_notes,
                self._format_datetime(flag.resolved_at),
            ),
        )
        await self._commit_async()
        return dataclasses.replace(flag, id=cursor.lastrowid)

    async def get_unresolved_flags(self, test_id: str, epic_id: str) -> List[RedFlag]:
        """All unresolved flags for a test, most severe first."""
        rows = await self._fetchall_async(
            """
            SELECT * FROM red_flags
            WHERE test_id = ? AND epic_id = ? AND resolved = 0
            ORDER BY id
            """,
            (test_id, epic_id),
        )
        flags = [self._row_to_flag(row) for row in rows]
        return sorted(flags, key=lambda f: f.severity.rank, reverse=True)

    def list_flags(
        self,
        epic_id: Optional[str] = None,
        test_id: Optional[str] = None,
        severity: Optional[Severity] = None,
        resolved: Optional[bool] = None,
    ) -> List[RedFlag]:
        """Query flags with optional filters, newest first."""
        clauses: List[str] = []
        params: List[Any] = []
        if epic_id:
            clauses.append("epic_id = ?")
            params.append(epic_id)
        if test_id:
            clauses.append("test_id = ?")
            params.append(test_id)
        if severity:
            clauses.append("severity = ?")
            params.append(severity.value)
        if resolved is not None:
            clauses.append("resolved = ?")
            params.append(1 if resolved else 0)

        query = "SELECT * FROM red_flags"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id DESC"
        return [self._row_to_flag(row) for row in self._fetchall(query, tuple(params))]

    def get_flag(self, flag_id: int) -> Optional[RedFlag]:
        row = self._fetchone("SELECT * FROM red_flags WHERE id = ?", (flag_id,))
        return self._row_to_flag(row) if row else None

    def resolve_flag(self, flag_id: int, notes: str) -> bool:
        """Mark a flag resolved with notes.

        Returns:
            True if a flag was updated, False if the id does not exist
        """
        cursor = self._execute(
            """
            UPDATE red_flags
            SET resolved = 1, resolution_notes = ?, resolved_at = ?
            WHERE id = ?
            """,
            (notes, self._format_datetime(datetime.now(timezone.utc)), flag_id),
        )
        self._commit()
        updated = cursor.rowcount > 0
        if updated:
            logger.info(f"Resolved red flag {flag_id}")
        return updated

    async def resolve_open_flags(self, test_id: str, epic_id: str, notes: str) -> int:
        """Resolve every unresolved flag of a test, returning how many changed."""
        cursor = await self._execute_async(
            """
            UPDATE red_flags
            SET resolved = 1, resolution_notes = ?, resolved_at = ?
            WHERE test_id = ? AND epic_id = ? AND resolved = 0
            """,
            (notes, self._format_datetime(datetime.now(timezone.utc)), test_id, epic_id),
        )
        await self._commit_async()
        if cursor.rowcount:
            logger.info(f"Resolved {cursor.rowcount} open red flag(s) for test {test_id}")
        return cursor.rowcount

    def get_statistics(self, epic_id: Optional[str] = None) -> Dict[str, Any]:
        """Per-epic (or global) flag counts by severity and by type."""
        where = "WHERE epic_id = ?" if epic_id else ""
        params: tuple = (epic_id,) if epic_id else ()

        totals = self._fetchone(
            f"""
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(CASE WHEN resolved = 0 THEN 1 ELSE 0 END), 0) AS unresolved
            FROM red_flags {where}
            """,
            params,
        )
        by_severity = {severity.value: 0 for severity in Severity}
        for row in self._fetchall(
            f"SELECT severity, COUNT(*) AS n FROM red_flags {where} GROUP BY severity", params
        ):
            by_severity[row["severity"]] = row["n"]

        by_type = {flag_type.value: 0 for flag_type in FlagType}
        for row in self._fetchall(
            f"SELECT flag_type, COUNT(*) AS n FROM red_flags {where} GROUP BY flag_type", params
        ):
            by_type[row["flag_type"]] = row["n"]

        return {
            "epic_id": epic_id,
            "total": totals["total"],
            "unresolved": totals["unresolved"],
            "resolved": totals["total"] - totals["unresolved"],
            "by_severity": by_severity,
            "by_type": by_type,
        }

    def _row_to_flag(self, row) -> RedFlag:
        return RedFlag(
            id=row["id"],
            epic_id=row["epic_id"],
            test_id=row["test_id"],
            evidence_id=row["evidence_id"],
            flag_type=FlagType(row["flag_type"]),
            severity=Severity(row["severity"]),
            description=row["description"],
            proof=self._load_json(row["proof"], default={}),
            detected_at=self._parse_datetime(row["detected_at"], "detected_at", row["id"]),
            resolved=bool(row["resolved"]),
            resolution_notes=row["resolution_notes"],
            resolved_at=self._parse_datetime(row["resolved_at"], "resolved_at", row["id"]),
        )
