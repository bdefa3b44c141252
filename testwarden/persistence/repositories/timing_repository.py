"""Repository for historical test durations."""

import logging
import statistics
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from testwarden.core.models import TestType, TimingBaseline
from testwarden.persistence.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

# Only recent runs count towards a baseline
BASELINE_WINDOW_DAYS = 30


class TimingHistoryRepository(BaseRepository):
    """Append-only store of test durations used as timing baselines."""

    async def record(
        self,
        test_name: str,
        test_type: TestType,
        duration_ms: int,
        network_requests: Optional[int] = None,
        dom_changes: Optional[int] = None,
        epic_id: Optional[str] = None,
        executed_at: Optional[datetime] = None,
    ) -> int:
        """Append one timing sample and return its row id."""
        cursor = await self._execute_async(
            """
            INSERT INTO test_timing_history (
                test_name, test_type, duration_ms, network_requests,
                dom_changes, executed_at, epic_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                test_name,
                test_type.value,
                int(duration_ms),
                network_requests,
                dom_changes,
                self._format_datetime(executed_at or datetime.now(timezone.utc)),
                epic_id,
            ),
        )
        await self._commit_async()
        return cursor.lastrowid

    async def get_baseline(
        self, test_name: str, days: int = BASELINE_WINDOW_DAYS
    ) -> Optional[TimingBaseline]:
        """Mean and sample standard deviation of recent durations.

        Returns:
            TimingBaseline, or None if there is no recorded sample in the window
        """
        since = datetime.now(timezone.utc) - timedelta(days=days)
        rows = await self._fetchall_async(
            """
            SELECT duration_ms FROM test_timing_history
            WHERE test_name = ? AND executed_at >= ?
            """,
            (test_name, self._format_datetime(since)),
        )
        durations = [row["duration_ms"] for row in rows]
        if not durations:
            return None

        stddev = statistics.stdev(durations) if len(durations) > 1 else 0.0
        return TimingBaseline(
            mean_ms=statistics.fmean(durations),
            stddev_ms=stddev,
            samples=len(durations),
        )

    def get_history(self, test_name: str, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self._fetchall(
            """
            SELECT * FROM test_timing_history
            WHERE test_name = ?
            ORDER BY executed_at DESC
            LIMIT ?
            """,
            (test_name, limit),
        )
        return [self._row_to_dict(row) for row in rows]
