"""Repository for test workflow state."""

import logging
from typing import List, Optional

from testwarden.core.models import TestType
from testwarden.persistence.repositories.base import BaseRepository
from testwarden.workflow.state_machine import (
    TestWorkflow,
    WorkflowStage,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)

_COLUMNS = (
    "test_id",
    "epic_id",
    "test_type",
    "current_stage",
    "status",
    "execution_result",
    "detection_result",
    "verification_result",
    "fixing_result",
    "learning_result",
    "history",
    "retry_count",
    "escalated",
    "current_tier",
    "error_message",
    "created_at",
    "updated_at",
    "completed_at",
)


class WorkflowRepository(BaseRepository):
    """One row per test; the orchestrator is the only writer for a given row."""

    async def save(self, workflow: TestWorkflow) -> TestWorkflow:
        """Insert or update the workflow row keyed by test_id.

        Re-saving an existing test_id replaces every column, which is how a
        re-orchestrated test starts from a clean slate.
        """
        placeholders = ", ".join("?" for _ in _COLUMNS)
        updates = ", ".join(f"{col} = excluded.{col}" for col in _COLUMNS if col != "test_id")
        await self._execute_async(
            f"""
            INSERT INTO test_workflows ({", ".join(_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(test_id) DO UPDATE SET {updates}
            """,
            self._to_params(workflow),
        )
        await self._commit_async()

        row = await self._fetchone_async(
            "SELECT id FROM test_workflows WHERE test_id = ?", (workflow.test_id,)
        )
        workflow.id = row["id"]
        return workflow

    async def get(self, test_id: str) -> Optional[TestWorkflow]:
        row = await self._fetchone_async(
            "SELECT * FROM test_workflows WHERE test_id = ?", (test_id,)
        )
        return self._row_to_workflow(row) if row else None

    def get_workflow(self, test_id: str) -> Optional[TestWorkflow]:
        row = self._fetchone("SELECT * FROM test_workflows WHERE test_id = ?", (test_id,))
        return self._row_to_workflow(row) if row else None

    def list_workflows(
        self,
        epic_id: Optional[str] = None,
        status: Optional[WorkflowStatus] = None,
    ) -> List[TestWorkflow]:
        """List workflows, most recently updated first."""
        clauses = []
        params = []
        if epic_id:
            clauses.append("epic_id = ?")
            params.append(epic_id)
        if status:
            clauses.append("status = ?")
            params.append(status.value)

        query = "SELECT * FROM test_workflows"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY updated_at DESC"
        return [self._row_to_workflow(row) for row in self._fetchall(query, tuple(params))]

    def _to_params(self, workflow: TestWorkflow) -> tuple:
        return (
            workflow.test_id,
            workflow.epic_id,
            workflow.test_type.value,
            workflow.current_stage.value,
            workflow.status.value,
            self._dump_json(workflow.execution_result),
            self._dump_json(workflow.detection_result),
            self._dump_json(workflow.verification_result),
            self._dump_json(workflow.fixing_result),
            self._dump_json(workflow.learning_result),
            self._dump_json(workflow.history),
            workflow.retry_count,
            workflow.escalated,
            workflow.current_tier,
            workflow.error_message,
            self._format_datetime(workflow.created_at),
            self._format_datetime(workflow.updated_at),
            self._format_datetime(workflow.completed_at),
        )

    def _row_to_workflow(self, row) -> TestWorkflow:
        row_id = row["id"]
        return TestWorkflow(
            id=row_id,
            test_id=row["test_id"],
            epic_id=row["epic_id"],
            test_type=TestType(row["test_type"]),
            current_stage=WorkflowStage(row["current_stage"]),
            status=WorkflowStatus(row["status"]),
            execution_result=self._load_json(row["execution_result"]),
            detection_result=self._load_json(row["detection_result"]),
            verification_result=self._load_json(row["verification_result"]),
            fixing_result=self._load_json(row["fixing_result"]),
            learning_result=self._load_json(row["learning_result"]),
            history=self._load_json(row["history"], default=[]),
            retry_count=row["retry_count"],
            escalated=bool(row["escalated"]),
            current_tier=row["current_tier"],
            error_message=row["error_message"],
            created_at=self._parse_datetime(row["created_at"], "created_at", row_id),
            updated_at=self._parse_datetime(row["updated_at"], "updated_at", row_id),
            completed_at=self._parse_datetime(row["completed_at"], "completed_at", row_id),
        )
