"""Workflow stage state machine for testwarden.

Defines the stages a test moves through and the allowed transitions.

Stages:
- PENDING: Workflow created, nothing has run yet
- EXECUTION: Execution engine is producing the test result and evidence
- DETECTION: Red flag detectors are scanning the evidence
- VERIFICATION: Independent verifier is scoring the evidence
- FIXING: Verification rejected the result; a higher tier re-runs the test
- LEARNING: Patterns are extracted from the finished run
- COMPLETED: Terminal success
- FAILED: Terminal failure (possibly escalated to a human)

Movement is forward only, except the FIXING -> DETECTION retry loop. A stage
may only be entered once its predecessor's result has been recorded.

This module is headless - no CLI or HTTP dependencies.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from testwarden.core.models import TestType


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class WorkflowStage(str, Enum):
    """Workflow stage.

    Uses str mixin for easy JSON serialization and SQLite storage.
    """

    PENDING = "pending"
    EXECUTION = "execution"
    DETECTION = "detection"
    VERIFICATION = "verification"
    FIXING = "fixing"
    LEARNING = "learning"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowStatus(str, Enum):
    """Overall workflow status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed stage transitions (from -> set of allowed targets)
ALLOWED_TRANSITIONS: dict[WorkflowStage, Set[WorkflowStage]] = {
    WorkflowStage.PENDING: {WorkflowStage.EXECUTION, WorkflowStage.FAILED},
    WorkflowStage.EXECUTION: {WorkflowStage.DETECTION, WorkflowStage.FAILED},
    WorkflowStage.DETECTION: {WorkflowStage.VERIFICATION, WorkflowStage.FAILED},
    WorkflowStage.VERIFICATION: {
        WorkflowStage.FIXING,
        WorkflowStage.LEARNING,
        WorkflowStage.FAILED,
    },
    WorkflowStage.FIXING: {WorkflowStage.DETECTION, WorkflowStage.FAILED},
    WorkflowStage.LEARNING: {WorkflowStage.COMPLETED, WorkflowStage.FAILED},
    WorkflowStage.COMPLETED: set(),  # Terminal state
    WorkflowStage.FAILED: set(),  # Terminal state
}

# Result columns that must be recorded before a stage may be entered (any one suffices)
REQUIRED_RESULT: dict[WorkflowStage, Tuple[str, ...]] = {
    WorkflowStage.DETECTION: ("execution_result", "fixing_result"),
    WorkflowStage.VERIFICATION: ("detection_result",),
    WorkflowStage.FIXING: ("verification_result",),
    WorkflowStage.LEARNING: ("verification_result",),
    WorkflowStage.COMPLETED: ("learning_result",),
}

# Which result column each working stage writes
RESULT_FIELD: dict[WorkflowStage, str] = {
    WorkflowStage.EXECUTION: "execution_result",
    WorkflowStage.DETECTION: "detection_result",
    WorkflowStage.VERIFICATION: "verification_result",
    WorkflowStage.FIXING: "fixing_result",
    WorkflowStage.LEARNING: "learning_result",
}

TERMINAL_STAGES = frozenset({WorkflowStage.COMPLETED, WorkflowStage.FAILED})


class InvalidTransitionError(Exception):
    """Raised when an invalid stage transition is attempted."""

    def __init__(self, current: WorkflowStage, target: WorkflowStage):
        self.current = current
        self.target = target
        allowed = ALLOWED_TRANSITIONS.get(current, set())
        allowed_str = ", ".join(sorted(s.value for s in allowed)) if allowed else "none"
        super().__init__(
            f"Invalid transition: {current.value} -> {target.value}. "
            f"Allowed transitions from {current.value}: {allowed_str}"
        )


class StageGateError(Exception):
    """Raised when a stage is entered before its predecessor's result is recorded."""

    def __init__(self, test_id: str, target: WorkflowStage, required: Tuple[str, ...]):
        self.test_id = test_id
        self.target = target
        self.required = required
        super().__init__(
            f"Cannot enter {target.value} for test {test_id}: "
            f"no recorded {' or '.join(required)}"
        )


class WorkflowNotFoundError(Exception):
    """Raised when no workflow exists for a test id."""

    def __init__(self, test_id: str):
        self.test_id = test_id
        super().__init__(f"No workflow found for test {test_id}")


@dataclass
class TestWorkflow:
    """Persistent progress of one test through the pipeline.

    Attributes:
        test_id: Test identifier (one workflow per test)
        epic_id: Epic the test belongs to
        test_type: Kind of test
        current_stage: Stage the workflow is in
        status: Overall status
        execution_result: Snapshot recorded by the execution stage
        detection_result: Snapshot recorded by the latest detection stage
        verification_result: Snapshot recorded by the latest verification stage
        fixing_result: Snapshot recorded by the latest fix attempt
        learning_result: Patterns extracted once verification accepted
        history: Every recorded stage result in order, including superseded ones
        retry_count: Number of fix attempts made (never above 3)
        escalated: True once handed to a human reviewer
        current_tier: Capability tier that produced the latest execution
        error_message: Reason for failure or escalation
    """

    __test__ = False

    test_id: str
    epic_id: str
    test_type: TestType
    current_stage: WorkflowStage = WorkflowStage.PENDING
    status: WorkflowStatus = WorkflowStatus.PENDING
    execution_result: Optional[Dict[str, Any]] = None
    detection_result: Optional[Dict[str, Any]] = None
    verification_result: Optional[Dict[str, Any]] = None
    fixing_result: Optional[Dict[str, Any]] = None
    learning_result: Optional[Dict[str, Any]] = None
    history: List[Dict[str, Any]] = field(default_factory=list)
    retry_count: int = 0
    escalated: bool = False
    current_tier: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    completed_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.current_stage in TERMINAL_STAGES

    def record_result(self, stage: WorkflowStage, data: Dict[str, Any]) -> None:
        """Store a stage's result in its column and append it to the history."""
        snapshot = copy.deepcopy(data)
        setattr(self, RESULT_FIELD[stage], snapshot)
        self.history.append(
            {
                "stage": stage.value,
                "attempt": self.retry_count,
                "recorded_at": _utc_now().isoformat(),
                "result": copy.deepcopy(snapshot),
            }
        )
        self.updated_at = _utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "test_id": self.test_id,
            "epic_id": self.epic_id,
            "test_type": self.test_type.value,
            "current_stage": self.current_stage.value,
            "status": self.status.value,
            "execution_result": self.execution_result,
            "detection_result": self.detection_result,
            "verification_result": self.verification_result,
            "fixing_result": self.fixing_result,
            "learning_result": self.learning_result,
            "history": self.history,
            "retry_count": self.retry_count,
            "escalated": self.escalated,
            "current_tier": self.current_tier,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


def can_transition(current: WorkflowStage, target: WorkflowStage) -> bool:
    """Check if a stage transition is allowed.

    Args:
        current: Current stage
        target: Desired target stage

    Returns:
        True if transition is allowed, False otherwise
    """
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    return target in allowed


def validate_transition(current: WorkflowStage, target: WorkflowStage) -> None:
    """Validate a stage transition, raising if invalid.

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def get_allowed_transitions(current: WorkflowStage) -> Set[WorkflowStage]:
    """Get the set of stages that can be transitioned to from current."""
    return ALLOWED_TRANSITIONS.get(current, set()).copy()


def check_stage_gate(workflow: TestWorkflow, target: WorkflowStage) -> None:
    """Ensure the predecessor result needed to enter ``target`` is recorded.

    Raises:
        StageGateError: If none of the required result columns is populated
    """
    required = REQUIRED_RESULT.get(target)
    if not required:
        return
    if not any(getattr(workflow, name) is not None for name in required):
        raise StageGateError(workflow.test_id, target, required)


def advance(workflow: TestWorkflow, target: WorkflowStage) -> None:
    """Move a workflow to ``target`` after validating transition and gate.

    FAILED is always reachable from a non-terminal stage without a gate check.

    Raises:
        InvalidTransitionError: If the transition is not allowed
        StageGateError: If the predecessor result is missing
    """
    validate_transition(workflow.current_stage, target)
    if target != WorkflowStage.FAILED:
        check_stage_gate(workflow, target)

    workflow.current_stage = target
    now = _utc_now()
    workflow.updated_at = now
    if target == WorkflowStage.COMPLETED:
        workflow.status = WorkflowStatus.COMPLETED
        workflow.completed_at = now
    elif target == WorkflowStage.FAILED:
        workflow.status = WorkflowStatus.FAILED
        workflow.completed_at = now
    else:
        workflow.status = WorkflowStatus.IN_PROGRESS


def parse_stage(value: str) -> WorkflowStage:
    """Parse a string into a WorkflowStage.

    Accepts both uppercase and lowercase input.

    Raises:
        ValueError: If the string doesn't match any stage
    """
    normalized = value.strip().lower().replace("-", "_")
    try:
        return WorkflowStage(normalized)
    except ValueError:
        valid = ", ".join(s.value for s in WorkflowStage)
        raise ValueError(f"Invalid stage '{value}'. Valid stages: {valid}")


def parse_workflow_status(value: str) -> WorkflowStatus:
    """Parse a string into a WorkflowStatus.

    Raises:
        ValueError: If the string doesn't match any status
    """
    normalized = value.strip().lower().replace("-", "_")
    try:
        return WorkflowStatus(normalized)
    except ValueError:
        valid = ", ".join(s.value for s in WorkflowStatus)
        raise ValueError(f"Invalid status '{value}'. Valid statuses: {valid}")
