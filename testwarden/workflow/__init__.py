"""Workflow state machine and orchestration."""

from testwarden.workflow.error_handler import ErrorHandler, is_retryable
from testwarden.workflow.learning import extract_learning
from testwarden.workflow.orchestrator import (
    ExecutionEngine,
    ExecutionOutcome,
    FixEngine,
    TestWorkflowOrchestrator,
    abort_workflow,
)
from testwarden.workflow.stage_executor import StageExecutor, StageOutcome
from testwarden.workflow.state_machine import (
    InvalidTransitionError,
    StageGateError,
    TestWorkflow,
    WorkflowNotFoundError,
    WorkflowStage,
    WorkflowStatus,
    advance,
)

__all__ = [
    "ErrorHandler",
    "is_retryable",
    "extract_learning",
    "ExecutionEngine",
    "ExecutionOutcome",
    "FixEngine",
    "TestWorkflowOrchestrator",
    "abort_workflow",
    "StageExecutor",
    "StageOutcome",
    "InvalidTransitionError",
    "StageGateError",
    "TestWorkflow",
    "WorkflowNotFoundError",
    "WorkflowStage",
    "WorkflowStatus",
    "advance",
]
