"""Test workflow orchestrator.

Drives one test through execution -> detection -> verification and then
either learning -> completed, or a fixing -> detection retry loop. Each stage's
result is recorded and persisted before the next stage is entered, so the
stored workflow row is a replayable audit trail.

Fix attempts always run at a strictly higher capability tier than the attempt
that was rejected. When retries reach the configured maximum (never above 3)
or no higher tier exists, the workflow is escalated: marked failed and
escalated with a handoff document for a human reviewer.

This module is headless - no CLI or HTTP dependencies.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from testwarden.core.config import WorkflowConfig
from testwarden.core.models import (
    ArtifactType,
    EvidenceArtifact,
    TestResult,
    TestType,
    find_artifact,
)
from testwarden.core.tiers import DEFAULT_LADDER, CapabilityTier, TierLadder
from testwarden.detection.red_flag_detector import RedFlagDetector
from testwarden.detection.timing_anomaly import (
    count_dom_changes,
    count_network_requests,
    extract_duration,
)
from testwarden.verification.errors import (
    CriticalRedFlagError,
    EvidenceNotFoundError,
    IntegrityCheckFailedError,
)
from testwarden.workflow.error_handler import ErrorHandler
from testwarden.workflow.learning import extract_learning
from testwarden.workflow.stage_executor import StageExecutor, StageOutcome
from testwarden.workflow.state_machine import (
    TestWorkflow,
    WorkflowNotFoundError,
    WorkflowStage,
    advance,
)

logger = logging.getLogger(__name__)


@dataclass
class ExecutionOutcome:
    """What an execution or fix attempt produced."""

    test: TestResult
    evidence: List[EvidenceArtifact] = field(default_factory=list)


class TestDefinition(Protocol):
    id: str
    epic_id: str

    @property
    def test_type(self) -> TestType: ...


class ExecutionEngine(Protocol):
    async def execute(self, definition: Any, tier: CapabilityTier) -> ExecutionOutcome: ...


class FixEngine(Protocol):
    async def fix(
        self, workflow: TestWorkflow, verification: Dict[str, Any], tier: CapabilityTier
    ) -> ExecutionOutcome: ...


class WorkflowStore(Protocol):
    async def save(self, workflow: TestWorkflow) -> TestWorkflow: ...

    async def get(self, test_id: str) -> Optional[TestWorkflow]: ...


class RunStore(Protocol):
    async def save_run(
        self, epic_id: str, test: TestResult, evidence: List[EvidenceArtifact]
    ) -> Tuple[int, List[EvidenceArtifact]]: ...


class FlagResolver(Protocol):
    async def resolve_open_flags(self, test_id: str, epic_id: str, notes: str) -> int: ...


class TimingRecorder(Protocol):
    async def record(
        self,
        test_name: str,
        test_type: TestType,
        duration_ms: int,
        network_requests: Optional[int] = None,
        dom_changes: Optional[int] = None,
        epic_id: Optional[str] = None,
    ) -> int: ...


class Verifier(Protocol):
    async def verify(self, test_id: str, epic_id: str) -> Any: ...


class WorkflowAborted(Exception):
    """Internal signal: the stored workflow was aborted while a stage ran."""


def _execution_summary(
    outcome: ExecutionOutcome, run_id: int, tier: CapabilityTier
) -> Dict[str, Any]:
    return {
        "test": outcome.test.to_dict(),
        "run_id": run_id,
        "tier": tier.name,
        "model": tier.model,
        "artifact_count": len(outcome.evidence),
        "artifact_types": sorted({a.artifact_type.value for a in outcome.evidence}),
    }


class TestWorkflowOrchestrator:
    """Sequences the anti-hallucination pipeline for one test at a time.

    Args:
        workflows: Workflow row persistence
        evidence: Run persistence (test result plus artifacts)
        detector: Red flag detector
        verifier: Independent verifier
        execution_engine: Produces the initial test result and evidence
        fix_engine: Re-runs a rejected test at a higher tier; defaults to
            re-executing the definition through ``execution_engine``
        flags: Resolves a superseded run's open flags before re-detection
        timing: Records durations for future timing baselines
        config: Retry limit, handoff directory and stage timeouts
        ladder: Capability tiers, lowest first
    """

    __test__ = False

    def __init__(
        self,
        workflows: WorkflowStore,
        evidence: RunStore,
        detector: RedFlagDetector,
        verifier: Verifier,
        execution_engine: ExecutionEngine,
        fix_engine: Optional[FixEngine] = None,
        flags: Optional[FlagResolver] = None,
        timing: Optional[TimingRecorder] = None,
        config: Optional[WorkflowConfig] = None,
        ladder: Optional[TierLadder] = None,
        stage_executor: Optional[StageExecutor] = None,
        error_handler: Optional[ErrorHandler] = None,
    ):
        self.workflows = workflows
        self.evidence = evidence
        self.detector = detector
        self.verifier = verifier
        self.execution_engine = execution_engine
        self.fix_engine = fix_engine
        self.flags = flags
        self.timing = timing
        self.config = config or WorkflowConfig()
        self.ladder = ladder or DEFAULT_LADDER
        self.stage_executor = stage_executor or StageExecutor(self.config.stage_timeouts)
        self.error_handler = error_handler or ErrorHandler(self.config.handoff_dir)

    @classmethod
    def from_database(
        cls,
        db: Any,
        execution_engine: ExecutionEngine,
        fix_engine: Optional[FixEngine] = None,
        verifier: Optional[Verifier] = None,
        config: Optional[WorkflowConfig] = None,
        ladder: Optional[TierLadder] = None,
        verification_config: Any = None,
        evidence_dir: Optional[str] = None,
    ) -> "TestWorkflowOrchestrator":
        """Wire an orchestrator to an initialized Database's repositories."""
        from testwarden.verification.verifier import IndependentVerifier

        ladder = ladder or DEFAULT_LADDER
        detector = RedFlagDetector(store=db.red_flags, history=db.timing, evidence_dir=evidence_dir)
        if verifier is None:
            verifier = IndependentVerifier(
                db.evidence,
                db.red_flags,
                config=verification_config,
                ladder=ladder,
                report_repo=db.verification_reports,
                history=db.timing,
            )
        return cls(
            workflows=db.workflows,
            evidence=db.evidence,
            detector=detector,
            verifier=verifier,
            execution_engine=execution_engine,
            fix_engine=fix_engine,
            flags=db.red_flags,
            timing=db.timing,
            config=config,
            ladder=ladder,
        )

    async def run(self, definition: TestDefinition) -> TestWorkflow:
        """Run a test definition through the full workflow.

        Returns:
            The final workflow state (completed, or failed and possibly escalated)
        """
        existing = await self.workflows.get(definition.id)
        if existing is not None and not existing.is_terminal:
            raise ValueError(
                f"Workflow for test {definition.id} is already {existing.current_stage.value}"
            )

        workflow = TestWorkflow(
            test_id=definition.id,
            epic_id=definition.epic_id,
            test_type=TestType(definition.test_type),
        )
        await self.workflows.save(workflow)
        logger.info(f"Starting workflow for test {workflow.test_id}")

        try:
            return await self._drive(workflow, definition)
        except WorkflowAborted:
            stored = await self.workflows.get(workflow.test_id)
            logger.warning(f"Workflow for test {workflow.test_id} was aborted; stage result discarded")
            return stored or workflow

    async def _drive(self, workflow: TestWorkflow, definition: TestDefinition) -> TestWorkflow:
        tier = self.ladder.lowest()
        workflow.current_tier = tier.name

        # Execution
        await self._enter(workflow, WorkflowStage.EXECUTION)
        outcome = await self._run_stage(
            workflow,
            WorkflowStage.EXECUTION,
            lambda: self.execution_engine.execute(definition, tier),
        )
        if not outcome.success:
            return await self._escalate(workflow, f"Execution failed: {outcome.error}")
        execution: ExecutionOutcome = outcome.data
        run_id, stored = await self.evidence.save_run(
            workflow.epic_id, execution.test, execution.evidence
        )
        workflow.record_result(WorkflowStage.EXECUTION, _execution_summary(execution, run_id, tier))
        await self.workflows.save(workflow)

        while True:
            # Detection
            await self._enter(workflow, WorkflowStage.DETECTION)
            detection = await self._run_stage(
                workflow,
                WorkflowStage.DETECTION,
                lambda: self.detector.detect(workflow.epic_id, execution.test, stored),
            )
            if not detection.success:
                return await self._escalate(workflow, f"Detection failed: {detection.error}")
            workflow.record_result(WorkflowStage.DETECTION, detection.data.to_dict())
            await self._record_timing(workflow, execution.test, stored)
            await self.workflows.save(workflow)

            # Verification
            await self._enter(workflow, WorkflowStage.VERIFICATION)
            verification = await self._run_stage(
                workflow,
                WorkflowStage.VERIFICATION,
                lambda: self.verifier.verify(workflow.test_id, workflow.epic_id),
            )
            verdict = await self._verification_data(workflow, verification)
            if verdict is None:
                return workflow
            workflow.record_result(WorkflowStage.VERIFICATION, verdict)
            await self.workflows.save(workflow)

            if verdict.get("verified"):
                break

            # Fixing at a strictly higher tier
            current = self.ladder.get(workflow.current_tier) if workflow.current_tier else tier
            higher = self.ladder.next_tier(current)
            if workflow.retry_count >= self.config.max_retries or higher is None:
                reason = (
                    f"Verification rejected after {workflow.retry_count} fix attempt(s)"
                    if workflow.retry_count >= self.config.max_retries
                    else f"Verification rejected and no tier above {current.name}"
                )
                return await self._escalate(workflow, reason)

            await self._enter(workflow, WorkflowStage.FIXING)
            workflow.retry_count += 1
            workflow.current_tier = higher.name
            logger.info(
                f"Fix attempt {workflow.retry_count}/{self.config.max_retries} "
                f"for test {workflow.test_id} at tier {higher.name}"
            )
            fix = await self._run_stage(
                workflow,
                WorkflowStage.FIXING,
                lambda: self._fix(workflow, definition, verdict, higher),
            )
            if not fix.success:
                return await self._escalate(workflow, f"Fix attempt failed: {fix.error}")
            execution = fix.data
            if self.flags is not None:
                await self.flags.resolve_open_flags(
                    workflow.test_id,
                    workflow.epic_id,
                    f"Superseded by fix attempt {workflow.retry_count} at tier {higher.name}",
                )
            run_id, stored = await self.evidence.save_run(
                workflow.epic_id, execution.test, execution.evidence
            )
            summary = _execution_summary(execution, run_id, higher)
            summary["attempt"] = workflow.retry_count
            workflow.record_result(WorkflowStage.FIXING, summary)
            # The next detection/verification must be recorded afresh
            workflow.detection_result = None
            workflow.verification_result = None
            await self.workflows.save(workflow)

        # Learning
        await self._enter(workflow, WorkflowStage.LEARNING)
        learning = await self._run_stage(
            workflow, WorkflowStage.LEARNING, lambda: self._learn(workflow)
        )
        if not learning.success:
            return await self._escalate(workflow, f"Learning failed: {learning.error}")
        workflow.record_result(WorkflowStage.LEARNING, learning.data)

        advance(workflow, WorkflowStage.COMPLETED)
        await self.workflows.save(workflow)
        logger.info(
            f"Workflow for test {workflow.test_id} completed after "
            f"{workflow.retry_count} fix attempt(s)"
        )
        return workflow

    async def _enter(self, workflow: TestWorkflow, stage: WorkflowStage) -> None:
        await self._check_not_aborted(workflow)
        advance(workflow, stage)
        await self.workflows.save(workflow)

    async def _run_stage(
        self,
        workflow: TestWorkflow,
        stage: WorkflowStage,
        factory: Callable[[], Awaitable[Any]],
    ) -> StageOutcome:
        attempts = 0
        while True:
            outcome = await self.stage_executor.run(stage, factory)
            attempts += 1
            await self._check_not_aborted(workflow)
            if outcome.success:
                return outcome
            # asyncio.TimeoutError carries no message; classify by the outcome text then
            error = outcome.exception if str(outcome.exception or "") else outcome.error
            if not self.error_handler.should_retry(error, attempts):
                return outcome
            logger.warning(
                f"Retrying {stage.value} for test {workflow.test_id} "
                f"(attempt {attempts + 1}/{self.error_handler.max_stage_attempts}): {outcome.error}"
            )

    async def _check_not_aborted(self, workflow: TestWorkflow) -> None:
        stored = await self.workflows.get(workflow.test_id)
        if (
            stored is not None
            and stored.current_stage == WorkflowStage.FAILED
            and workflow.current_stage != WorkflowStage.FAILED
        ):
            raise WorkflowAborted(workflow.test_id)

    async def _verification_data(
        self, workflow: TestWorkflow, outcome: StageOutcome
    ) -> Optional[Dict[str, Any]]:
        """Verification result as a dict, or None once the workflow was terminated."""
        if outcome.success:
            return outcome.data.to_dict()

        error = outcome.exception
        if isinstance(error, CriticalRedFlagError):
            # A critical flag is a rejection, not a crash
            return {
                "test_id": workflow.test_id,
                "epic_id": workflow.epic_id,
                "verified": False,
                "confidence_score": 0,
                "recommendation": "reject",
                "critical_flags": error.count,
                "reason": str(error),
            }
        if isinstance(error, EvidenceNotFoundError):
            self.error_handler.fail(workflow, str(error))
            await self.workflows.save(workflow)
            return None
        if isinstance(error, IntegrityCheckFailedError):
            await self._escalate(workflow, str(error))
            return None
        await self._escalate(workflow, f"Verification failed: {outcome.error}")
        return None

    async def _fix(
        self,
        workflow: TestWorkflow,
        definition: TestDefinition,
        verification: Dict[str, Any],
        tier: CapabilityTier,
    ) -> ExecutionOutcome:
        if self.fix_engine is not None:
            return await self.fix_engine.fix(workflow, verification, tier)
        return await self.execution_engine.execute(definition, tier)

    async def _learn(self, workflow: TestWorkflow) -> Dict[str, Any]:
        return extract_learning(workflow)

    async def _record_timing(
        self, workflow: TestWorkflow, test: TestResult, evidence: List[EvidenceArtifact]
    ) -> None:
        """Append this run's duration after detection so it never baselines itself."""
        if self.timing is None:
            return
        duration = extract_duration(test, evidence)
        if duration is None:
            return
        network = find_artifact(evidence, ArtifactType.NETWORK_TRACE, ArtifactType.HTTP_REQUEST)
        dom = find_artifact(evidence, ArtifactType.DOM_SNAPSHOT)
        await self.timing.record(
            test.name,
            test.test_type,
            int(duration),
            network_requests=count_network_requests(network) if network else None,
            dom_changes=count_dom_changes(dom) if dom else None,
            epic_id=workflow.epic_id,
        )

    async def _escalate(self, workflow: TestWorkflow, reason: str) -> TestWorkflow:
        self.error_handler.escalate(workflow, reason)
        await self.workflows.save(workflow)
        return workflow

    async def get_status(self, test_id: str) -> TestWorkflow:
        workflow = await self.workflows.get(test_id)
        if workflow is None:
            raise WorkflowNotFoundError(test_id)
        return workflow

    async def abort(self, test_id: str, reason: str) -> TestWorkflow:
        """Mark a workflow failed and escalated.

        A stage already in flight finishes, but its result is discarded.

        Raises:
            WorkflowNotFoundError: If no workflow exists for the test
        """
        workflow = await self.get_status(test_id)
        return await abort_workflow(self.workflows, workflow, reason)


async def abort_workflow(
    workflows: WorkflowStore, workflow: TestWorkflow, reason: str
) -> TestWorkflow:
    """Abort ``workflow`` and persist it; a failed workflow only gains the escalation mark.

    Raises:
        ValueError: If the workflow already completed
    """
    if workflow.current_stage == WorkflowStage.COMPLETED:
        raise ValueError(f"Workflow for test {workflow.test_id} already completed")
    workflow.escalated = True
    workflow.error_message = f"Aborted: {reason}"
    if not workflow.is_terminal:
        advance(workflow, WorkflowStage.FAILED)
    await workflows.save(workflow)
    logger.warning(f"Workflow for test {workflow.test_id} aborted: {reason}")
    return workflow
