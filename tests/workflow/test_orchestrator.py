"""Integration tests for TestWorkflowOrchestrator against a real database."""

import asyncio
from dataclasses import dataclass
from pathlib import Path

import pytest

from testwarden.core.config import WorkflowConfig
from testwarden.core.models import ArtifactType, TestType
from testwarden.core.tiers import TierLadder
from testwarden.detection.red_flag_detector import RedFlagDetector
from testwarden.verification.errors import EvidenceNotFoundError
from testwarden.workflow import (
    ExecutionOutcome,
    StageExecutor,
    TestWorkflow,
    TestWorkflowOrchestrator,
    WorkflowNotFoundError,
    WorkflowStage,
    WorkflowStatus,
    abort_workflow,
)
from tests.helpers import EPIC_ID, ArtifactFactory, api_evidence, make_test, ui_evidence


@dataclass
class Definition:
    id: str = "test-1"
    epic_id: str = EPIC_ID
    test_type: TestType = TestType.API


def api_outcome(status: int = 200) -> ExecutionOutcome:
    test = make_test(name="Get user by id", test_type=TestType.API)
    return ExecutionOutcome(test, api_evidence(status=status))


class ScriptedEngine:
    """Plays back outcomes in order, repeating the last one; exceptions are raised."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.tiers = []

    async def execute(self, definition, tier):
        self.tiers.append(tier.name)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, Exception):
            raise step
        return step


class Verdict:
    def __init__(self, verified: bool):
        self.verified = verified

    def to_dict(self):
        return {
            "verified": self.verified,
            "confidence_score": 95 if self.verified else 40,
            "recommendation": "accept" if self.verified else "reject",
        }


class FixedVerifier:
    def __init__(self, verified: bool = True, error: Exception = None):
        self.verified = verified
        self.error = error
        self.calls = 0

    async def verify(self, test_id, epic_id):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return Verdict(self.verified)


@pytest.fixture
def workflow_config(temp_dir) -> WorkflowConfig:
    return WorkflowConfig(handoff_dir=str(temp_dir / "handoffs"))


def build(db, config, engine, verifier, **kwargs) -> TestWorkflowOrchestrator:
    return TestWorkflowOrchestrator(
        workflows=db.workflows,
        evidence=db.evidence,
        detector=RedFlagDetector(store=db.red_flags, history=db.timing),
        verifier=verifier,
        execution_engine=engine,
        flags=db.red_flags,
        timing=db.timing,
        config=config,
        **kwargs,
    )


def handoffs(config: WorkflowConfig):
    directory = Path(config.handoff_dir)
    return sorted(directory.glob("*-escalation.md")) if directory.exists() else []


class TestHappyPath:
    """Tests for runs that pass verification."""

    @pytest.mark.asyncio
    async def test_clean_api_test_completes(self, db, workflow_config):
        engine = ScriptedEngine(api_outcome())
        orchestrator = TestWorkflowOrchestrator.from_database(
            db, engine, config=workflow_config
        )

        workflow = await orchestrator.run(Definition())

        assert workflow.status == WorkflowStatus.COMPLETED
        assert workflow.current_stage == WorkflowStage.COMPLETED
        assert workflow.retry_count == 0
        assert workflow.current_tier == "haiku"
        assert engine.tiers == ["haiku"]
        assert [entry["stage"] for entry in workflow.history] == [
            "execution",
            "detection",
            "verification",
            "learning",
        ]
        assert workflow.verification_result["verified"] is True
        assert workflow.learning_result["patterns"][0]["type"] == "success"

        stored = await db.workflows.get("test-1")
        assert stored.status == WorkflowStatus.COMPLETED
        assert stored.execution_result["tier"] == "haiku"
        assert (await db.timing.get_baseline("Get user by id")).samples == 1
        assert db.verification_reports.get_latest_report("test-1", EPIC_ID)["verified"] is True

    @pytest.mark.asyncio
    async def test_critical_flag_fixed_at_higher_tier(self, db, workflow_config):
        """A critical flag rejects the run; the fix supersedes the flag and passes."""
        artifact = ArtifactFactory()
        bare = ExecutionOutcome(make_test(), [artifact(ArtifactType.SCREENSHOT_BEFORE)])
        fixed = ExecutionOutcome(make_test(duration_ms=1800), ui_evidence())
        engine = ScriptedEngine(bare, fixed)
        orchestrator = TestWorkflowOrchestrator.from_database(
            db, engine, config=workflow_config
        )

        workflow = await orchestrator.run(Definition(test_type=TestType.UI))

        assert workflow.status == WorkflowStatus.COMPLETED
        assert workflow.retry_count == 1
        assert engine.tiers == ["haiku", "sonnet"]
        assert workflow.current_tier == "sonnet"

        first_verification = [e for e in workflow.history if e["stage"] == "verification"][0]
        assert first_verification["result"]["critical_flags"] == 1
        assert first_verification["result"]["verified"] is False

        assert db.red_flags.list_flags(resolved=False) == []
        superseded = db.red_flags.list_flags(resolved=True)[0]
        assert superseded.resolution_notes.startswith("Superseded by fix attempt 1")

        fix_patterns = [p for p in workflow.learning_result["patterns"] if p["type"] == "fix"]
        assert fix_patterns[0]["tier"] == "sonnet"

    @pytest.mark.asyncio
    async def test_transient_execution_error_is_retried(self, db, workflow_config):
        engine = ScriptedEngine(ConnectionError("network unreachable"), api_outcome())
        orchestrator = build(db, workflow_config, engine, FixedVerifier())

        workflow = await orchestrator.run(Definition())

        assert workflow.status == WorkflowStatus.COMPLETED
        assert engine.tiers == ["haiku", "haiku"]


class TestEscalation:
    """Tests for retry exhaustion and stage failures."""

    @pytest.mark.asyncio
    async def test_four_tier_ladder_escalates_after_three_fixes(self, db, workflow_config):
        ladder = TierLadder.from_names(["t1", "t2", "t3", "t4"])
        engine = ScriptedEngine(api_outcome())
        verifier = FixedVerifier(verified=False)
        orchestrator = build(db, workflow_config, engine, verifier, ladder=ladder)

        workflow = await orchestrator.run(Definition())

        assert engine.tiers == ["t1", "t2", "t3", "t4"]
        assert verifier.calls == 4
        assert workflow.retry_count == 3
        assert workflow.escalated is True
        assert workflow.status == WorkflowStatus.FAILED
        assert workflow.current_tier == "t4"
        assert "after 3 fix attempt(s)" in workflow.error_message
        assert len([e for e in workflow.history if e["stage"] == "fixing"]) == 3

        files = handoffs(workflow_config)
        assert len(files) == 1
        assert "**Retries Used**: 3" in files[0].read_text()

        stored = await db.workflows.get("test-1")
        assert stored.escalated is True
        assert stored.retry_count == 3

    @pytest.mark.asyncio
    async def test_retry_limit_applies_before_ladder_runs_out(self, db, workflow_config):
        ladder = TierLadder.from_names(["t1", "t2", "t3", "t4", "t5"])
        engine = ScriptedEngine(api_outcome())
        orchestrator = build(
            db, workflow_config, engine, FixedVerifier(verified=False), ladder=ladder
        )

        workflow = await orchestrator.run(Definition())

        assert engine.tiers == ["t1", "t2", "t3", "t4"]
        assert workflow.retry_count == 3
        assert workflow.escalated is True

    @pytest.mark.asyncio
    async def test_top_of_ladder_escalates(self, db, workflow_config):
        engine = ScriptedEngine(api_outcome())
        orchestrator = build(db, workflow_config, engine, FixedVerifier(verified=False))

        workflow = await orchestrator.run(Definition())

        assert engine.tiers == ["haiku", "sonnet", "opus"]
        assert workflow.retry_count == 2
        assert workflow.escalated is True
        assert "no tier above opus" in workflow.error_message

    @pytest.mark.asyncio
    async def test_max_retries_zero_escalates_immediately(self, db, temp_dir):
        config = WorkflowConfig(max_retries=0, handoff_dir=str(temp_dir / "handoffs"))
        engine = ScriptedEngine(api_outcome())
        orchestrator = build(db, config, engine, FixedVerifier(verified=False))

        workflow = await orchestrator.run(Definition())

        assert engine.tiers == ["haiku"]
        assert workflow.retry_count == 0
        assert workflow.escalated is True

    @pytest.mark.asyncio
    async def test_execution_failure_escalates(self, db, workflow_config):
        engine = ScriptedEngine(ValueError("definition has no steps"))
        orchestrator = build(db, workflow_config, engine, FixedVerifier())

        workflow = await orchestrator.run(Definition())

        assert engine.tiers == ["haiku"]
        assert workflow.status == WorkflowStatus.FAILED
        assert workflow.error_message == "Escalated: Execution failed: definition has no steps"
        assert workflow.execution_result is None

    @pytest.mark.asyncio
    async def test_execution_timeout(self, db, workflow_config):
        class SlowEngine:
            calls = 0

            async def execute(self, definition, tier):
                SlowEngine.calls += 1
                await asyncio.sleep(1)

        orchestrator = build(
            db,
            workflow_config,
            SlowEngine(),
            FixedVerifier(),
            stage_executor=StageExecutor({"execution": 0.01}),
        )

        workflow = await orchestrator.run(Definition())

        # Timeouts are transient, so the stage gets a second attempt
        assert SlowEngine.calls == 2
        assert workflow.escalated is True
        assert "timed out after 0.01s" in workflow.error_message

    @pytest.mark.asyncio
    async def test_missing_evidence_fails_without_escalation(self, db, workflow_config):
        verifier = FixedVerifier(error=EvidenceNotFoundError("test-1", EPIC_ID))
        orchestrator = build(db, workflow_config, ScriptedEngine(api_outcome()), verifier)

        workflow = await orchestrator.run(Definition())

        assert verifier.calls == 1
        assert workflow.status == WorkflowStatus.FAILED
        assert workflow.escalated is False
        assert handoffs(workflow_config) == []


class TestAbort:
    """Tests for aborting workflows."""

    @pytest.mark.asyncio
    async def test_abort_in_flight_discards_stage_result(self, db, workflow_config):
        class AbortingEngine:
            async def execute(self, definition, tier):
                stored = await db.workflows.get(definition.id)
                await abort_workflow(db.workflows, stored, "operator stop")
                return api_outcome()

        orchestrator = build(db, workflow_config, AbortingEngine(), FixedVerifier())

        workflow = await orchestrator.run(Definition())

        assert workflow.status == WorkflowStatus.FAILED
        assert workflow.escalated is True
        assert workflow.error_message == "Aborted: operator stop"
        assert workflow.execution_result is None
        assert db.evidence.list_runs(EPIC_ID) == []

    @pytest.mark.asyncio
    async def test_abort_by_test_id(self, db, workflow_config):
        await db.workflows.save(
            TestWorkflow("test-1", EPIC_ID, TestType.API, current_stage=WorkflowStage.DETECTION)
        )
        orchestrator = build(db, workflow_config, ScriptedEngine(api_outcome()), FixedVerifier())

        workflow = await orchestrator.abort("test-1", "flaky environment")

        assert workflow.current_stage == WorkflowStage.FAILED
        assert (await db.workflows.get("test-1")).escalated is True

    @pytest.mark.asyncio
    async def test_abort_completed_workflow_rejected(self, db):
        completed = TestWorkflow(
            "test-1",
            EPIC_ID,
            TestType.API,
            current_stage=WorkflowStage.COMPLETED,
            status=WorkflowStatus.COMPLETED,
        )
        with pytest.raises(ValueError, match="already completed"):
            await abort_workflow(db.workflows, completed, "too late")

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, db, workflow_config):
        orchestrator = build(db, workflow_config, ScriptedEngine(api_outcome()), FixedVerifier())
        with pytest.raises(WorkflowNotFoundError):
            await orchestrator.get_status("missing")

    @pytest.mark.asyncio
    async def test_active_workflow_cannot_be_restarted(self, db, workflow_config):
        await db.workflows.save(
            TestWorkflow("test-1", EPIC_ID, TestType.API, current_stage=WorkflowStage.DETECTION)
        )
        orchestrator = build(db, workflow_config, ScriptedEngine(api_outcome()), FixedVerifier())

        with pytest.raises(ValueError, match="already detection"):
            await orchestrator.run(Definition())

    @pytest.mark.asyncio
    async def test_finished_workflow_can_be_rerun(self, db, workflow_config):
        engine = ScriptedEngine(api_outcome())
        orchestrator = build(db, workflow_config, engine, FixedVerifier())

        first = await orchestrator.run(Definition())
        second = await orchestrator.run(Definition())

        assert second.id == first.id
        assert second.status == WorkflowStatus.COMPLETED
        assert len(db.workflows.list_workflows()) == 1
