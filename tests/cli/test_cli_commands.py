"""Tests for the testwarden CLI.

This module tests:
- `testwarden detect` - Evidence bundle detection and reports
- `testwarden verify` - Independent verification exit codes
- `testwarden flags list|resolve|stats`
- `testwarden workflow status|list|abort`
- `testwarden config show`
"""

import asyncio
import json

import pytest
from typer.testing import CliRunner

from testwarden.cli.app import app
from testwarden.core.models import ArtifactType, PassFail, TestType
from testwarden.persistence.database import Database
from testwarden.workflow.state_machine import TestWorkflow, WorkflowStage, WorkflowStatus
from tests.helpers import EPIC_ID, ArtifactFactory, api_evidence, make_test


runner = CliRunner()


def write_bundle(path, entries, epic_id=EPIC_ID):
    bundle = {
        "tests": [
            {**test.to_dict(), "evidence": [a.to_dict() for a in evidence]}
            for test, evidence in entries
        ]
    }
    if epic_id:
        bundle["epic_id"] = epic_id
    path.write_text(json.dumps(bundle))
    return path


def clean_api_entry():
    return make_test(name="Get user by id", test_type=TestType.API), api_evidence()


def unproven_ui_entry():
    """A passing UI test whose only evidence is a console log."""
    artifact = ArtifactFactory(test_id="test-ui")
    return (
        make_test(test_id="test-ui", test_type=TestType.UI),
        [artifact(ArtifactType.CONSOLE_LOG, lines=["[info] page loaded"])],
    )


def seed_workflow(config_dir, workflow):
    async def _save():
        db = Database(config_dir / "state.db")
        try:
            async with db:
                await db.workflows.save(workflow)
        finally:
            db.close()

    asyncio.run(_save())


# =============================================================================
# detect / verify
# =============================================================================


class TestDetect:
    """Tests for the detect command."""

    def test_clean_bundle_passes(self, env_config):
        bundle = write_bundle(env_config / "bundle.json", [clean_api_entry()])

        result = runner.invoke(app, ["detect", str(bundle)])

        assert result.exit_code == 0, result.output
        assert "1 test(s): 1 pass, 0 review, 0 fail" in result.output

        listed = runner.invoke(app, ["flags", "list"])
        assert "No red flags found." in listed.output

    def test_missing_evidence_fails_with_reports(self, env_config):
        bundle = write_bundle(
            env_config / "bundle.json", [clean_api_entry(), unproven_ui_entry()]
        )

        result = runner.invoke(
            app, ["detect", str(bundle), "--report-dir", "reports", "--format", "json"]
        )

        assert result.exit_code == 2
        assert "1 fail" in result.output
        reports = sorted(p.name for p in (env_config / "reports").iterdir())
        assert len(reports) == 2
        assert all(name.endswith(".json") for name in reports)

    def test_epic_option_overrides_bundle(self, env_config):
        bundle = write_bundle(env_config / "bundle.json", [clean_api_entry()], epic_id=None)

        missing = runner.invoke(app, ["detect", str(bundle)])
        assert missing.exit_code == 1
        assert "No epic id" in missing.output

        result = runner.invoke(app, ["detect", str(bundle), "--epic", "epic-9"])
        assert result.exit_code == 0

    def test_invalid_format(self, env_config):
        bundle = write_bundle(env_config / "bundle.json", [clean_api_entry()])
        result = runner.invoke(app, ["detect", str(bundle), "--format", "pdf"])
        assert result.exit_code == 1
        assert "Invalid format" in result.output


class TestVerify:
    """Tests for the verify command."""

    def test_clean_run_is_verified(self, env_config):
        bundle = write_bundle(env_config / "bundle.json", [clean_api_entry()])
        runner.invoke(app, ["detect", str(bundle)])

        result = runner.invoke(app, ["verify", "test-1", "--epic", EPIC_ID, "--format", "json"])

        assert result.exit_code == 0, result.output
        report = json.loads(result.stdout)
        assert report["verified"] is True
        assert report["confidence_score"] == 100

    def test_critical_flags_fail_verification(self, env_config):
        bundle = write_bundle(env_config / "bundle.json", [unproven_ui_entry()])
        runner.invoke(app, ["detect", str(bundle)])

        result = runner.invoke(app, ["verify", "test-ui", "--epic", EPIC_ID])

        assert result.exit_code == 2
        assert "Verification failed (red_flags)" in result.output

    def test_unknown_test(self, env_config):
        result = runner.invoke(app, ["verify", "nope", "--epic", EPIC_ID])
        assert result.exit_code == 2
        assert "No evidence found" in result.output


# =============================================================================
# flags
# =============================================================================


class TestFlags:
    """Tests for the flags commands."""

    @pytest.fixture
    def flagged(self, env_config):
        bundle = write_bundle(env_config / "bundle.json", [unproven_ui_entry()])
        runner.invoke(app, ["detect", str(bundle)])
        return env_config

    def list_json(self, *args):
        result = runner.invoke(app, ["flags", "list", "--format", "json", *args])
        assert result.exit_code == 0, result.output
        return json.loads(result.stdout)

    def test_list_and_resolve(self, flagged):
        flags = self.list_json("--severity", "critical", "--unresolved")
        assert flags
        assert {f["test_id"] for f in flags} == {"test-ui"}

        target = flags[0]["id"]
        result = runner.invoke(
            app, ["flags", "resolve", str(target), "--notes", "Screenshots re-captured"]
        )
        assert result.exit_code == 0
        assert f"Resolved red flag {target}" in result.output

        remaining = self.list_json("--severity", "critical", "--unresolved")
        assert len(remaining) == len(flags) - 1

    def test_list_table(self, flagged):
        result = runner.invoke(app, ["flags", "list", "--epic", EPIC_ID])
        assert result.exit_code == 0
        assert "Red Flags" in result.output

    def test_invalid_severity(self, flagged):
        result = runner.invoke(app, ["flags", "list", "--severity", "urgent"])
        assert result.exit_code == 1
        assert "Invalid severity" in result.output

    def test_resolve_unknown_flag(self, flagged):
        result = runner.invoke(app, ["flags", "resolve", "999", "--notes", "n/a"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_resolve_needs_notes(self, flagged):
        result = runner.invoke(app, ["flags", "resolve", "1", "--notes", "  "])
        assert result.exit_code == 1
        assert "cannot be empty" in result.output

    def test_stats(self, flagged):
        result = runner.invoke(app, ["flags", "stats", "--epic", EPIC_ID])
        assert result.exit_code == 0
        assert f"Red flags (epic {EPIC_ID})" in result.output
        assert "By Severity" in result.output


# =============================================================================
# workflow
# =============================================================================


class TestWorkflowCommands:
    """Tests for the workflow commands."""

    @pytest.fixture
    def running(self, env_config):
        workflow = TestWorkflow("test-1", EPIC_ID, TestType.API)
        workflow.current_stage = WorkflowStage.DETECTION
        workflow.status = WorkflowStatus.IN_PROGRESS
        workflow.current_tier = "haiku"
        workflow.record_result(WorkflowStage.EXECUTION, {"passFail": PassFail.PASS.value})
        seed_workflow(env_config, workflow)
        return workflow

    def test_status(self, running):
        result = runner.invoke(app, ["workflow", "status", "test-1"])
        assert result.exit_code == 0
        assert "detection" in result.output
        assert "Stage History" in result.output

    def test_status_json(self, running):
        result = runner.invoke(app, ["workflow", "status", "test-1", "--format", "json"])
        data = json.loads(result.stdout)
        assert data["current_stage"] == "detection"
        assert data["execution_result"] == {"passFail": "pass"}

    def test_status_unknown(self, env_config):
        result = runner.invoke(app, ["workflow", "status", "nope"])
        assert result.exit_code == 1
        assert "No workflow found for test nope" in result.output

    def test_list(self, running):
        result = runner.invoke(app, ["workflow", "list", "--status", "in-progress"])
        assert result.exit_code == 0
        assert "test-1" in result.output

        empty = runner.invoke(app, ["workflow", "list", "--status", "completed"])
        assert "No workflows found." in empty.output

    def test_list_invalid_status(self, env_config):
        result = runner.invoke(app, ["workflow", "list", "--status", "paused"])
        assert result.exit_code == 1

    def test_abort(self, running):
        result = runner.invoke(
            app, ["workflow", "abort", "test-1", "--reason", "Flaky environment"]
        )
        assert result.exit_code == 0
        assert "aborted" in result.output

        data = json.loads(
            runner.invoke(app, ["workflow", "status", "test-1", "--format", "json"]).stdout
        )
        assert data["status"] == "failed"
        assert data["escalated"] is True
        assert data["error_message"] == "Aborted: Flaky environment"

    def test_abort_completed(self, env_config):
        done = TestWorkflow("test-1", EPIC_ID, TestType.API)
        done.current_stage = WorkflowStage.COMPLETED
        done.status = WorkflowStatus.COMPLETED
        seed_workflow(env_config, done)

        result = runner.invoke(app, ["workflow", "abort", "test-1"])

        assert result.exit_code == 1
        assert "already completed" in result.output


# =============================================================================
# config
# =============================================================================


class TestConfigShow:
    def test_json(self, env_config):
        result = runner.invoke(app, ["config", "show", "--format", "json"])
        assert result.exit_code == 0
        values = json.loads(result.stdout)
        assert values["database_path"] == str(env_config / "state.db")
        assert values["max_fix_retries"] == 3

    def test_table(self, env_config):
        result = runner.invoke(app, ["config", "show"])
        assert "testwarden Configuration" in result.output
