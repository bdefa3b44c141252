"""Cross-stage error handling: retry classification and escalation.

Escalation hands a workflow to a human. It marks the workflow escalated and
failed, then writes a handoff document describing how far the workflow got.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from testwarden.verification.errors import VerificationError
from testwarden.workflow.state_machine import TestWorkflow, WorkflowStage, advance

logger = logging.getLogger(__name__)

RETRYABLE_PATTERNS = [
    re.compile(r"network", re.IGNORECASE),
    re.compile(r"time(d)?\s?out", re.IGNORECASE),
    re.compile(r"ECONNREFUSED", re.IGNORECASE),
    re.compile(r"ETIMEDOUT", re.IGNORECASE),
    re.compile(r"temporary", re.IGNORECASE),
    re.compile(r"transient", re.IGNORECASE),
    re.compile(r"rate limit", re.IGNORECASE),
]

# Attempts per stage (first run included) for retryable failures
DEFAULT_STAGE_ATTEMPTS = 2


def is_retryable(error: Union[BaseException, str, None]) -> bool:
    """True if the error message looks transient."""
    if error is None:
        return False
    if isinstance(error, VerificationError):
        return False
    message = str(error)
    return any(pattern.search(message) for pattern in RETRYABLE_PATTERNS)


class ErrorHandler:
    """Decides retries and performs escalation.

    Args:
        handoff_dir: Directory where escalation documents are written
        max_stage_attempts: Attempts allowed per stage for retryable failures
    """

    def __init__(self, handoff_dir: str, max_stage_attempts: int = DEFAULT_STAGE_ATTEMPTS):
        if max_stage_attempts < 1:
            raise ValueError(f"max_stage_attempts must be at least 1, got {max_stage_attempts}")
        self.handoff_dir = Path(handoff_dir)
        self.max_stage_attempts = max_stage_attempts

    def should_retry(
        self, error: Union[BaseException, str, None], attempts: int
    ) -> bool:
        return attempts < self.max_stage_attempts and is_retryable(error)

    def escalate(self, workflow: TestWorkflow, reason: str) -> Path:
        """Mark the workflow escalated and failed and write the handoff document.

        Returns:
            Path of the written handoff document
        """
        logger.warning(f"Escalating workflow for test {workflow.test_id}: {reason}")
        stage_at_escalation = workflow.current_stage
        workflow.escalated = True
        workflow.error_message = f"Escalated: {reason}"
        if not workflow.is_terminal:
            advance(workflow, WorkflowStage.FAILED)
        return self.write_handoff(workflow, reason, stage_at_escalation)

    def fail(self, workflow: TestWorkflow, reason: str) -> None:
        """Fail the workflow without escalation."""
        logger.error(f"Workflow for test {workflow.test_id} failed: {reason}")
        workflow.error_message = reason
        if not workflow.is_terminal:
            advance(workflow, WorkflowStage.FAILED)

    def write_handoff(
        self,
        workflow: TestWorkflow,
        reason: str,
        stage: Optional[WorkflowStage] = None,
    ) -> Path:
        now = datetime.now(timezone.utc)
        filename = f"{now.strftime('%Y-%m-%dT%H-%M-%S')}-{workflow.test_id}-escalation.md"
        self.handoff_dir.mkdir(parents=True, exist_ok=True)
        path = self.handoff_dir / filename
        path.write_text(self.render_handoff(workflow, reason, now, stage), encoding="utf-8")
        logger.info(f"Handoff document created: {path}")
        return path

    def render_handoff(
        self,
        workflow: TestWorkflow,
        reason: str,
        escalated_at: datetime,
        stage: Optional[WorkflowStage] = None,
    ) -> str:
        stage = stage or workflow.current_stage
        lines: List[str] = [
            "# Test Workflow Escalation",
            "",
            f"**Test ID**: {workflow.test_id}",
            f"**Epic ID**: {workflow.epic_id}",
            f"**Test Type**: {workflow.test_type.value}",
            "",
            "---",
            "",
            "## Status",
            "",
            f"**Stage At Escalation**: {stage.value}",
            f"**Status**: {workflow.status.value}",
            f"**Retries Used**: {workflow.retry_count}",
            f"**Last Tier**: {workflow.current_tier or 'n/a'}",
            f"**Escalated At**: {escalated_at.isoformat()}",
            "",
            "## Reason for Escalation",
            "",
            reason,
            "",
            "## Workflow Progress",
            "",
        ]
        lines.extend(self._progress("Execution Result", workflow.execution_result))
        lines.extend(self._progress("Detection Result", workflow.detection_result))
        lines.extend(self._progress("Verification Result", workflow.verification_result))
        lines.extend(self._progress("Fixing Result", workflow.fixing_result))
        lines.extend(self._progress("Learning Result", workflow.learning_result))
        lines.extend(
            [
                "## Attempt History",
                "",
            ]
        )
        for entry in workflow.history:
            lines.append(
                f"- attempt {entry.get('attempt')}: {entry.get('stage')} "
                f"recorded at {entry.get('recorded_at')}"
            )
        lines.extend(
            [
                "",
                "## Next Steps",
                "",
                "1. Review the error and workflow progress above",
                "2. Inspect the stored evidence and red flags for this test",
                "3. Resolve flags with `testwarden flags resolve` and re-run the test",
                "",
                "## Commands",
                "",
                "```bash",
                f"testwarden workflow status {workflow.test_id}",
                f"testwarden flags list --test {workflow.test_id}",
                "```",
                "",
            ]
        )
        return "\n".join(lines)

    def _progress(self, title: str, result: Optional[Dict[str, Any]]) -> List[str]:
        lines = [f"### {title}", ""]
        if result is None:
            lines.extend(["❌ Not completed", ""])
            return lines
        lines.extend(
            [
                "✅ Recorded",
                "",
                "```json",
                json.dumps(result, indent=2, default=str),
                "```",
                "",
            ]
        )
        return lines
