"""Pattern extraction from a finished workflow.

Turns the recorded stage history into success, failure and fix patterns that
are stored as the workflow's learning result.
"""

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List

from testwarden.workflow.state_machine import TestWorkflow, WorkflowStage


def _stage_results(workflow: TestWorkflow, stage: WorkflowStage) -> List[Dict[str, Any]]:
    return [
        entry["result"]
        for entry in workflow.history
        if entry.get("stage") == stage.value and isinstance(entry.get("result"), dict)
    ]


def extract_learning(workflow: TestWorkflow) -> Dict[str, Any]:
    """Build the learning result for a workflow whose verification was recorded."""
    patterns: List[Dict[str, Any]] = []
    verification = workflow.verification_result or {}

    if verification.get("verified"):
        patterns.append(
            {
                "type": "success",
                "description": "Test passed verification",
                "confidence": verification.get("confidence_score", 0),
            }
        )

    flag_types: Counter = Counter()
    for detection in _stage_results(workflow, WorkflowStage.DETECTION):
        for flag in detection.get("flags", []):
            flag_types[flag.get("flag_type", "unknown")] += 1
    for flag_type, count in sorted(flag_types.items()):
        patterns.append(
            {
                "type": "failure",
                "description": f"Red flag '{flag_type}' raised {count} time(s)",
                "count": count,
            }
        )

    rejected = [
        v for v in _stage_results(workflow, WorkflowStage.VERIFICATION) if not v.get("verified")
    ]
    if workflow.retry_count > 0:
        patterns.append(
            {
                "type": "fix",
                "description": (
                    f"Verification accepted after {workflow.retry_count} fix attempt(s) "
                    f"at tier {workflow.current_tier}"
                ),
                "tier": workflow.current_tier,
                "rejections": len(rejected),
            }
        )

    return {
        "test_id": workflow.test_id,
        "patterns": patterns,
        "final_tier": workflow.current_tier,
        "retries": workflow.retry_count,
        "extracted_at": datetime.now(timezone.utc).isoformat(),
    }
