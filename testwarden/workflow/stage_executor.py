"""Runs individual workflow stages under a timeout.

A stage is any coroutine. The executor never raises: every outcome, including
timeouts and collaborator exceptions, comes back as a StageOutcome so the
orchestrator can decide whether to retry, reject or escalate.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from testwarden.workflow.state_machine import WorkflowStage

logger = logging.getLogger(__name__)

# Seconds
DEFAULT_STAGE_TIMEOUTS: Dict[WorkflowStage, float] = {
    WorkflowStage.EXECUTION: 300.0,
    WorkflowStage.DETECTION: 60.0,
    WorkflowStage.VERIFICATION: 120.0,
    WorkflowStage.FIXING: 600.0,
    WorkflowStage.LEARNING: 30.0,
}


@dataclass
class StageOutcome:
    """Result of running one stage.

    Attributes:
        success: True if the stage coroutine returned
        data: The coroutine's return value
        error: Failure message when unsuccessful
        duration_ms: Wall-clock time spent in the stage
        exception: The exception raised by the stage, if any
    """

    success: bool
    data: Any = None
    error: Optional[str] = None
    duration_ms: int = 0
    exception: Optional[BaseException] = None


class StageExecutor:
    """Wraps stage coroutines in ``asyncio.wait_for``.

    Args:
        timeouts: Per-stage overrides in seconds, keyed by stage or stage name
    """

    def __init__(self, timeouts: Optional[Dict[Any, float]] = None):
        self._timeouts = dict(DEFAULT_STAGE_TIMEOUTS)
        for stage, seconds in (timeouts or {}).items():
            self.set_timeout(WorkflowStage(stage), seconds)

    def get_timeout(self, stage: WorkflowStage) -> Optional[float]:
        return self._timeouts.get(stage)

    def set_timeout(self, stage: WorkflowStage, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError(f"Timeout for {stage.value} must be positive, got {seconds}")
        self._timeouts[stage] = seconds

    async def run(
        self, stage: WorkflowStage, factory: Callable[[], Awaitable[Any]]
    ) -> StageOutcome:
        """Run ``factory()`` as ``stage`` and capture the outcome."""
        timeout = self.get_timeout(stage)
        started = time.perf_counter()

        def elapsed() -> int:
            return int((time.perf_counter() - started) * 1000)

        try:
            data = await asyncio.wait_for(factory(), timeout=timeout)
        except asyncio.TimeoutError as e:
            message = f"Stage {stage.value} timed out after {timeout:g}s"
            logger.error(message)
            return StageOutcome(False, error=message, duration_ms=elapsed(), exception=e)
        except Exception as e:
            logger.error(f"Stage {stage.value} failed: {e}")
            return StageOutcome(False, error=str(e), duration_ms=elapsed(), exception=e)

        return StageOutcome(True, data=data, duration_ms=elapsed())
