"""API and tool test executor.

Runs one ApiTestDefinition and produces exactly the evidence the red flag
detectors and the verifier expect:

1. Snapshot declared side effects
2. Send the request (or call the tool), retrying transient failures with
   exponential backoff
3. Validate the response
4. Verify side effects against their snapshots
5. Run error scenarios (http tests only)
6. Write evidence files and return the test result with its artifacts

A test whose retries are exhausted is reported as failed, never as passed.
Tool calls are recorded twice: as ``mcp_tool_call``/``tool_result`` artifacts
and as a ``tool://server/tool`` request/response envelope so API evidence
checks apply to them as well.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from testwarden.core.config import ExecutorConfig
from testwarden.core.models import (
    ArtifactType,
    EvidenceArtifact,
    PassFail,
    TestResult,
    TestType,
)
from testwarden.core.tiers import CapabilityTier
from testwarden.executor.error_scenarios import ErrorScenarioTester, error_scenario_report
from testwarden.executor.errors import ApiTestError, ToolTransientError
from testwarden.executor.http_client import dumps, send_spec
from testwarden.executor.models import (
    ApiTestDefinition,
    DefinitionKind,
    ErrorScenarioResult,
    HttpExchange,
    SideEffectResult,
    ToolResponse,
    ValidationRule,
)
from testwarden.executor.response_validator import ResponseValidator
from testwarden.executor.side_effects import SideEffectVerifier, side_effect_report
from testwarden.executor.tools import ToolClient, invoke_tool
from testwarden.workflow.orchestrator import ExecutionOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (httpx.TransportError, httpx.TimeoutException, ToolTransientError)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ApiTestRun:
    """Everything one execution observed."""

    definition: ApiTestDefinition
    started_at: datetime
    passed: bool = False
    duration_ms: int = 0
    exchange: Optional[HttpExchange] = None
    tool_response: Optional[ToolResponse] = None
    validation: List[ValidationRule] = field(default_factory=list)
    side_effects: List[SideEffectResult] = field(default_factory=list)
    error_scenarios: List[ErrorScenarioResult] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    error_message: Optional[str] = None
    request_at: Optional[datetime] = None
    response_at: Optional[datetime] = None

    def to_test_result(self) -> TestResult:
        return TestResult(
            id=self.definition.id,
            name=self.definition.name,
            test_type=TestType.API,
            pass_fail=PassFail.PASS if self.passed else PassFail.FAIL,
            executed_at=self.started_at,
            description=self.definition.description,
            duration_ms=self.duration_ms,
        )


class APITestExecutor:
    """Executes API and tool test definitions.

    Args:
        config: Base URL, timeout, retry limit and evidence directory
        client: HTTP client; one is created from ``config`` when omitted
        tools: Tool client for ``tool`` definitions and tool-based side effects
        wait: tenacity wait strategy between retries
    """

    def __init__(
        self,
        config: Optional[ExecutorConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        tools: Optional[ToolClient] = None,
        wait=None,
    ):
        self.config = config or ExecutorConfig()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=self.config.timeout,
            follow_redirects=self.config.follow_redirects,
            verify=self.config.verify_ssl,
        )
        self.tools = tools
        self.wait = wait if wait is not None else wait_exponential(multiplier=1, min=2, max=10)
        self.evidence_dir = Path(self.config.evidence_dir)
        self.validator = ResponseValidator()
        self.side_effects = SideEffectVerifier(self.client, tools, self.config.base_url)
        self.error_scenarios = ErrorScenarioTester(
            self.client, self.config.base_url, self.config.timeout
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "APITestExecutor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def execute(
        self, definition: ApiTestDefinition, tier: Optional[CapabilityTier] = None
    ) -> ExecutionOutcome:
        """Run a definition and return its result with the written evidence."""
        if tier is not None:
            logger.info(f"Executing test {definition.id} at tier {tier.name}")
        run = await self.run(definition)
        artifacts = self.write_evidence(run)
        return ExecutionOutcome(test=run.to_test_result(), evidence=artifacts)

    async def run(self, definition: ApiTestDefinition) -> ApiTestRun:
        started = time.perf_counter()
        run = ApiTestRun(definition=definition, started_at=_utc_now())
        logger.info(f"Starting API test {definition.id} ({definition.kind.value})")

        before = await self.side_effects.snapshot_all(definition.side_effects)

        try:
            if definition.kind == DefinitionKind.HTTP:
                await self._run_http(definition, run)
            else:
                await self._run_tool(definition, run)
        except TRANSIENT_ERRORS as e:
            run.error_message = (
                f"{type(e).__name__} after {self._attempts(definition)} attempt(s): {e}"
            )
            run.failures.append({"type": "execution_failed", "description": run.error_message})
            logger.error(f"Test {definition.id} failed: {run.error_message}")
        except ApiTestError as e:
            run.error_message = str(e)
            run.failures.append({"type": "execution_failed", "description": str(e)})
            logger.error(f"Test {definition.id} failed: {e}")

        executed = run.exchange is not None or run.tool_response is not None
        if executed and definition.side_effects:
            run.side_effects = await self.side_effects.verify_all(definition.side_effects, before)
            if any(not r.passed for r in run.side_effects):
                run.failures.append(
                    {
                        "type": "side_effect_failed",
                        "description": "One or more side effects failed verification",
                    }
                )

        if executed and definition.error_scenarios and definition.http_request is not None:
            run.error_scenarios = await self.error_scenarios.run_all(
                definition.http_request, definition.error_scenarios
            )
            if any(not r.passed for r in run.error_scenarios):
                run.failures.append(
                    {
                        "type": "error_scenario_failed",
                        "description": "One or more error scenarios failed",
                    }
                )

        if any(not rule.passed for rule in run.validation):
            run.failures.append(
                {
                    "type": "validation_failed",
                    "description": ResponseValidator.summarize(run.validation),
                }
            )

        run.passed = executed and not run.failures
        run.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            f"API test {definition.id} {'passed' if run.passed else 'failed'} "
            f"in {run.duration_ms}ms ({len(run.validation)} rule(s), "
            f"{len(run.side_effects)} side effect(s), {len(run.error_scenarios)} scenario(s))"
        )
        return run

    def _attempts(self, definition: ApiTestDefinition) -> int:
        return definition.retries or self.config.retries

    async def _with_retry(
        self, definition: ApiTestDefinition, factory: Callable[[], Awaitable[T]]
    ) -> T:
        def log_retry(retry_state) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                f"Transient failure for test {definition.id} "
                f"(attempt {retry_state.attempt_number}/{self._attempts(definition)}): {error}"
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop_after_attempt(self._attempts(definition)),
            wait=self.wait,
            before_sleep=log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await factory()

    async def _run_http(self, definition: ApiTestDefinition, run: ApiTestRun) -> None:
        spec = definition.http_request
        run.request_at = _utc_now()
        run.exchange = await self._with_retry(
            definition,
            lambda: send_spec(
                self.client,
                spec,
                base_url=self.config.base_url,
                timeout=definition.timeout or self.config.timeout,
            ),
        )
        run.response_at = _utc_now()
        run.validation = self.validator.validate_http(run.exchange, definition.expected_response)

    async def _run_tool(self, definition: ApiTestDefinition, run: ApiTestRun) -> None:
        if self.tools is None:
            raise ApiTestError("No tool client configured", definition.id)
        call = definition.tool_call
        run.request_at = _utc_now()
        run.tool_response = await self._with_retry(
            definition, lambda: invoke_tool(self.tools, call)
        )
        run.response_at = _utc_now()
        run.validation = self.validator.validate_tool(
            run.tool_response, definition.expected_response.json_schema
        )

    def write_evidence(self, run: ApiTestRun) -> List[EvidenceArtifact]:
        """Write evidence files under ``{evidence_dir}/{epic}/`` and build artifacts."""
        definition = run.definition
        directory = self.evidence_dir / definition.epic_id
        directory.mkdir(parents=True, exist_ok=True)
        artifacts: List[EvidenceArtifact] = []
        request_at = run.request_at or run.started_at
        response_at = run.response_at or _utc_now()

        def write(
            suffix: str,
            artifact_type: ArtifactType,
            payload: Any,
            metadata: Dict[str, Any],
            captured_at: datetime,
        ) -> None:
            path = (directory / f"{definition.id}-{suffix}.json").resolve()
            path.write_text(dumps(payload), encoding="utf-8")
            artifacts.append(
                EvidenceArtifact(
                    epic_id=definition.epic_id,
                    test_id=definition.id,
                    artifact_type=artifact_type,
                    path=str(path),
                    metadata=metadata,
                    captured_at=captured_at,
                )
            )

        if run.exchange is not None:
            request = run.exchange.request_log()
            response = run.exchange.response_log()
            write("request", ArtifactType.HTTP_REQUEST, request, dict(request), request_at)
            write("response", ArtifactType.HTTP_RESPONSE, response, dict(response), response_at)
        elif definition.kind == DefinitionKind.HTTP:
            spec = definition.http_request
            # The request was attempted even though no response arrived
            request = {"method": spec.method.value, "url": spec.url, "error": run.error_message}
            write("request", ArtifactType.HTTP_REQUEST, request, dict(request), request_at)

        if definition.kind == DefinitionKind.TOOL:
            call = definition.tool_call
            call_log = {
                "tool": call.qualified_name,
                "server": call.server,
                "toolName": call.tool,
                "params": call.params,
                "toolCalls": [{"tool": call.tool, "server": call.server}],
            }
            write("tool-call", ArtifactType.MCP_TOOL_CALL, call_log, dict(call_log), request_at)
            envelope = {
                "method": "CALL",
                "url": f"tool://{call.server}/{call.tool}",
                "body": call.params,
            }
            write("request", ArtifactType.HTTP_REQUEST, envelope, dict(envelope), request_at)
            if run.tool_response is not None:
                result = run.tool_response.to_dict()
                write("tool-result", ArtifactType.TOOL_RESULT, result, dict(result), response_at)
                response = {
                    "statusCode": 500 if run.tool_response.error else 200,
                    "body": run.tool_response.error or run.tool_response.result,
                    "responseTimeMs": round(run.tool_response.elapsed_ms, 2),
                }
                write("response", ArtifactType.HTTP_RESPONSE, response, dict(response), response_at)

        report_at = _utc_now()
        validation = {
            "passed": all(r.passed for r in run.validation) and bool(run.validation),
            "summary": ResponseValidator.summarize(run.validation),
            "rules": [r.to_dict() for r in run.validation],
            "failures": run.failures,
            "error": run.error_message,
        }
        write(
            "validation",
            ArtifactType.VALIDATION_REPORT,
            validation,
            {"passed": validation["passed"], "summary": validation["summary"]},
            report_at,
        )
        if run.side_effects:
            report = side_effect_report(run.side_effects)
            write(
                "side-effects",
                ArtifactType.SIDE_EFFECT_REPORT,
                report,
                {"passed": report["passed"], "summary": report["summary"]},
                report_at,
            )
        if run.error_scenarios:
            report = error_scenario_report(run.error_scenarios)
            write(
                "error-scenarios",
                ArtifactType.ERROR_SCENARIO_REPORT,
                report,
                {"passed": report["passed"], "summary": report["summary"]},
                report_at,
            )

        artifacts.append(
            EvidenceArtifact(
                epic_id=definition.epic_id,
                test_id=definition.id,
                artifact_type=ArtifactType.TEST_DURATION,
                metadata={"durationMs": run.duration_ms},
                captured_at=report_at,
            )
        )
        logger.debug(f"Wrote {len(artifacts)} evidence artifact(s) for test {definition.id}")
        return artifacts
