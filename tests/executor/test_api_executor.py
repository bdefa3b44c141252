"""Tests for APITestExecutor against an in-process httpx mock API."""

import json
from pathlib import Path

import httpx
import pytest
from tenacity import wait_none

from testwarden.core.config import ExecutorConfig
from testwarden.core.models import ArtifactType, PassFail, Severity
from testwarden.core.tiers import DEFAULT_LADDER
from testwarden.detection.red_flag_detector import RedFlagDetector
from testwarden.executor import (
    APITestExecutor,
    ApiTestDefinition,
    ToolExecutionError,
    ToolTransientError,
)
from tests.helpers import EPIC_ID


class UsersApi:
    """A tiny users API: POST /users creates, GET /users/{id} reads."""

    def __init__(self, fail_connections: int = 0):
        self.users = {}
        self.calls = 0
        self.fail_connections = fail_connections

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.fail_connections:
            self.fail_connections -= 1
            raise httpx.ConnectError("connection refused", request=request)

        if request.method == "GET" and request.url.path.startswith("/users/"):
            user = self.users.get(request.url.path.rsplit("/", 1)[-1])
            if user is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json=user)

        if request.method == "POST" and request.url.path == "/users":
            if request.headers.get("authorization") != "Bearer secret":
                return httpx.Response(401, json={"error": "unauthorized"})
            if not request.headers.get("content-type", "").startswith("application/json"):
                return httpx.Response(415, json={"error": "unsupported media type"})
            try:
                body = json.loads(request.content)
            except ValueError:
                return httpx.Response(400, json={"error": "malformed json"})
            if not isinstance(body.get("email"), str):
                return httpx.Response(422, json={"error": "email is required"})
            user = {"id": len(self.users) + 1, **body}
            self.users[str(user["id"])] = user
            return httpx.Response(201, json=user, headers={"Location": f"/users/{user['id']}"})

        return httpx.Response(405)


def create_user_definition(**overrides) -> ApiTestDefinition:
    data = {
        "id": "create-user",
        "epic_id": EPIC_ID,
        "name": "Create user",
        "http_request": {
            "method": "POST",
            "url": "/users",
            "body": {"email": "ada@example.com", "name": "Ada"},
            "auth": {"type": "bearer", "value": "secret"},
        },
        "expected_response": {
            "status": 201,
            "schema": {
                "type": "object",
                "required": ["id", "email"],
                "properties": {"id": {"type": "integer"}, "email": {"type": "string"}},
            },
            "header_patterns": {"content-type": "json"},
            "body_contains": "Ada",
        },
        "side_effects": [
            {"type": "resource_created", "description": "user 1 exists", "url": "/users/1"}
        ],
        "error_scenarios": [
            {
                "description": "missing email",
                "action": "remove_field",
                "field": "email",
                "expected_status": 422,
                "expected_message": "email",
            },
            {"description": "no credentials", "action": "remove_auth", "expected_status": 401},
            {"description": "broken json", "action": "corrupt_json", "expected_status": 400},
            {"description": "plain text", "action": "invalid_content_type", "expected_status": 415},
        ],
    }
    data.update(overrides)
    return ApiTestDefinition.model_validate(data)


class FakeTools:
    def __init__(self, result=None, error=None, transient_failures=0):
        self.result = result
        self.error = error
        self.transient_failures = transient_failures
        self.calls = []

    async def call_tool(self, server, tool, params):
        self.calls.append((server, tool, params))
        if self.transient_failures:
            self.transient_failures -= 1
            raise ToolTransientError("server busy")
        if self.error:
            raise ToolExecutionError(self.error, tool, server)
        return self.result


def tool_definition(**overrides) -> ApiTestDefinition:
    data = {
        "id": "open-issue",
        "epic_id": EPIC_ID,
        "name": "Open an issue",
        "kind": "tool",
        "tool_call": {"server": "github", "tool": "create_issue", "params": {"title": "Bug"}},
        "expected_response": {
            "schema": {"type": "object", "required": ["number"]},
        },
    }
    data.update(overrides)
    return ApiTestDefinition.model_validate(data)


@pytest.fixture
def api() -> UsersApi:
    return UsersApi()


@pytest.fixture
def make_executor(temp_dir):
    def factory(handler=None, tools=None, retries=3):
        config = ExecutorConfig(
            base_url="https://api.test",
            retries=retries,
            evidence_dir=str(temp_dir / "evidence"),
        )
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler or UsersApi()))
        return APITestExecutor(config=config, client=client, tools=tools, wait=wait_none())

    return factory


def by_type(artifacts):
    return {artifact.artifact_type: artifact for artifact in artifacts}


class TestHttpExecution:
    """Tests for http definitions."""

    @pytest.mark.asyncio
    async def test_full_definition_passes(self, make_executor, api):
        executor = make_executor(api)

        run = await executor.run(create_user_definition())

        assert run.passed is True, run.failures
        assert run.exchange.status_code == 201
        assert all(rule.passed for rule in run.validation)
        assert [r.passed for r in run.side_effects] == [True]
        assert run.side_effects[0].change_detected is True
        assert [r.actual_status for r in run.error_scenarios] == [422, 401, 400, 415]
        assert all(r.passed for r in run.error_scenarios)

    @pytest.mark.asyncio
    async def test_simple_get_passes(self, make_executor):
        def health(request):
            if request.method == "GET" and request.url.path == "/health":
                return httpx.Response(200, json={"status": "ok"})
            return httpx.Response(404)

        executor = make_executor(health)
        definition = ApiTestDefinition.model_validate(
            {
                "id": "health",
                "epic_id": EPIC_ID,
                "name": "Health check",
                "http_request": {"method": "GET", "url": "/health"},
                "expected_response": {"status": 200},
            }
        )

        run = await executor.run(definition)

        assert run.passed is True, run.failures
        assert run.exchange.status_code == 200
        assert run.exchange.body == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_execute_writes_evidence(self, make_executor, api, temp_dir):
        executor = make_executor(api)

        outcome = await executor.execute(create_user_definition(), DEFAULT_LADDER.lowest())

        assert outcome.test.pass_fail == PassFail.PASS
        assert outcome.test.id == "create-user"
        artifacts = by_type(outcome.evidence)
        assert set(artifacts) == {
            ArtifactType.HTTP_REQUEST,
            ArtifactType.HTTP_RESPONSE,
            ArtifactType.VALIDATION_REPORT,
            ArtifactType.SIDE_EFFECT_REPORT,
            ArtifactType.ERROR_SCENARIO_REPORT,
            ArtifactType.TEST_DURATION,
        }

        request_file = json.loads(Path(artifacts[ArtifactType.HTTP_REQUEST].path).read_text())
        assert request_file["headers"]["Authorization"] == "***"
        assert request_file["url"] == "https://api.test/users"
        assert artifacts[ArtifactType.HTTP_RESPONSE].metadata["statusCode"] == 201
        assert artifacts[ArtifactType.HTTP_REQUEST].path.startswith(str(temp_dir))
        assert (
            artifacts[ArtifactType.HTTP_REQUEST].captured_at
            <= artifacts[ArtifactType.HTTP_RESPONSE].captured_at
        )

    @pytest.mark.asyncio
    async def test_evidence_satisfies_detectors(self, make_executor, api):
        """Executor evidence never looks like missing or contradictory evidence."""
        executor = make_executor(api)
        outcome = await executor.execute(create_user_definition())

        result = await RedFlagDetector().detect(EPIC_ID, outcome.test, outcome.evidence)

        assert result.summary.critical == 0
        assert all(f.severity != Severity.HIGH for f in result.flags)

    @pytest.mark.asyncio
    async def test_unexpected_status_fails(self, make_executor):
        def server_error(request):
            return httpx.Response(500, text="Internal Server Error")

        executor = make_executor(server_error)
        definition = create_user_definition(side_effects=[], error_scenarios=[])

        run = await executor.run(definition)

        assert run.passed is False
        assert run.failures[0]["type"] == "validation_failed"
        assert "Expected 201, got 500" in run.failures[0]["description"]

    @pytest.mark.asyncio
    async def test_accepting_garbage_fails(self, make_executor):
        """An endpoint that accepts every mutated request fails its error scenarios."""

        def accept_everything(request):
            return httpx.Response(201, json={"id": 1, "email": "x", "name": "Ada"})

        executor = make_executor(accept_everything)
        run = await executor.run(create_user_definition(side_effects=[]))

        assert run.passed is False
        assert [f["type"] for f in run.failures] == ["error_scenario_failed"]

    @pytest.mark.asyncio
    async def test_missing_side_effect_fails(self, make_executor):
        def create_without_storing(request):
            if request.method == "GET":
                return httpx.Response(404)
            return httpx.Response(201, json={"id": 1, "email": "x", "name": "Ada"})

        executor = make_executor(create_without_storing)
        run = await executor.run(create_user_definition(error_scenarios=[]))

        assert run.passed is False
        assert run.side_effects[0].details == "Resource not found"

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, make_executor):
        api = UsersApi(fail_connections=2)
        # Side effect snapshot absorbs the first failure
        executor = make_executor(api, retries=3)

        run = await executor.run(create_user_definition(error_scenarios=[]))

        assert run.passed is True
        assert run.exchange.status_code == 201

    @pytest.mark.asyncio
    async def test_exhausted_retries_report_failure(self, make_executor):
        api = UsersApi(fail_connections=100)
        executor = make_executor(api, retries=2)
        definition = create_user_definition(side_effects=[], error_scenarios=[])

        outcome = await executor.execute(definition)

        assert api.calls == 2
        assert outcome.test.pass_fail == PassFail.FAIL
        artifacts = by_type(outcome.evidence)
        assert ArtifactType.HTTP_RESPONSE not in artifacts
        assert "ConnectError after 2 attempt(s)" in artifacts[ArtifactType.HTTP_REQUEST].metadata["error"]


class TestToolExecution:
    """Tests for tool definitions."""

    @pytest.mark.asyncio
    async def test_tool_call_evidence(self, make_executor):
        tools = FakeTools(result={"number": 7})
        executor = make_executor(tools=tools)

        outcome = await executor.execute(tool_definition())

        assert outcome.test.pass_fail == PassFail.PASS
        assert tools.calls == [("github", "create_issue", {"title": "Bug"})]
        artifacts = by_type(outcome.evidence)
        assert artifacts[ArtifactType.HTTP_REQUEST].metadata["url"] == "tool://github/create_issue"
        assert artifacts[ArtifactType.HTTP_RESPONSE].metadata["statusCode"] == 200
        assert artifacts[ArtifactType.MCP_TOOL_CALL].metadata["tool"] == "github::create_issue"
        assert artifacts[ArtifactType.TOOL_RESULT].metadata["result"] == {"number": 7}

    @pytest.mark.asyncio
    async def test_tool_error_fails(self, make_executor):
        executor = make_executor(tools=FakeTools(error="rate limited by upstream"))

        outcome = await executor.execute(tool_definition())

        assert outcome.test.pass_fail == PassFail.FAIL
        response = by_type(outcome.evidence)[ArtifactType.HTTP_RESPONSE]
        assert response.metadata["statusCode"] == 500

    @pytest.mark.asyncio
    async def test_result_schema_mismatch_fails(self, make_executor):
        executor = make_executor(tools=FakeTools(result={"id": "abc"}))
        run = await executor.run(tool_definition())
        assert run.passed is False
        assert run.validation[-1].type == "schema"

    @pytest.mark.asyncio
    async def test_transient_tool_failure_is_retried(self, make_executor):
        tools = FakeTools(result={"number": 7}, transient_failures=1)
        run = await make_executor(tools=tools).run(tool_definition())
        assert run.passed is True
        assert len(tools.calls) == 2

    @pytest.mark.asyncio
    async def test_no_tool_client(self, make_executor):
        run = await make_executor().run(tool_definition())
        assert run.passed is False
        assert "No tool client configured" in run.error_message
