"""Evidence-producing executor for API and tool tests."""

from testwarden.executor.api_executor import APITestExecutor, ApiTestRun
from testwarden.executor.error_scenarios import ErrorScenarioTester, mutate_request
from testwarden.executor.errors import (
    ApiTestError,
    SchemaDefinitionError,
    ToolExecutionError,
    ToolTransientError,
)
from testwarden.executor.models import (
    ApiTestDefinition,
    DefinitionKind,
    ErrorScenario,
    ExpectedResponse,
    HttpRequestSpec,
    SideEffectSpec,
    ToolCallSpec,
)
from testwarden.executor.response_validator import ResponseValidator
from testwarden.executor.side_effects import SideEffectVerifier
from testwarden.executor.tools import ToolClient

__all__ = [
    "APITestExecutor",
    "ApiTestRun",
    "ErrorScenarioTester",
    "mutate_request",
    "ApiTestError",
    "SchemaDefinitionError",
    "ToolExecutionError",
    "ToolTransientError",
    "ApiTestDefinition",
    "DefinitionKind",
    "ErrorScenario",
    "ExpectedResponse",
    "HttpRequestSpec",
    "SideEffectSpec",
    "ToolCallSpec",
    "ResponseValidator",
    "SideEffectVerifier",
    "ToolClient",
]
