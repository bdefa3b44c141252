"""Pydantic models for API and tool test definitions, plus execution records.

A definition describes one "http call" or "tool call" test: what to send,
what the response must look like, which side effects must be observable
afterwards, and which error scenarios the endpoint must reject.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from testwarden.core.models import TestType

_STATUS_RANGE = re.compile(r"^[1-5]xx$")


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class AuthType(str, Enum):
    BEARER = "bearer"
    API_KEY = "api_key"
    BASIC = "basic"
    NONE = "none"


class DefinitionKind(str, Enum):
    """What a definition exercises."""

    HTTP = "http"
    TOOL = "tool"


class SideEffectType(str, Enum):
    RESOURCE_CREATED = "resource_created"
    RESOURCE_MODIFIED = "resource_modified"
    RESOURCE_DELETED = "resource_deleted"
    STATE_CHANGED = "state_changed"


class SideEffectMethod(str, Enum):
    HTTP_GET = "http_get"
    TOOL_CALL = "tool_call"


class ErrorAction(str, Enum):
    """Request mutation applied by an error scenario."""

    REMOVE_FIELD = "remove_field"
    SET_FIELD = "set_field"
    INVALIDATE_FIELD = "invalidate_field"
    REMOVE_AUTH = "remove_auth"
    CORRUPT_JSON = "corrupt_json"
    INVALID_CONTENT_TYPE = "invalid_content_type"


FIELD_ACTIONS = frozenset(
    {ErrorAction.REMOVE_FIELD, ErrorAction.SET_FIELD, ErrorAction.INVALIDATE_FIELD}
)


class AuthConfig(BaseModel):
    """Credentials attached to a request. The value is never written to evidence."""

    type: AuthType = AuthType.BEARER
    value: str = ""
    header_name: Optional[str] = Field(
        default=None, description="Custom header for api_key auth (default X-API-Key)"
    )


class HttpRequestSpec(BaseModel):
    method: HttpMethod = HttpMethod.GET
    url: str = Field(..., min_length=1)
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    auth: Optional[AuthConfig] = None
    timeout: Optional[float] = Field(default=None, gt=0, description="Seconds")


class ToolCallSpec(BaseModel):
    server: str = Field(..., min_length=1, description="Tool namespace, e.g. 'github'")
    tool: str = Field(..., min_length=1)
    params: Dict[str, Any] = Field(default_factory=dict)

    @property
    def qualified_name(self) -> str:
        return f"{self.server}::{self.tool}"


class ResponseTimeWindow(BaseModel):
    min_ms: Optional[float] = Field(default=None, ge=0)
    max_ms: Optional[float] = Field(default=None, ge=0)


class ExpectedResponse(BaseModel):
    """Assertions applied to the response.

    ``status`` is an exact code or a class such as ``"2xx"``. ``headers`` are
    compared exactly, ``header_patterns`` are regular expressions.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: Optional[Union[int, str]] = None
    json_schema: Optional[Dict[str, Any]] = Field(default=None, alias="schema")
    headers: Dict[str, str] = Field(default_factory=dict)
    header_patterns: Dict[str, str] = Field(default_factory=dict)
    body_contains: List[str] = Field(default_factory=list)
    response_time_ms: Optional[ResponseTimeWindow] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if isinstance(v, str) and not _STATUS_RANGE.match(v):
            raise ValueError(f"Invalid status '{v}'. Use a code or a range like '2xx'")
        return v

    @field_validator("body_contains", mode="before")
    @classmethod
    def listify_body_contains(cls, v):
        if isinstance(v, str):
            return [v]
        return v


class SideEffectSpec(BaseModel):
    """An observable change the test must cause."""

    type: SideEffectType
    description: str = ""
    method: SideEffectMethod = SideEffectMethod.HTTP_GET
    url: Optional[str] = None
    tool_call: Optional[ToolCallSpec] = None
    expected_result: Any = None

    @model_validator(mode="after")
    def validate_target(self):
        if self.method == SideEffectMethod.HTTP_GET and not self.url:
            raise ValueError("url required when method=http_get")
        if self.method == SideEffectMethod.TOOL_CALL and self.tool_call is None:
            raise ValueError("tool_call required when method=tool_call")
        return self


class ErrorScenario(BaseModel):
    """A mutated request the endpoint is expected to reject."""

    description: str = ""
    action: ErrorAction
    field: Optional[str] = None
    value: Any = None
    expected_status: Optional[Union[int, List[int]]] = None
    expected_message: Optional[str] = Field(
        default=None, description="Regular expression searched in the response body"
    )

    @model_validator(mode="after")
    def validate_field(self):
        if self.action in FIELD_ACTIONS and not self.field:
            raise ValueError(f"field required for action={self.action.value}")
        return self

    @property
    def expected_statuses(self) -> List[int]:
        if self.expected_status is None:
            return []
        if isinstance(self.expected_status, int):
            return [self.expected_status]
        return list(self.expected_status)


class ApiTestDefinition(BaseModel):
    """One API or tool test."""

    id: str = Field(..., min_length=1)
    epic_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    kind: DefinitionKind = DefinitionKind.HTTP
    http_request: Optional[HttpRequestSpec] = None
    tool_call: Optional[ToolCallSpec] = None
    expected_response: ExpectedResponse = Field(default_factory=ExpectedResponse)
    side_effects: List[SideEffectSpec] = Field(default_factory=list)
    error_scenarios: List[ErrorScenario] = Field(default_factory=list)
    timeout: Optional[float] = Field(default=None, gt=0, description="Seconds")
    retries: Optional[int] = Field(default=None, ge=1, le=10)
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_kind(self):
        if self.kind == DefinitionKind.HTTP and self.http_request is None:
            raise ValueError("http_request required when kind=http")
        if self.kind == DefinitionKind.TOOL and self.tool_call is None:
            raise ValueError("tool_call required when kind=tool")
        return self

    @property
    def test_type(self) -> TestType:
        return TestType.API


@dataclass
class ValidationRule:
    """Outcome of one response assertion."""

    type: str
    passed: bool
    expected: Any = None
    actual: Any = None
    message: str = ""
    details: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "passed": self.passed,
            "expected": self.expected,
            "actual": self.actual,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class HttpExchange:
    """A sent request and the response it received."""

    method: str
    url: str
    request_headers: Dict[str, str]
    request_body: Any
    status_code: int
    reason: str
    headers: Dict[str, str]
    body: Any
    raw_body: str
    elapsed_ms: float

    def request_log(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "url": self.url,
            "headers": self.request_headers,
            "body": self.request_body,
        }

    def response_log(self) -> Dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "statusText": self.reason,
            "headers": self.headers,
            "body": self.body,
            "responseTimeMs": round(self.elapsed_ms, 2),
        }


@dataclass
class ToolResponse:
    server: str
    tool: str
    params: Dict[str, Any]
    result: Any = None
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def qualified_name(self) -> str:
        return f"{self.server}::{self.tool}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool": self.qualified_name,
            "server": self.server,
            "toolName": self.tool,
            "params": self.params,
            "result": self.result,
            "error": self.error,
            "executionTimeMs": round(self.elapsed_ms, 2),
        }


@dataclass
class SideEffectResult:
    type: SideEffectType
    description: str
    passed: bool
    before: Any = None
    after: Any = None
    change_detected: Optional[bool] = None
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "description": self.description,
            "passed": self.passed,
            "before": self.before,
            "after": self.after,
            "change_detected": self.change_detected,
            "details": self.details,
        }


@dataclass
class ErrorScenarioResult:
    scenario: ErrorScenario
    passed: bool
    actual_status: Optional[int] = None
    actual_message: Optional[str] = None
    error: Optional[str] = None
    request: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario.model_dump(mode="json"),
            "passed": self.passed,
            "actual_status": self.actual_status,
            "actual_message": self.actual_message,
            "error": self.error,
            "request": self.request,
        }
