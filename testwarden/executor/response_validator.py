"""Response validation for API and tool tests.

Each assertion in an ExpectedResponse becomes one ValidationRule, so a
failing test reports every broken expectation rather than the first one.
JSON schemas are checked with ``jsonschema``.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple, Union

import jsonschema
from jsonschema.exceptions import SchemaError

from testwarden.executor.errors import SchemaDefinitionError
from testwarden.executor.models import (
    ExpectedResponse,
    HttpExchange,
    ToolResponse,
    ValidationRule,
)

logger = logging.getLogger(__name__)


def status_matches(actual: int, expected: Union[int, str]) -> bool:
    """Exact code match, or class match for ``"2xx"`` style ranges."""
    if isinstance(expected, int):
        return actual == expected
    return str(actual)[:1] == expected[:1] and expected.endswith("xx")


class ResponseValidator:
    """Validates responses against expectations."""

    def __init__(self):
        self._validators: Dict[str, Any] = {}

    def validate_schema(
        self, data: Any, schema: Dict[str, Any]
    ) -> Tuple[bool, List[Dict[str, Any]]]:
        """Validate ``data`` against a JSON schema.

        Returns:
            Tuple of (valid, errors) where each error has path, message and validator

        Raises:
            SchemaDefinitionError: If the schema itself is invalid
        """
        validator = self._get_validator(schema)
        errors = [
            {
                "path": "$" + "".join(f"[{p!r}]" for p in error.absolute_path),
                "message": error.message,
                "validator": error.validator,
            }
            for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))
        ]
        logger.debug(f"Schema validation: {len(errors)} error(s)")
        return not errors, errors

    def _get_validator(self, schema: Dict[str, Any]):
        key = json.dumps(schema, sort_keys=True)
        if key not in self._validators:
            cls = jsonschema.validators.validator_for(schema)
            try:
                cls.check_schema(schema)
            except SchemaError as e:
                raise SchemaDefinitionError(f"Invalid JSON schema: {e.message}") from e
            self._validators[key] = cls(schema)
        return self._validators[key]

    def validate_http(
        self, response: HttpExchange, expected: ExpectedResponse
    ) -> List[ValidationRule]:
        rules: List[ValidationRule] = []

        if expected.status is not None:
            ok = status_matches(response.status_code, expected.status)
            rules.append(
                ValidationRule(
                    type="status_code",
                    passed=ok,
                    expected=expected.status,
                    actual=response.status_code,
                    message=(
                        "Status code matches expected"
                        if ok
                        else f"Expected {expected.status}, got {response.status_code}"
                    ),
                )
            )

        if expected.json_schema is not None:
            rules.append(self._schema_rule(response.body, expected.json_schema, "Response"))

        lowered = {k.lower(): v for k, v in response.headers.items()}
        for name, value in expected.headers.items():
            actual = lowered.get(name.lower())
            ok = actual == value
            rules.append(
                ValidationRule(
                    type="header",
                    passed=ok,
                    expected=value,
                    actual=actual if actual is not None else "Header not found",
                    message=f"Header {name} matches expected" if ok else f"Header {name} validation failed",
                )
            )
        for name, pattern in expected.header_patterns.items():
            actual = lowered.get(name.lower())
            ok = actual is not None and re.search(pattern, actual) is not None
            rules.append(
                ValidationRule(
                    type="header",
                    passed=ok,
                    expected=f"/{pattern}/",
                    actual=actual if actual is not None else "Header not found",
                    message=f"Header {name} matches /{pattern}/" if ok else f"Header {name} validation failed",
                )
            )

        if expected.body_contains:
            body_text = (
                response.body if isinstance(response.body, str) else json.dumps(response.body)
            )
            for text in expected.body_contains:
                found = text in body_text
                rules.append(
                    ValidationRule(
                        type="body_contains",
                        passed=found,
                        expected=f'Contains "{text}"',
                        actual="Found" if found else "Not found",
                        message=f'Body contains "{text}"' if found else f'Body does not contain "{text}"',
                    )
                )

        window = expected.response_time_ms
        if window is not None:
            elapsed = response.elapsed_ms
            ok = not (window.min_ms is not None and elapsed < window.min_ms) and not (
                window.max_ms is not None and elapsed > window.max_ms
            )
            rules.append(
                ValidationRule(
                    type="response_time",
                    passed=ok,
                    expected=f"{window.min_ms or 0}-{window.max_ms if window.max_ms is not None else 'unlimited'}ms",
                    actual=f"{elapsed:.0f}ms",
                    message=(
                        "Response time within expected range"
                        if ok
                        else f"Response time {elapsed:.0f}ms outside expected range"
                    ),
                )
            )

        passed = sum(1 for r in rules if r.passed)
        logger.info(f"Response validation: {passed}/{len(rules)} rule(s) passed")
        return rules

    def validate_tool(
        self, response: ToolResponse, schema: Optional[Dict[str, Any]] = None
    ) -> List[ValidationRule]:
        """A tool response must carry a result and no error; the schema is optional."""
        if response.error:
            return [
                ValidationRule(
                    type="tool_error",
                    passed=False,
                    expected="No error",
                    actual=f"Error: {response.error}",
                    message=f"Tool returned error: {response.error}",
                )
            ]
        if response.result is None:
            return [
                ValidationRule(
                    type="tool_result",
                    passed=False,
                    expected="Result object",
                    actual=None,
                    message="Tool response missing result",
                )
            ]

        rules = [
            ValidationRule(
                type="tool_result",
                passed=True,
                expected="Result object",
                actual=type(response.result).__name__,
                message="Tool returned a result",
            )
        ]
        if schema is not None:
            rules.append(self._schema_rule(response.result, schema, "Tool result"))
        return rules

    def _schema_rule(self, data: Any, schema: Dict[str, Any], subject: str) -> ValidationRule:
        valid, errors = self.validate_schema(data, schema)
        return ValidationRule(
            type="schema",
            passed=valid,
            expected="Valid JSON Schema",
            actual="Valid" if valid else "Invalid",
            message=(
                f"{subject} matches schema"
                if valid
                else "Schema validation failed: " + ", ".join(e["message"] for e in errors)
            ),
            details=errors or None,
        )

    @staticmethod
    def summarize(rules: List[ValidationRule]) -> str:
        if not rules:
            return "No validation rules applied"
        passed = sum(1 for r in rules if r.passed)
        if passed == len(rules):
            return f"All {len(rules)} validation rules passed"
        failed = "; ".join(f"{r.type}: {r.message}" for r in rules if not r.passed)
        return f"{passed}/{len(rules)} validation rules passed. Failed: {failed}"
