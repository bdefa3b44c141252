"""Negative-case testing.

Each scenario mutates the declared request (drops a field, breaks the JSON,
strips auth, ...) and asserts the endpoint rejects it with the expected status
and message. An endpoint that accepts garbage fails the test even if the happy
path passed.
"""

import copy
import logging
import re
from typing import Any, Dict, List, Sequence

import httpx

from testwarden.executor.http_client import (
    auth_headers,
    redact_headers,
    resolve_url,
    send,
)
from testwarden.executor.models import (
    ErrorAction,
    ErrorScenario,
    ErrorScenarioResult,
    HttpRequestSpec,
)

logger = logging.getLogger(__name__)

INVALID_VALUE = "\x00<invalid>\x00"


def _content_type_key(headers: Dict[str, str]) -> str:
    for key in headers:
        if key.lower() == "content-type":
            return key
    return "Content-Type"


def mutate_request(spec: HttpRequestSpec, scenario: ErrorScenario) -> Dict[str, Any]:
    """Apply a scenario's mutation to a copy of the request.

    Returns:
        Dict with method, url, headers, body and content (raw bytes or None)
    """
    headers = {**spec.headers, **auth_headers(spec.auth)}
    body = copy.deepcopy(spec.body)
    content = None
    action = scenario.action

    if action in (ErrorAction.REMOVE_FIELD, ErrorAction.SET_FIELD, ErrorAction.INVALIDATE_FIELD):
        body = dict(body) if isinstance(body, dict) else {}
        if action == ErrorAction.REMOVE_FIELD:
            body.pop(scenario.field, None)
        elif action == ErrorAction.SET_FIELD:
            body[scenario.field] = scenario.value
        else:
            original = body.get(scenario.field)
            # Swap the value for one of an incompatible type
            body[scenario.field] = INVALID_VALUE if not isinstance(original, str) else 12345
    elif action == ErrorAction.REMOVE_AUTH:
        for name in auth_headers(spec.auth):
            headers.pop(name, None)
        headers = {k: v for k, v in headers.items() if k.lower() != "authorization"}
    elif action == ErrorAction.CORRUPT_JSON:
        headers[_content_type_key(headers)] = "application/json"
        content = b'{"corrupted": '
    elif action == ErrorAction.INVALID_CONTENT_TYPE:
        headers[_content_type_key(headers)] = "text/plain"
        content = str(body if body is not None else "plain text").encode("utf-8")

    return {
        "method": spec.method.value,
        "url": spec.url,
        "headers": headers,
        "body": body,
        "content": content,
    }


class ErrorScenarioTester:
    """Runs error scenarios against the declared request.

    Args:
        client: HTTP client
        base_url: Prefix for relative request URLs
        timeout: Per-request timeout in seconds
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str = "", timeout: float = 30.0):
        self.client = client
        self.base_url = base_url
        self.timeout = timeout

    async def run(self, spec: HttpRequestSpec, scenario: ErrorScenario) -> ErrorScenarioResult:
        mutated = mutate_request(spec, scenario)
        url = resolve_url(mutated["url"], self.base_url)
        request_log = {
            "method": mutated["method"],
            "url": url,
            "headers": redact_headers(mutated["headers"], spec.auth),
            "body": mutated["body"] if mutated["content"] is None else mutated["content"].decode(),
        }
        result = ErrorScenarioResult(scenario=scenario, passed=False, request=request_log)

        try:
            exchange = await send(
                self.client,
                mutated["method"],
                url,
                headers=mutated["headers"],
                body=mutated["body"],
                content=mutated["content"],
                timeout=spec.timeout or self.timeout,
            )
        except httpx.HTTPError as e:
            result.error = f"{type(e).__name__}: {e}"
            logger.warning(f"Error scenario '{scenario.description}' could not be sent: {e}")
            return result

        result.actual_status = exchange.status_code
        result.actual_message = exchange.raw_body[:500]

        expected = scenario.expected_statuses
        status_ok = (
            exchange.status_code in expected if expected else exchange.status_code >= 400
        )
        message_ok = scenario.expected_message is None or bool(
            re.search(scenario.expected_message, exchange.raw_body)
        )
        result.passed = status_ok and message_ok
        if not result.passed:
            logger.warning(
                f"Error scenario '{scenario.description}' failed: "
                f"status {exchange.status_code}, expected {expected or '>= 400'}"
            )
        return result

    async def run_all(
        self, spec: HttpRequestSpec, scenarios: Sequence[ErrorScenario]
    ) -> List[ErrorScenarioResult]:
        return [await self.run(spec, scenario) for scenario in scenarios]

    @staticmethod
    def summarize(results: List[ErrorScenarioResult]) -> str:
        if not results:
            return "No error scenarios"
        passed = sum(1 for r in results if r.passed)
        if passed == len(results):
            return f"All {len(results)} error scenarios rejected as expected"
        failed = ", ".join(
            r.scenario.description or r.scenario.action.value for r in results if not r.passed
        )
        return f"{passed}/{len(results)} error scenarios rejected. Failed: {failed}"


def error_scenario_report(results: List[ErrorScenarioResult]) -> Dict[str, Any]:
    return {
        "passed": all(r.passed for r in results),
        "summary": ErrorScenarioTester.summarize(results),
        "results": [r.to_dict() for r in results],
    }
