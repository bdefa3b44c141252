"""Side-effect verification.

Every declared side effect is snapshotted before the test runs and checked
afterwards, so a test that claims to create, modify or delete something has
to leave an observable difference behind.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from testwarden.executor.errors import ToolTransientError
from testwarden.executor.http_client import resolve_url, send
from testwarden.executor.models import (
    SideEffectMethod,
    SideEffectResult,
    SideEffectSpec,
    SideEffectType,
)
from testwarden.executor.tools import ToolClient, invoke_tool

logger = logging.getLogger(__name__)

SNAPSHOT_TIMEOUT = 5.0


@dataclass
class Observation:
    """What a snapshot call saw."""

    exists: bool
    value: Any = None
    status: Optional[int] = None


class SideEffectVerifier:
    """Takes before/after snapshots of declared side effects.

    Args:
        client: HTTP client used for ``http_get`` snapshots
        tools: Tool client used for ``tool_call`` snapshots
        base_url: Prefix for relative snapshot URLs
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        tools: Optional[ToolClient] = None,
        base_url: str = "",
    ):
        self.client = client
        self.tools = tools
        self.base_url = base_url

    async def observe(self, effect: SideEffectSpec) -> Observation:
        if effect.method == SideEffectMethod.HTTP_GET:
            exchange = await send(
                self.client,
                "GET",
                resolve_url(effect.url or "", self.base_url),
                timeout=SNAPSHOT_TIMEOUT,
            )
            exists = 200 <= exchange.status_code < 400
            return Observation(exists, exchange.body if exists else None, exchange.status_code)

        if self.tools is None:
            raise ValueError(f"No tool client configured for side effect '{effect.description}'")
        response = await invoke_tool(self.tools, effect.tool_call)
        exists = response.error is None and bool(response.result)
        return Observation(exists, response.result if exists else None)

    async def snapshot_all(self, effects: Sequence[SideEffectSpec]) -> List[Optional[Observation]]:
        """Before snapshots, one per effect; a failed snapshot is recorded as None."""
        snapshots: List[Optional[Observation]] = []
        for effect in effects:
            try:
                snapshots.append(await self.observe(effect))
            except (httpx.HTTPError, ToolTransientError, ValueError) as e:
                logger.warning(f"Before snapshot failed for side effect '{effect.description}': {e}")
                snapshots.append(None)
        return snapshots

    async def verify(
        self, effect: SideEffectSpec, before: Optional[Observation] = None
    ) -> SideEffectResult:
        result = SideEffectResult(
            type=effect.type,
            description=effect.description,
            passed=False,
            before=before.value if before else None,
        )
        try:
            after = await self.observe(effect)
        except (httpx.HTTPError, ToolTransientError, ValueError) as e:
            result.details = f"Verification error: {e}"
            logger.error(f"Side effect '{effect.description}' could not be checked: {e}")
            return result

        result.after = after.value
        if before is not None:
            result.change_detected = (before.exists, before.value) != (after.exists, after.value)

        if effect.type == SideEffectType.RESOURCE_CREATED:
            result.passed = after.exists and (
                effect.expected_result is None or after.value == effect.expected_result
            )
            result.details = "Resource found" if after.exists else "Resource not found"
        elif effect.type == SideEffectType.RESOURCE_DELETED:
            if effect.method == SideEffectMethod.HTTP_GET:
                result.passed = after.status == 404
            else:
                result.passed = not after.exists
            result.details = "Resource gone" if result.passed else "Resource still present"
        elif effect.type == SideEffectType.RESOURCE_MODIFIED:
            if not after.exists:
                result.details = "Resource not found"
            elif effect.expected_result is not None:
                result.passed = after.value == effect.expected_result
                result.details = "Matches expected result" if result.passed else "Differs from expected result"
            elif before is not None and before.exists:
                result.passed = before.value != after.value
                result.details = "Modification observed" if result.passed else "Resource unchanged"
            else:
                result.passed = True
                result.details = "Resource present; no before snapshot to compare"
        else:
            if effect.expected_result is not None:
                result.passed = after.value == effect.expected_result
            else:
                result.passed = bool(result.change_detected)
            result.details = "State changed" if result.passed else "No state change observed"

        if result.passed:
            logger.info(f"Side effect verified: {effect.type.value}")
        else:
            logger.warning(f"Side effect failed: {effect.type.value} ({effect.description})")
        return result

    async def verify_all(
        self,
        effects: Sequence[SideEffectSpec],
        before: Sequence[Optional[Observation]],
    ) -> List[SideEffectResult]:
        results = []
        for effect, snapshot in zip(effects, before):
            results.append(await self.verify(effect, snapshot))
        return results

    @staticmethod
    def summarize(results: List[SideEffectResult]) -> str:
        if not results:
            return "No side effects to verify"
        passed = sum(1 for r in results if r.passed)
        if passed == len(results):
            return f"All {len(results)} side effects verified successfully"
        failed = ", ".join(r.description or r.type.value for r in results if not r.passed)
        return f"{passed}/{len(results)} side effects verified. Failed: {failed}"


def side_effect_report(results: List[SideEffectResult]) -> Dict[str, Any]:
    return {
        "passed": all(r.passed for r in results),
        "summary": SideEffectVerifier.summarize(results),
        "results": [r.to_dict() for r in results],
    }
