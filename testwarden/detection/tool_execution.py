"""Tool execution detector.

A test that names a tool (``namespace::tool``, or the legacy
``mcp__namespace__tool`` form) in its name or description claims that tool
was called. The claim is checked against the ``mcp_tool_call`` evidence:

- expected tool never called -> critical
- a different tool from the same namespace called instead -> critical,
  naming both tools
- tools called but no ``tool_result`` evidence recorded -> critical
"""

import logging
import re
from typing import Any, Dict, List, Optional

from testwarden.core.models import (
    ArtifactType,
    EvidenceArtifact,
    FlagType,
    RedFlag,
    Severity,
    TestResult,
    find_artifact,
)
from testwarden.detection.base import Detector

logger = logging.getLogger(__name__)

_NAMESPACED_TOOL = re.compile(r"\b([a-z0-9_\-]+)::([a-z0-9_\-]+)", re.IGNORECASE)
_LEGACY_TOOL = re.compile(r"\bmcp__([a-z0-9\-]+)__([a-z0-9_\-]+)", re.IGNORECASE)


def normalize_tool(name: str, namespace: Optional[str] = None) -> str:
    """Normalize a tool identifier to lower-case ``namespace::tool``."""
    name = name.strip().lower()
    legacy = _LEGACY_TOOL.fullmatch(name)
    if legacy:
        return f"{legacy.group(1)}::{legacy.group(2)}"
    if "::" in name or not namespace:
        return name
    return f"{namespace.strip().lower()}::{name}"


def tool_namespace(tool: str) -> Optional[str]:
    namespace, sep, _ = tool.partition("::")
    return namespace if sep else None


def extract_expected_tools(*texts: Optional[str]) -> List[str]:
    """Tool identifiers referenced in the given texts, de-duplicated in order."""
    tools: List[str] = []
    for text in texts:
        if not text:
            continue
        for match in _LEGACY_TOOL.finditer(text):
            tools.append(f"{match.group(1).lower()}::{match.group(2).lower()}")
        for match in _NAMESPACED_TOOL.finditer(text):
            tools.append(f"{match.group(1).lower()}::{match.group(2).lower()}")
    return list(dict.fromkeys(tools))


def extract_actual_tools(artifact: EvidenceArtifact) -> List[str]:
    """Tools recorded in an ``mcp_tool_call`` artifact."""
    metadata: Dict[str, Any] = artifact.metadata
    namespace = metadata.get("server") or metadata.get("namespace")

    calls = metadata.get("toolCalls")
    if isinstance(calls, list):
        tools = []
        for call in calls:
            if isinstance(call, dict) and call.get("tool"):
                tools.append(
                    normalize_tool(
                        str(call["tool"]),
                        call.get("server") or call.get("namespace") or namespace,
                    )
                )
        return list(dict.fromkeys(tools))

    tool = metadata.get("tool") or metadata.get("toolName")
    if tool:
        return [normalize_tool(str(tool), namespace)]
    return []


class ToolExecutionDetector(Detector):
    """Flags passing tests whose claimed tool calls are not backed by evidence."""

    name = "tool_execution"
    flag_type = FlagType.TOOL_EXECUTION

    async def _scan(
        self, epic_id: str, test: TestResult, evidence: List[EvidenceArtifact]
    ) -> List[RedFlag]:
        flags: List[RedFlag] = []
        expected = extract_expected_tools(test.name, test.description)
        call_artifact = find_artifact(evidence, ArtifactType.MCP_TOOL_CALL)
        actual = extract_actual_tools(call_artifact) if call_artifact else []
        evidence_id = call_artifact.id if call_artifact else None

        if expected:
            missing = [tool for tool in expected if tool not in actual]
            unexpected = [tool for tool in actual if tool not in expected]

            substitutions = []
            for tool in missing:
                namespace = tool_namespace(tool)
                replacement = next(
                    (
                        called
                        for called in unexpected
                        if namespace and tool_namespace(called) == namespace
                    ),
                    None,
                )
                if replacement is not None:
                    substitutions.append((tool, replacement))
                    unexpected.remove(replacement)

            # Same-namespace matches first, then any leftover call
            for tool in missing:
                if not unexpected:
                    break
                if any(expected_tool == tool for expected_tool, _ in substitutions):
                    continue
                substitutions.append((tool, unexpected.pop(0)))

            substituted = {expected_tool for expected_tool, _ in substitutions}
            not_called = [tool for tool in missing if tool not in substituted]

            for expected_tool, called in substitutions:
                flags.append(
                    self._flag(
                        epic_id,
                        test,
                        Severity.CRITICAL,
                        f'Test "{test.name}" called wrong tools: {called} instead of {expected_tool}',
                        {
                            "expectedTools": expected,
                            "actualTools": actual,
                            "wrongToolCalled": {"actual": called, "expected": expected_tool},
                        },
                        evidence_id,
                    )
                )

            if not_called:
                flags.append(
                    self._flag(
                        epic_id,
                        test,
                        Severity.CRITICAL,
                        f'Test "{test.name}" passed but expected tools not called: '
                        f"{', '.join(not_called)}",
                        {
                            "expectedTools": expected,
                            "actualTools": actual,
                            "missingTools": not_called,
                        },
                        evidence_id,
                    )
                )

        if actual and find_artifact(evidence, ArtifactType.TOOL_RESULT) is None:
            flags.append(
                self._flag(
                    epic_id,
                    test,
                    Severity.CRITICAL,
                    f'Test "{test.name}" called tools but no tool result evidence collected',
                    {"actualTools": actual, "missingArtifacts": [ArtifactType.TOOL_RESULT.value]},
                    evidence_id,
                )
            )

        return flags
