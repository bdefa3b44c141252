"""Best-effort readers for individual evidence artifacts.

Evidence arrives either as metadata recorded by the collector or as a file on
disk (JSON or plain text). Every reader here returns a typed summary, or None
when the artifact carries nothing it can interpret. Malformed input is logged
and never raised.
"""

import hashlib
import json
import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from testwarden.core.models import EvidenceArtifact
from testwarden.detection.base import read_artifact_text, resolve_artifact_path
from testwarden.detection.coverage_analyzer import CoverageData, parse_coverage
from testwarden.detection.inconsistent_evidence import SCREENSHOT_ERROR_MARKERS

logger = logging.getLogger(__name__)

CRITICAL_LOG_MARKERS = ("fatal", "uncaught", "unhandled rejection")
SLOW_REQUEST_MS = 1000
SIGNIFICANT_DOM_CHANGES = 10
PATTERN_PREFIX_LENGTH = 50

_ERROR_LINE = re.compile(r"\berror\b|\bexception\b|\bfatal\b|\buncaught\b", re.IGNORECASE)
_WARNING_LINE = re.compile(r"\bwarn(ing)?\b", re.IGNORECASE)


@dataclass
class ConsoleLogAnalysis:
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    has_uncaught_errors: bool = False
    critical_errors: List[str] = field(default_factory=list)
    repeated_patterns: List[str] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.error_count + self.warning_count + self.info_count

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("messages")
        return data


@dataclass
class HttpTraceAnalysis:
    request_count: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0
    slow_requests: int = 0
    auth_failures: int = 0
    server_errors: int = 0
    requests: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DomAnalysis:
    change_count: int = 0
    nodes_added: int = 0
    nodes_removed: int = 0
    significant_changes: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScreenshotAnalysis:
    """Heuristic screenshot reading based on naming and recorded metadata."""

    has_error_ui: bool = False
    has_success_ui: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _entry_level(entry: Dict[str, Any]) -> str:
    return str(entry.get("level") or entry.get("type") or "info").lower()


def _entries_from_lines(lines: List[str]) -> List[Dict[str, str]]:
    entries = []
    for line in lines:
        if not line.strip():
            continue
        if _ERROR_LINE.search(line):
            level = "error"
        elif _WARNING_LINE.search(line):
            level = "warning"
        else:
            level = "info"
        entries.append({"level": level, "message": line.strip()})
    return entries


class EvidenceAnalyzer:
    """Extracts facts from artifacts for integrity, cross-validation and skepticism.

    Args:
        evidence_dir: Base directory used to resolve relative artifact paths
    """

    def __init__(self, evidence_dir: Optional[str] = None):
        self.evidence_dir = Path(evidence_dir) if evidence_dir else None

    def resolve_path(self, artifact: EvidenceArtifact) -> Optional[Path]:
        return resolve_artifact_path(artifact, self.evidence_dir)

    def file_size(self, artifact: EvidenceArtifact) -> Optional[int]:
        path = self.resolve_path(artifact)
        if path is None:
            return None
        try:
            return path.stat().st_size
        except OSError as e:
            logger.debug(f"Could not stat artifact {path}: {e}")
            return None

    def load_json(self, artifact: EvidenceArtifact) -> Optional[Any]:
        content = read_artifact_text(artifact, self.evidence_dir)
        if content is None:
            return None
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Artifact {artifact.path} is not valid JSON: {e}")
            return None

    def content_hash(self, artifact: EvidenceArtifact) -> Optional[str]:
        """SHA-256 of the artifact file, or the hash recorded in its metadata."""
        recorded = artifact.meta("contentHash", "sha256", "hash")
        if recorded:
            return str(recorded)
        path = self.resolve_path(artifact)
        if path is None:
            return None
        try:
            return hashlib.sha256(path.read_bytes()).hexdigest()
        except OSError as e:
            logger.debug(f"Could not hash artifact {path}: {e}")
            return None

    def analyze_screenshot(self, artifact: EvidenceArtifact) -> ScreenshotAnalysis:
        name = (artifact.path or "").lower()
        has_error = any(marker in name for marker in SCREENSHOT_ERROR_MARKERS) or bool(
            artifact.meta("containsError", "errorText")
        )
        errors = []
        if has_error:
            errors.append(
                artifact.meta("errorText", default="Error indicator in screenshot name")
            )
        return ScreenshotAnalysis(
            has_error_ui=has_error,
            has_success_ui="success" in name,
            errors=[str(e) for e in errors],
        )

    def console_entries(self, artifact: EvidenceArtifact) -> Optional[List[Dict[str, Any]]]:
        """Console entries as ``{level, message}`` dicts from metadata or file."""
        entries = artifact.meta("entries", "logs")
        if isinstance(entries, list):
            return [e if isinstance(e, dict) else {"message": str(e)} for e in entries]

        lines = artifact.meta("lines")
        if isinstance(lines, list):
            return _entries_from_lines([str(line) for line in lines])

        content = artifact.meta("content")
        if content is None:
            content = read_artifact_text(artifact, self.evidence_dir)
        if content is None:
            return None

        if content.lstrip().startswith("["):
            try:
                parsed = json.loads(content)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [e if isinstance(e, dict) else {"message": str(e)} for e in parsed]
        return _entries_from_lines(content.splitlines())

    def analyze_console_logs(self, artifact: EvidenceArtifact) -> Optional[ConsoleLogAnalysis]:
        entries = self.console_entries(artifact)
        if entries is None:
            return None

        analysis = ConsoleLogAnalysis()
        seen: Dict[str, int] = {}
        for entry in entries:
            level = _entry_level(entry)
            message = str(entry.get("message") or entry.get("text") or "")
            analysis.messages.append(message)
            if level == "error":
                analysis.error_count += 1
                lowered = message.lower()
                if "uncaught" in lowered:
                    analysis.has_uncaught_errors = True
                if any(marker in lowered for marker in CRITICAL_LOG_MARKERS):
                    analysis.critical_errors.append(message)
            elif level in ("warning", "warn"):
                analysis.warning_count += 1
            else:
                analysis.info_count += 1
            prefix = message[:PATTERN_PREFIX_LENGTH]
            seen[prefix] = seen.get(prefix, 0) + 1

        analysis.repeated_patterns = [
            f'"{prefix}..." ({count}x)' for prefix, count in seen.items() if count > 1
        ]
        return analysis

    def analyze_http_traces(self, artifact: EvidenceArtifact) -> Optional[HttpTraceAnalysis]:
        """Summarize a network trace; None if it lists no individual requests."""
        requests = artifact.meta("requests")
        if requests is None:
            loaded = self.load_json(artifact) if artifact.path else None
            if isinstance(loaded, dict):
                loaded = loaded.get("requests")
            requests = loaded
        if not isinstance(requests, list):
            count = artifact.meta("requestCount")
            if isinstance(count, int):
                return HttpTraceAnalysis(request_count=count)
            return None

        analysis = HttpTraceAnalysis(request_count=len(requests))
        response_times = []
        for request in requests:
            if not isinstance(request, dict):
                continue
            status = request.get("statusCode", request.get("status"))
            if isinstance(status, int):
                if 400 <= status < 600:
                    analysis.failed_requests += 1
                if status in (401, 403):
                    analysis.auth_failures += 1
                if status >= 500:
                    analysis.server_errors += 1
            elapsed = request.get("responseTime")
            if isinstance(elapsed, (int, float)):
                response_times.append(elapsed)
                if elapsed > SLOW_REQUEST_MS:
                    analysis.slow_requests += 1
            if request.get("url"):
                analysis.requests.append(
                    (str(request.get("method", "GET")).upper(), str(request["url"]))
                )
        if response_times:
            analysis.average_response_time = sum(response_times) / len(response_times)
        return analysis

    def analyze_dom(self, artifact: EvidenceArtifact) -> Optional[DomAnalysis]:
        """DOM change summary from recorded mutations or before/after HTML."""
        changes = artifact.meta("changes", "mutations")
        if isinstance(changes, list):
            changes = len(changes)
        if isinstance(changes, (int, float)):
            count = int(changes)
            return DomAnalysis(
                change_count=count,
                nodes_added=int(artifact.meta("nodesAdded", default=0)),
                nodes_removed=int(artifact.meta("nodesRemoved", default=0)),
                significant_changes=count > SIGNIFICANT_DOM_CHANGES,
            )

        before = artifact.meta("before")
        after = artifact.meta("after")
        if isinstance(before, str) and isinstance(after, str):
            before_lines = before.splitlines()
            after_lines = after.splitlines()
            changed = sum(1 for a, b in zip(before_lines, after_lines) if a != b)
            changed += abs(len(after_lines) - len(before_lines))
            return DomAnalysis(
                change_count=changed,
                nodes_added=max(0, len(after_lines) - len(before_lines)),
                nodes_removed=max(0, len(before_lines) - len(after_lines)),
                significant_changes=changed > SIGNIFICANT_DOM_CHANGES,
            )
        return None

    def analyze_coverage(self, artifact: EvidenceArtifact) -> Optional[CoverageData]:
        return parse_coverage(artifact, self.evidence_dir)

    def _http_payload(self, artifact: EvidenceArtifact, *keys: str) -> Optional[Dict[str, Any]]:
        if any(key in artifact.metadata for key in keys):
            return dict(artifact.metadata)
        loaded = self.load_json(artifact) if artifact.path else None
        return loaded if isinstance(loaded, dict) else None

    def parse_http_request(self, artifact: EvidenceArtifact) -> Optional[Dict[str, Any]]:
        return self._http_payload(artifact, "method", "url")

    def parse_http_response(self, artifact: EvidenceArtifact) -> Optional[Dict[str, Any]]:
        return self._http_payload(artifact, "statusCode", "status", "body")
