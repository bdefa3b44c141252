"""Markdown and JSON reports for red flag detection results."""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from testwarden.core.models import (
    SEVERITY_ORDER,
    DetectionResult,
    RedFlag,
    Severity,
    Verdict,
)

logger = logging.getLogger(__name__)

VERDICT_EMOJI = {
    Verdict.PASS: "✅",
    Verdict.FAIL: "❌",
    Verdict.REVIEW: "⚠️",
}

SEVERITY_EMOJI = {
    Severity.CRITICAL: "🔴",
    Severity.HIGH: "🟠",
    Severity.MEDIUM: "🟡",
    Severity.LOW: "🔵",
}

SEVERITY_POLICY = {
    Severity.CRITICAL: "auto-fail",
    Severity.HIGH: "manual review",
    Severity.MEDIUM: "log for analysis",
    Severity.LOW: "informational",
}

REPORT_FORMATS = ("markdown", "json", "both")

_TABLE_ROW = re.compile(r"^\|\s*\**([A-Za-z]+)\**\s*\|\s*\**(\d+)\**\s*\|")


def timestamp_slug(moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def parse_summary_table(markdown: str) -> Dict[str, int]:
    """Read the severity counts back out of a generated report.

    Returns:
        Mapping with keys total, critical, high, medium, low
    """
    counts: Dict[str, int] = {}
    in_summary = False
    for line in markdown.splitlines():
        if line.startswith("## "):
            in_summary = line.strip() == "## Summary"
            continue
        if not in_summary:
            continue
        match = _TABLE_ROW.match(line.strip())
        if match:
            counts[match.group(1).lower()] = int(match.group(2))
    return counts


class RedFlagReporter:
    """Renders detection results for humans (markdown) and machines (JSON)."""

    def generate_markdown(self, result: DetectionResult) -> str:
        lines: List[str] = [
            "# Red Flag Detection Report",
            "",
            f"**Epic:** {result.epic_id}",
            f"**Test:** {result.test_id}",
            f"**Generated:** {result.generated_at.isoformat()}",
            "",
            f"## Verdict: {VERDICT_EMOJI[result.verdict]} {result.verdict.value.upper()}",
            "",
            result.recommendation,
            "",
            "## Summary",
            "",
            "| Severity | Count | Policy |",
            "|----------|-------|--------|",
        ]
        for severity in SEVERITY_ORDER:
            lines.append(
                f"| {severity.value.capitalize()} | {result.summary.count(severity)} "
                f"| {SEVERITY_POLICY[severity]} |"
            )
        lines.append(f"| **Total** | {result.summary.total} | |")
        lines.append("")

        if not result.flags:
            lines.extend(["## ✅ No Red Flags Detected", "", "All checks passed successfully.", ""])
            return "\n".join(lines)

        lines.extend(["## Detected Red Flags", ""])
        for severity in SEVERITY_ORDER:
            group = [flag for flag in result.flags if flag.severity == severity]
            if not group:
                continue
            lines.append(f"### {SEVERITY_EMOJI[severity]} {severity.value.upper()} ({len(group)})")
            lines.append("")
            for flag in group:
                lines.extend(self._flag_section(flag))
        return "\n".join(lines)

    def _flag_section(self, flag: RedFlag) -> List[str]:
        section = [
            f"#### {flag.flag_type.value.replace('_', ' ').upper()}",
            "",
            f"**Description:** {flag.description}",
            "",
            f"**Detected At:** {flag.detected_at.isoformat()}",
            "",
            "**Proof:**",
            "```json",
            json.dumps(flag.proof, indent=2, default=str),
            "```",
            "",
        ]
        if flag.resolved:
            section.append(f"**Resolution:** {flag.resolution_notes or ''}")
            if flag.resolved_at:
                section.append(f"**Resolved At:** {flag.resolved_at.isoformat()}")
            section.append("")
        return section

    def generate_json(self, result: DetectionResult) -> str:
        return json.dumps(result.to_dict(), indent=2, default=str)

    def generate_batch_markdown(self, results: Sequence[DetectionResult]) -> str:
        """One report covering every test of a batch."""
        verdicts = {verdict: 0 for verdict in Verdict}
        totals = {severity: 0 for severity in Severity}
        for result in results:
            verdicts[result.verdict] += 1
            for severity in Severity:
                totals[severity] += result.summary.count(severity)

        lines = [
            "# Batch Red Flag Detection Report",
            "",
            f"**Generated:** {datetime.now(timezone.utc).isoformat()}",
            f"**Total Tests:** {len(results)}",
            "",
            "## Overall Summary",
            "",
            f"- ✅ **Passed:** {verdicts[Verdict.PASS]}",
            f"- ❌ **Failed:** {verdicts[Verdict.FAIL]}",
            f"- ⚠️  **Review Required:** {verdicts[Verdict.REVIEW]}",
            "",
            "## Summary",
            "",
            "| Severity | Count | Policy |",
            "|----------|-------|--------|",
        ]
        for severity in SEVERITY_ORDER:
            lines.append(
                f"| {severity.value.capitalize()} | {totals[severity]} | {SEVERITY_POLICY[severity]} |"
            )
        lines.append(f"| **Total** | {sum(totals.values())} | |")
        lines.extend(["", "## Test Results", ""])

        for result in results:
            s = result.summary
            lines.extend(
                [
                    f"### {VERDICT_EMOJI[result.verdict]} Test: {result.test_id}",
                    "",
                    f"**Verdict:** {result.verdict.value.upper()}",
                    f"**Flags:** {s.total} (C:{s.critical}, H:{s.high}, M:{s.medium}, L:{s.low})",
                    "",
                    result.recommendation,
                    "",
                ]
            )
        return "\n".join(lines)

    def save_report(
        self, result: DetectionResult, output_dir: str, fmt: str = "both"
    ) -> Dict[str, Path]:
        """Write the report to ``red-flags-{epic}-{test}-{timestamp}.md/.json``.

        Returns:
            Mapping of format name ("markdown", "json") to written path

        Raises:
            ValueError: If fmt is not markdown, json or both
        """
        if fmt not in REPORT_FORMATS:
            raise ValueError(f"Invalid report format '{fmt}'. Valid formats: {', '.join(REPORT_FORMATS)}")

        directory = Path(output_dir)
        directory.mkdir(parents=True, exist_ok=True)
        base = f"red-flags-{result.epic_id}-{result.test_id}-{timestamp_slug()}"

        written: Dict[str, Path] = {}
        if fmt in ("markdown", "both"):
            path = directory / f"{base}.md"
            path.write_text(self.generate_markdown(result), encoding="utf-8")
            written["markdown"] = path
        if fmt in ("json", "both"):
            path = directory / f"{base}.json"
            path.write_text(self.generate_json(result), encoding="utf-8")
            written["json"] = path

        logger.info(f"Saved red flag report for {result.test_id} to {directory}")
        return written
