"""Plain-language verification reports.

Builds the summary, reasoning sections and recommendations attached to a
VerificationResult, and exports markdown/JSON files named
``verification-{epic}-{test}-{timestamp}``.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List

from testwarden.detection.reporter import REPORT_FORMATS, timestamp_slug
from testwarden.verification.types import Recommendation, VerificationResult

logger = logging.getLogger(__name__)

RECOMMENDATION_LABELS = {
    Recommendation.ACCEPT: "✅ ACCEPT",
    Recommendation.MANUAL_REVIEW: "⚠️ MANUAL REVIEW",
    Recommendation.REJECT: "❌ REJECT",
}


class VerificationReporter:
    """Explains a verification result to humans."""

    def build_summary(self, result: VerificationResult) -> str:
        if result.verified:
            return (
                f"Test {result.test_id} VERIFIED with {result.confidence_score}% confidence. "
                f"Evidence supports the reported outcome."
            )
        if result.recommendation == Recommendation.MANUAL_REVIEW:
            return (
                f"Test {result.test_id} requires MANUAL REVIEW "
                f"({result.confidence_score}% confidence). Evidence is inconclusive."
            )
        return (
            f"Test {result.test_id} REJECTED with {result.confidence_score}% confidence. "
            f"Evidence does not support the reported outcome."
        )

    def build_reasoning(self, result: VerificationResult) -> List[str]:
        review = result.evidence_review
        sections = [
            "## Evidence Review",
            f"- Screenshots: {review.screenshots}",
            f"- Logs: {review.logs}",
            f"- Traces: {review.traces}",
            f"- Coverage: {'yes' if review.coverage else 'no'}",
            f"- DOM snapshot: {'yes' if review.dom else 'no'}",
            f"- Total artifacts: {review.total_artifacts}",
        ]
        if review.missing_artifacts:
            sections.append(f"- Missing: {', '.join(review.missing_artifacts)}")

        integrity = result.integrity
        sections.append("## Integrity Checks")
        sections.append(f"- Result: {'passed' if integrity.passed else 'FAILED'}")
        sections.extend(
            f"- {name}: {'ok' if ok else 'FAILED'}" for name, ok in integrity.checks.items()
        )
        sections.extend(f"- Error: {error}" for error in integrity.errors)
        sections.extend(f"- Warning: {warning}" for warning in integrity.warnings)

        sections.append("## Cross-Validation")
        if not result.cross_validation:
            sections.append("- No cross-validation checks applicable")
        for check in result.cross_validation:
            marker = "✓" if check.matched else "✗"
            severity = f" [{check.severity.value}]" if check.severity else ""
            sections.append(f"- {marker} {check.check}{severity}: {check.description}")

        flags = result.red_flags
        sections.append("## Red Flags")
        sections.append(
            f"- Total: {flags.total} (critical {flags.critical}, high {flags.high}, "
            f"medium {flags.medium}, low {flags.low})"
        )
        sections.extend(f"- {description}" for description in flags.descriptions)

        sections.append("## Suspicious Patterns")
        if not result.skeptical_analysis.patterns:
            sections.append("- None detected")
        for pattern in result.skeptical_analysis.patterns:
            sections.append(
                f"- [{pattern.severity.value}] {pattern.pattern}: {pattern.description}"
            )

        confidence = result.confidence
        sections.append("## Confidence Breakdown")
        sections.extend(f"- {name}: {value}" for name, value in confidence.factors.to_dict().items())
        sections.append(f"- Explanation: {confidence.explanation}")
        return sections

    def build_recommendations(self, result: VerificationResult) -> List[str]:
        recommendations: List[str] = []
        if result.verified:
            recommendations.append("Accept the test result.")
        elif result.recommendation == Recommendation.MANUAL_REVIEW:
            recommendations.append("Have a human reviewer inspect the evidence before accepting.")
        else:
            recommendations.append("Reject the test result and re-run at a higher capability tier.")

        if result.evidence_review.missing_artifacts:
            recommendations.append(
                f"Collect missing evidence: {', '.join(result.evidence_review.missing_artifacts)}"
            )
        for check in result.mismatches:
            recommendations.append(f"Investigate {check.check}: {check.description}")
        if result.red_flags.critical or result.red_flags.high:
            recommendations.append("Resolve outstanding high and critical red flags.")
        if result.skeptical_analysis.recommend_manual_review and result.verified:
            recommendations.append("High-severity suspicious patterns found; spot-check manually.")
        return recommendations

    def annotate(self, result: VerificationResult) -> VerificationResult:
        """Fill in summary, reasoning and recommendations on ``result``."""
        result.summary = self.build_summary(result)
        result.reasoning = self.build_reasoning(result)
        result.recommendations = self.build_recommendations(result)
        return result

    def generate_markdown(self, result: VerificationResult) -> str:
        lines = [
            "# Verification Report",
            "",
            f"**Epic:** {result.epic_id}",
            f"**Test:** {result.test_id}",
            f"**Verifier:** {result.verifier_model}",
            f"**Verified At:** {result.verified_at.isoformat()}",
            "",
            f"## Recommendation: {RECOMMENDATION_LABELS[result.recommendation]}",
            "",
            f"**Verified:** {'yes' if result.verified else 'no'}",
            f"**Confidence:** {result.confidence_score}%",
            "",
            result.summary or self.build_summary(result),
            "",
        ]
        for line in result.reasoning or self.build_reasoning(result):
            if line.startswith("## "):
                lines.extend(["", line, ""])
            else:
                lines.append(line)
        lines.extend(["", "## Recommendations", ""])
        for item in result.recommendations or self.build_recommendations(result):
            lines.append(f"- {item}")
        lines.append("")
        return "\n".join(lines)

    def generate_json(self, result: VerificationResult) -> str:
        return json.dumps(result.to_dict(), indent=2, default=str)

    def save_report(
        self, result: VerificationResult, output_dir: str, fmt: str = "both"
    ) -> Dict[str, Path]:
        """Write the report files and return them keyed by format.

        Raises:
            ValueError: If fmt is not markdown, json or both
        """
        if fmt not in REPORT_FORMATS:
            raise ValueError(f"Invalid report format '{fmt}'. Valid formats: {', '.join(REPORT_FORMATS)}")

        directory = Path(output_dir)
        directory.mkdir(parents=True, exist_ok=True)
        base = f"verification-{result.epic_id}-{result.test_id}-{timestamp_slug()}"

        written: Dict[str, Path] = {}
        if fmt in ("markdown", "both"):
            path = directory / f"{base}.md"
            path.write_text(self.generate_markdown(result), encoding="utf-8")
            written["markdown"] = path
        if fmt in ("json", "both"):
            path = directory / f"{base}.json"
            path.write_text(self.generate_json(result), encoding="utf-8")
            written["json"] = path

        logger.info(f"Saved verification report for {result.test_id} to {directory}")
        return written
