"""testwarden CLI.

Command structure: testwarden <domain> <verb> [args] [--options]

Examples:
    testwarden detect evidence.json --epic epic-7
    testwarden verify test-42 --epic epic-7
    testwarden flags list --unresolved
    testwarden workflow status test-42
    testwarden config show
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
from dotenv import load_dotenv
from rich.table import Table

from testwarden.cli.flag_commands import flags_app
from testwarden.cli.helpers import configure_logging, console, run_async, severity_text
from testwarden.cli.workflow_commands import workflow_app
from testwarden.core.config import get_global_config
from testwarden.core.models import (
    DetectionResult,
    EvidenceArtifact,
    Severity,
    TestResult,
    Verdict,
)
from testwarden.detection.red_flag_detector import RedFlagDetector
from testwarden.detection.reporter import REPORT_FORMATS, RedFlagReporter
from testwarden.persistence.database import Database
from testwarden.verification.errors import VerificationError
from testwarden.verification.verifier import IndependentVerifier

# Workspace .env takes precedence over the home one
_home_env = Path.home() / ".env"
_cwd_env = Path.cwd() / ".env"
if _home_env.exists():
    load_dotenv(_home_env)
if _cwd_env.exists():
    load_dotenv(_cwd_env, override=True)

app = typer.Typer(
    name="testwarden",
    help="testwarden: independent verification of reported test outcomes",
    add_completion=False,
    no_args_is_help=True,
)

config_app = typer.Typer(name="config", help="Configuration (show)", no_args_is_help=True)

VERDICT_STYLES = {
    Verdict.PASS: "[green]✅ PASS[/green]",
    Verdict.REVIEW: "[yellow]⚠️  REVIEW[/yellow]",
    Verdict.FAIL: "[red]❌ FAIL[/red]",
}


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging before any command runs."""
    config = get_global_config(reload=True)
    if verbose:
        config.log_level = "DEBUG"
    configure_logging(config)


def load_evidence_bundle(
    path: Path, epic: Optional[str] = None
) -> Tuple[str, List[TestResult], Dict[str, List[EvidenceArtifact]]]:
    """Read a JSON evidence bundle.

    Shape: ``{"epic_id": ..., "tests": [{<TestResult fields>, "evidence": [...]}]}``.
    A single test object (without "tests") is also accepted.

    Raises:
        ValueError: If the bundle has no epic id or a test entry is malformed
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    entries = data.get("tests") if isinstance(data, dict) and "tests" in data else [data]
    epic_id = epic or (data.get("epic_id") if isinstance(data, dict) else None)
    if not epic_id:
        raise ValueError("No epic id: pass --epic or set 'epic_id' in the bundle")

    tests: List[TestResult] = []
    evidence: Dict[str, List[EvidenceArtifact]] = {}
    for index, entry in enumerate(entries):
        try:
            test = TestResult.from_dict(entry)
            artifacts = [
                EvidenceArtifact.from_dict(item, epic_id=epic_id, test_id=test.id)
                for item in entry.get("evidence", [])
            ]
        except (KeyError, ValueError, TypeError) as e:
            raise ValueError(f"Invalid test entry #{index + 1}: {e}") from e
        tests.append(test)
        evidence[test.id] = artifacts
    return epic_id, tests, evidence


@app.command()
def detect(
    evidence_file: Path = typer.Argument(
        ..., help="JSON bundle of tests and their evidence", exists=True, dir_okay=False
    ),
    epic: Optional[str] = typer.Option(None, "--epic", "-e", help="Epic id (overrides the bundle)"),
    report_dir: Optional[Path] = typer.Option(
        None, "--report-dir", "-o", help="Write red flag reports to this directory"
    ),
    format: str = typer.Option(
        "both", "--format", "-f", help="Report format: markdown, json or both"
    ),
):
    """Run red flag detection over an evidence bundle.

    The tests and artifacts are stored, scanned by the five detectors, and
    the resulting flags persisted.

    Examples:

        testwarden detect evidence.json

        testwarden detect evidence.json --epic epic-7 --report-dir reports --format markdown
    """
    if format not in REPORT_FORMATS:
        console.print(
            f"[red]Error:[/red] Invalid format '{format}'. Valid formats: {', '.join(REPORT_FORMATS)}"
        )
        raise typer.Exit(1)

    config = get_global_config()

    async def _detect() -> List[DetectionResult]:
        epic_id, tests, evidence = load_evidence_bundle(evidence_file, epic)
        db = Database(config.database_path)
        try:
            async with db:
                stored: Dict[str, List[EvidenceArtifact]] = {}
                for test in tests:
                    _, stored[test.id] = await db.evidence.save_run(
                        epic_id, test, evidence[test.id]
                    )
                detector = RedFlagDetector(
                    store=db.red_flags,
                    history=db.timing,
                    config=config.detection_config(),
                    evidence_dir=config.evidence_dir,
                )
                return await detector.detect_batch(epic_id, tests, stored)
        finally:
            db.close()

    try:
        results = run_async(_detect())
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title="Red Flag Detection")
    table.add_column("Test", style="cyan", no_wrap=True)
    table.add_column("Verdict")
    for severity in Severity:
        table.add_column(severity_text(severity), justify="right")
    table.add_column("Recommendation", max_width=60)
    for result in results:
        table.add_row(
            result.test_id,
            VERDICT_STYLES[result.verdict],
            *(str(result.summary.count(severity)) for severity in Severity),
            result.recommendation,
        )
    console.print(table)

    batch = RedFlagDetector.aggregate_batch_results(results)
    console.print(
        f"\n[bold]{batch.total_tests}[/bold] test(s): {batch.passed_tests} pass, "
        f"{batch.review_tests} review, {batch.failed_tests} fail "
        f"({batch.flags.total} flag(s))"
    )

    if report_dir is not None:
        reporter = RedFlagReporter()
        for result in results:
            written = reporter.save_report(result, str(report_dir), format)
            for path in written.values():
                console.print(f"  Report: {path}")

    if batch.failed_tests:
        raise typer.Exit(2)


@app.command()
def verify(
    test_id: str = typer.Argument(..., help="Test id"),
    epic: str = typer.Option(..., "--epic", "-e", help="Epic id"),
    report_dir: Optional[Path] = typer.Option(
        None, "--report-dir", "-o", help="Directory for verification reports (default: configured)"
    ),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
):
    """Independently verify a test's latest reported outcome.

    Examples:

        testwarden verify test-42 --epic epic-7

        testwarden verify test-42 --epic epic-7 --format json
    """
    config = get_global_config()

    async def _verify():
        db = Database(config.database_path)
        try:
            async with db:
                verifier = IndependentVerifier(
                    db.evidence,
                    db.red_flags,
                    config=config.verification_config(),
                    report_repo=db.verification_reports,
                    history=db.timing,
                    report_dir=str(report_dir or config.report_dir),
                )
                return await verifier.verify(test_id, epic)
        finally:
            db.close()

    try:
        result = run_async(_verify())
    except VerificationError as e:
        console.print(f"[red]Verification failed ({e.phase}):[/red] {e}")
        raise typer.Exit(2)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if format == "json":
        typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        marker = "[green]✅ VERIFIED[/green]" if result.verified else "[red]❌ NOT VERIFIED[/red]"
        console.print(f"\n{marker}  confidence {result.confidence_score}/100")
        console.print(f"[bold]Recommendation:[/bold] {result.recommendation.value}")
        console.print(f"[bold]Verifier:[/bold] {result.verifier_model}")
        console.print(f"\n{result.summary}\n")
        for line in result.recommendations:
            console.print(f"  • {line}")

    if not result.verified:
        raise typer.Exit(2)


@config_app.command("show")
def config_show(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table or json"),
):
    """Show the effective configuration."""
    try:
        config = get_global_config()
        values: Dict[str, Any] = config.model_dump()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if format == "json":
        typer.echo(json.dumps(values, indent=2, default=str))
        return

    table = Table(title="testwarden Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in values.items():
        table.add_row(key, str(value))
    console.print(table)


app.add_typer(flags_app, name="flags", help="Red flag management (list, resolve, stats)")
app.add_typer(workflow_app, name="workflow", help="Test workflow inspection (status, list, abort)")
app.add_typer(config_app, name="config", help="Configuration (show)")


if __name__ == "__main__":
    app()
