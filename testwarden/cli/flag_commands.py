"""CLI red flag commands.

- list: List flags with optional filters
- resolve: Mark a flag resolved with notes
- stats: Flag counts by severity and type

Usage:
    testwarden flags list --epic epic-7 --unresolved
    testwarden flags resolve 12 --notes "Screenshot re-captured"
    testwarden flags stats --epic epic-7
"""

import json
from typing import Optional

import typer
from rich.table import Table

from testwarden.cli.helpers import console, open_database, severity_text
from testwarden.core.models import Severity

flags_app = typer.Typer(
    name="flags",
    help="Red flag management (list, resolve, stats)",
    no_args_is_help=True,
)


def _parse_severity(value: Optional[str]) -> Optional[Severity]:
    if value is None:
        return None
    try:
        return Severity(value.strip().lower())
    except ValueError:
        valid = ", ".join(s.value for s in Severity)
        raise ValueError(f"Invalid severity '{value}'. Valid severities: {valid}")


@flags_app.command("list")
def list_flags(
    epic: Optional[str] = typer.Option(None, "--epic", "-e", help="Filter by epic"),
    test: Optional[str] = typer.Option(None, "--test", "-t", help="Filter by test id"),
    severity: Optional[str] = typer.Option(None, "--severity", "-s", help="Filter by severity"),
    unresolved: bool = typer.Option(False, "--unresolved", help="Only unresolved flags"),
    format: str = typer.Option("table", "--format", "-f", help="Output format: table or json"),
):
    """List red flags.

    Examples:

        testwarden flags list --epic epic-7

        testwarden flags list --severity critical --unresolved
    """
    try:
        db = open_database()
        try:
            flags = db.red_flags.list_flags(
                epic_id=epic,
                test_id=test,
                severity=_parse_severity(severity),
                resolved=False if unresolved else None,
            )
        finally:
            db.close()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if format == "json":
        typer.echo(json.dumps([f.to_dict() for f in flags], indent=2))
        return

    if not flags:
        console.print("[yellow]No red flags found.[/yellow]")
        return

    table = Table(title="Red Flags")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Epic")
    table.add_column("Test")
    table.add_column("Type")
    table.add_column("Severity")
    table.add_column("Description", max_width=60)
    table.add_column("Resolved")
    for flag in flags:
        table.add_row(
            str(flag.id),
            flag.epic_id,
            flag.test_id,
            flag.flag_type.value,
            severity_text(flag.severity),
            flag.description,
            "[green]yes[/green]" if flag.resolved else "no",
        )
    console.print(table)


@flags_app.command("resolve")
def resolve_flag(
    flag_id: int = typer.Argument(..., help="Red flag id"),
    notes: str = typer.Option(..., "--notes", "-n", help="Resolution notes"),
):
    """Mark a red flag resolved."""
    if not notes.strip():
        console.print("[red]Error:[/red] Resolution notes cannot be empty")
        raise typer.Exit(1)
    try:
        db = open_database()
        try:
            updated = db.red_flags.resolve_flag(flag_id, notes.strip())
        finally:
            db.close()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not updated:
        console.print(f"[red]Error:[/red] Red flag {flag_id} not found")
        raise typer.Exit(1)
    console.print(f"✓ Resolved red flag [bold]{flag_id}[/bold]")


@flags_app.command("stats")
def flag_stats(
    epic: Optional[str] = typer.Option(None, "--epic", "-e", help="Limit to one epic"),
):
    """Show red flag counts by severity and type."""
    try:
        db = open_database()
        try:
            stats = db.red_flags.get_statistics(epic)
        finally:
            db.close()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    scope = f"epic {epic}" if epic else "all epics"
    console.print(
        f"\n[bold]Red flags ({scope}):[/bold] {stats['total']} total, "
        f"{stats['unresolved']} unresolved, {stats['resolved']} resolved\n"
    )

    table = Table(title="By Severity")
    table.add_column("Severity")
    table.add_column("Count", justify="right")
    for severity in Severity:
        table.add_row(severity_text(severity), str(stats["by_severity"][severity.value]))
    console.print(table)

    table = Table(title="By Type")
    table.add_column("Type")
    table.add_column("Count", justify="right")
    for flag_type, count in stats["by_type"].items():
        table.add_row(flag_type, str(count))
    console.print(table)
