"""CLI workflow commands.

- status: Show one test's workflow with its recorded stage results
- list: List workflows with optional filters
- abort: Mark a workflow failed and escalated

Usage:
    testwarden workflow status test-42
    testwarden workflow list --epic epic-7 --status failed
    testwarden workflow abort test-42 --reason "Flaky environment"
"""

import json
from typing import Optional

import typer
from rich.table import Table

from testwarden.cli.helpers import console, open_database, run_async
from testwarden.core.config import get_global_config
from testwarden.persistence.database import Database
from testwarden.workflow.orchestrator import abort_workflow
from testwarden.workflow.state_machine import (
    TestWorkflow,
    WorkflowNotFoundError,
    WorkflowStatus,
    parse_workflow_status,
)

workflow_app = typer.Typer(
    name="workflow",
    help="Test workflow inspection (status, list, abort)",
    no_args_is_help=True,
)

STATUS_STYLES = {
    WorkflowStatus.PENDING: "dim",
    WorkflowStatus.IN_PROGRESS: "cyan",
    WorkflowStatus.COMPLETED: "green",
    WorkflowStatus.FAILED: "red",
}


def _status_text(workflow: TestWorkflow) -> str:
    style = STATUS_STYLES[workflow.status]
    text = f"[{style}]{workflow.status.value}[/{style}]"
    if workflow.escalated:
        text += " [bold red](escalated)[/bold red]"
    return text


@workflow_app.command("status")
def workflow_status(
    test_id: str = typer.Argument(..., help="Test id"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
):
    """Show a test's workflow."""
    try:
        db = open_database()
        try:
            workflow = db.workflows.get_workflow(test_id)
        finally:
            db.close()
        if workflow is None:
            raise WorkflowNotFoundError(test_id)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if format == "json":
        typer.echo(json.dumps(workflow.to_dict(), indent=2, default=str))
        return

    console.print(f"\n[bold]Test:[/bold] {workflow.test_id} ({workflow.test_type.value})")
    console.print(f"[bold]Epic:[/bold] {workflow.epic_id}")
    console.print(f"[bold]Stage:[/bold] {workflow.current_stage.value}")
    console.print(f"[bold]Status:[/bold] {_status_text(workflow)}")
    console.print(f"[bold]Fix attempts:[/bold] {workflow.retry_count}")
    console.print(f"[bold]Tier:[/bold] {workflow.current_tier or 'n/a'}")
    if workflow.error_message:
        console.print(f"[bold]Message:[/bold] {workflow.error_message}")

    table = Table(title="Stage History")
    table.add_column("#", justify="right")
    table.add_column("Stage", style="cyan")
    table.add_column("Attempt", justify="right")
    table.add_column("Recorded At")
    for index, entry in enumerate(workflow.history, start=1):
        table.add_row(
            str(index),
            str(entry.get("stage")),
            str(entry.get("attempt")),
            str(entry.get("recorded_at", ""))[:19],
        )
    console.print(table)


@workflow_app.command("list")
def list_workflows(
    epic: Optional[str] = typer.Option(None, "--epic", "-e", help="Filter by epic"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
):
    """List workflows, most recently updated first."""
    try:
        status_filter = parse_workflow_status(status) if status else None
        db = open_database()
        try:
            workflows = db.workflows.list_workflows(epic_id=epic, status=status_filter)
        finally:
            db.close()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not workflows:
        console.print("[yellow]No workflows found.[/yellow]")
        return

    table = Table(title="Test Workflows")
    table.add_column("Test", style="cyan", no_wrap=True)
    table.add_column("Epic")
    table.add_column("Type")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Fixes", justify="right")
    table.add_column("Tier")
    table.add_column("Updated")
    for workflow in workflows:
        table.add_row(
            workflow.test_id,
            workflow.epic_id,
            workflow.test_type.value,
            workflow.current_stage.value,
            _status_text(workflow),
            str(workflow.retry_count),
            workflow.current_tier or "",
            workflow.updated_at.isoformat()[:19],
        )
    console.print(table)


@workflow_app.command("abort")
def abort(
    test_id: str = typer.Argument(..., help="Test id"),
    reason: str = typer.Option("Aborted by operator", "--reason", "-r", help="Abort reason"),
):
    """Abort a workflow: mark it failed and escalated.

    A stage already running for the test finishes, but its result is discarded.
    """

    async def _abort() -> TestWorkflow:
        db = Database(get_global_config().database_path)
        try:
            async with db:
                workflow = await db.workflows.get(test_id)
                if workflow is None:
                    raise WorkflowNotFoundError(test_id)
                return await abort_workflow(db.workflows, workflow, reason)
        finally:
            db.close()

    try:
        workflow = run_async(_abort())
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(
        f"✓ Workflow for [bold]{workflow.test_id}[/bold] aborted "
        f"at stage {workflow.current_stage.value}: {reason}"
    )
