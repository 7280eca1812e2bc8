"""Leadflow CLI - operator entry point."""

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="leadflow",
    help="Leadflow - lead follow-up workflow engine",
    no_args_is_help=True,
)
console = Console()


def _output_result(result: dict[str, Any]) -> None:
    console.print_json(json.dumps(result, default=str, indent=2))


@app.command("serve")
def serve(
    port: int = typer.Option(8030, "--port", "-p", help="Port to run on"),
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the API with the in-process scheduler."""
    import uvicorn

    console.print(f"[bold cyan]Starting Leadflow at http://{host}:{port}[/bold cyan]")
    uvicorn.run("leadflow.app:app", host=host, port=port, reload=reload)


@app.command("tick")
def tick(
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", help="Max executions to resume"),
):
    """Run one scheduler pass (for cron or manual catch-up)."""
    from .database import async_session_factory, engine
    from .engine.scheduler import process_due_executions

    async def _tick():
        try:
            return await process_due_executions(async_session_factory, batch_size=batch_size)
        finally:
            await engine.dispose()

    result = asyncio.run(_tick())
    _output_result(result.to_dict())
    if result.failed:
        raise typer.Exit(1)


@app.command("validate")
def validate(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Workflow graph JSON file"),
):
    """Check a graph exported from the editor."""
    from .engine.errors import StructuralError
    from .engine.graph import parse_graph, validate_graph

    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        console.print(f"[red]Not valid JSON: {exc}[/red]")
        raise typer.Exit(2)

    try:
        errors = validate_graph(parse_graph(raw))
    except StructuralError as exc:
        errors = [exc]

    if not errors:
        console.print("[green]Graph is valid.[/green]")
        return

    table = Table(title=f"{len(errors)} problem(s)")
    table.add_column("Node", style="cyan")
    table.add_column("Problem")
    for error in errors:
        table.add_row(error.node_id or "-", error.message)
    console.print(table)
    raise typer.Exit(1)


@app.command("executions")
def executions(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max rows"),
):
    """List recent executions."""
    from .database import async_session_factory, engine
    from .engine.store import ExecutionStore

    async def _list():
        try:
            async with async_session_factory() as db:
                return await ExecutionStore(db).list_executions(status=status, limit=limit)
        finally:
            await engine.dispose()

    rows = asyncio.run(_list())
    table = Table(title="Executions")
    table.add_column("ID", style="dim")
    table.add_column("Sender")
    table.add_column("Status")
    table.add_column("Node")
    table.add_column("Scheduled for")
    for e in rows:
        table.add_row(
            str(e.id),
            e.sender_id,
            e.status,
            e.current_node_id or "-",
            e.scheduled_for.isoformat() if e.scheduled_for else "-",
        )
    console.print(table)


if __name__ == "__main__":
    app()
