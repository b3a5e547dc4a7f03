"""libdocs list / status commands.

``list`` shows every configured library with its population state.
``status`` shows one library in detail, including its recent job.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from libdocs.cli.context import build_service
from libdocs.cli.errors import render_error
from libdocs.db.models import PopulationJob
from libdocs.errors import LibdocsError

console = Console()

_STATUS_STYLE = {
    "pending": "yellow",
    "running": "cyan",
    "completed": "green",
    "failed": "red",
}


def list_cmd(
    enabled_only: Annotated[
        bool,
        typer.Option("--enabled", help="Only show enabled libraries."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .libdocs.db (default from libdocs.yaml)."),
    ] = None,
) -> None:
    """List configured libraries and their population state."""
    service = build_service(db)
    try:
        summaries = service.list_libraries(enabled_only=enabled_only)
    except LibdocsError as exc:
        console.print(render_error(exc))
        raise typer.Exit(1) from exc
    finally:
        service.close()

    if not summaries:
        console.print("[dim]No libraries configured.[/]  Run:  libdocs add <library>")
        return

    table = Table(title="Libraries", show_header=True, header_style="bold")
    table.add_column("Library")
    table.add_column("Spec")
    table.add_column("Version")
    table.add_column("Chunks", justify="right")
    table.add_column("Last job")
    table.add_column("Populated")

    for summary in summaries:
        config = summary.config
        name = config.name if config.enabled else f"[dim]{config.name} (disabled)[/]"
        table.add_row(
            name,
            config.version_spec,
            config.current_version or "-",
            str(summary.stats.chunk_count if summary.stats else 0),
            _job_cell(summary.latest_job),
            config.last_populated or "never",
        )
    console.print(table)


def status_cmd(
    name: Annotated[str, typer.Argument(help="Library name.")],
    version: Annotated[
        str | None,
        typer.Option("--version", help="Version spec; defaults to the best populated one."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .libdocs.db (default from libdocs.yaml)."),
    ] = None,
) -> None:
    """Show population status for one library."""
    service = build_service(db)
    try:
        status = service.check_status(name, version)
    except LibdocsError as exc:
        console.print(render_error(exc))
        raise typer.Exit(1) from exc
    finally:
        service.close()

    config = status.config
    lines = [
        f"[bold]Library:[/]    {config.label}",
        f"[bold]Version:[/]    {config.current_version or '-'}",
        f"[bold]Chunks:[/]     {status.chunk_count}",
        f"[bold]Embedding:[/]  {config.embedding_model or '-'}"
        + (f" ({config.dimensions} dims)" if config.dimensions else ""),
        f"[bold]Features:[/]   {', '.join(config.features) or '-'}",
        f"[bold]Enabled:[/]    {'yes' if config.enabled else 'no'}",
        f"[bold]Checked:[/]    {config.last_checked or 'never'}",
        f"[bold]Populated:[/]  {config.last_populated or 'never'}",
        f"[bold]Queryable:[/]  {'[green]yes[/]' if status.queryable else '[yellow]no[/]'}",
    ]

    job = status.active_job or status.latest_job
    if job is not None:
        lines.append("")
        lines.append(f"[bold]Job {job.id}:[/]      {_job_cell(job)} (stage: {job.stage})")
        if job.chunks_populated is not None:
            lines.append(f"  chunks written: {job.chunks_populated}, pages skipped: {job.skipped_items}")
        if job.error_message:
            lines.append(f"  [red]{escape(job.error_message)}[/]")

    console.print(Panel("\n".join(lines), title="[bold]Library status[/]", expand=False))


def _job_cell(job: PopulationJob | None) -> str:
    if job is None:
        return "-"
    style = _STATUS_STYLE.get(job.status.value, "white")
    return f"[{style}]{job.status.value}[/]"
