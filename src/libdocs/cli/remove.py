"""libdocs remove — drop a library from the index.

Removes the library configuration and everything derived from it:
  - chunks and their embeddings
  - population job history
  - statistics

Usage:
  libdocs remove tokio
  libdocs remove axum --version 0.7.5 --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from libdocs.cli.context import build_service
from libdocs.cli.errors import render_error
from libdocs.errors import LibdocsError

console = Console()


def remove_cmd(
    name: Annotated[str, typer.Argument(help="Library name to remove.")],
    version: Annotated[
        str,
        typer.Option("--version", help="Version spec the library was added with."),
    ] = "latest",
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .libdocs.db (default from libdocs.yaml)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a library and all its indexed documentation."""
    service = build_service(db)
    try:
        status = service.check_status(name, version)
        console.print(f"\nRemove library: [bold]{status.config.label}[/]")
        console.print(
            f"  Version: {status.config.current_version or '-'}  |  "
            f"Chunks: {status.chunk_count}"
        )
        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        service.remove_library(name, version)
    except LibdocsError as exc:
        console.print(render_error(exc))
        raise typer.Exit(1) from exc
    finally:
        service.close()

    console.print(f"\n[green]✓[/] Removed: {status.config.label}")
    console.print(f"  {status.chunk_count} chunks deleted")
