"""libdocs populate — (re)index documentation for configured libraries.

Usage:
  libdocs populate tokio                # re-fetch and swap in a fresh index
  libdocs populate --all                # everything never populated or stale
  libdocs populate --all --recover      # first fail jobs left by a crashed run
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from libdocs.cli.add import print_outcome
from libdocs.cli.context import build_service
from libdocs.cli.errors import render_error
from libdocs.errors import LibdocsError

console = Console()


def populate_cmd(
    name: Annotated[
        str | None,
        typer.Argument(help="Library name. Omit with --all."),
    ] = None,
    version: Annotated[
        str,
        typer.Option("--version", help="Version spec the library was added with."),
    ] = "latest",
    all_: Annotated[
        bool,
        typer.Option("--all", help="Populate every enabled library that needs it."),
    ] = False,
    recover: Annotated[
        bool,
        typer.Option(
            "--recover",
            help="Mark jobs left pending/running by an interrupted run as failed first.",
        ),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .libdocs.db (default from libdocs.yaml)."),
    ] = None,
) -> None:
    """Populate one library, or every library needing it with --all."""
    if (name is None) == (not all_):
        console.print("[red]Error:[/] Give a library name or --all (not both).")
        raise typer.Exit(2)

    service = build_service(db, api_keys=True)
    try:
        if recover:
            count = service.recover_interrupted()
            console.print(f"[dim]Recovered {count} interrupted job(s).[/]")

        if name is not None:
            with console.status(f"Populating {name}@{version}…"):
                outcomes = [service.populate(name, version)]
        else:
            jobs = service.startup_scan()
            if not jobs:
                console.print("[green]✓[/] Every enabled library is up to date.")
                return
            with console.status(f"Populating {len(jobs)} library(ies)…"):
                outcomes = service.orchestrator.wait()
    except LibdocsError as exc:
        console.print(render_error(exc))
        raise typer.Exit(1) from exc
    finally:
        service.close()

    for outcome in outcomes:
        print_outcome(outcome)
    if not all(outcome.succeeded for outcome in outcomes):
        raise typer.Exit(1)
