"""libdocs add — configure libraries and populate their documentation.

Usage:
  libdocs add tokio
  libdocs add serde serde_json --version latest
  libdocs add axum --version 0.7.5 --feature macros
  libdocs add reqwest --disabled      # configure only, populate later
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from libdocs.cli.context import build_service
from libdocs.cli.errors import render_error
from libdocs.errors import LibdocsError
from libdocs.ingest.orchestrator import JobOutcome
from libdocs.service import LibrarySpec

console = Console()


def add_cmd(
    names: Annotated[
        list[str],
        typer.Argument(help="Library (crate) names to add."),
    ],
    version: Annotated[
        str,
        typer.Option("--version", help="Version to index: 'latest' or e.g. 1.2.3."),
    ] = "latest",
    feature: Annotated[
        list[str] | None,
        typer.Option("--feature", "-f", help="Feature flag to record (repeatable)."),
    ] = None,
    expected_chunks: Annotated[
        int,
        typer.Option("--expected-chunks", help="Rough size estimate, for reporting only."),
    ] = 0,
    disabled: Annotated[
        bool,
        typer.Option("--disabled", help="Configure without populating."),
    ] = False,
    fail_fast: Annotated[
        bool,
        typer.Option("--fail-fast", help="Stop at the first library that cannot be added."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .libdocs.db (default from libdocs.yaml)."),
    ] = None,
) -> None:
    """Add libraries and index their documentation."""
    service = build_service(db, api_keys=not disabled)
    specs = [
        LibrarySpec(
            name=name,
            version_spec=version,
            features=list(feature or []),
            expected_chunks=expected_chunks,
            enabled=not disabled,
        )
        for name in names
    ]

    failed = False
    try:
        try:
            results = service.add_libraries(specs, fail_fast=fail_fast)
        except (LibdocsError, ValueError) as exc:
            console.print(render_error(exc))
            raise typer.Exit(1) from exc

        for result in results:
            label = f"{result.name}@{result.version_spec}"
            if not result.ok:
                failed = True
                console.print(f"[red]✗[/] {label}: {escape(result.error)}")
            elif result.job is None:
                console.print(f"[green]✓[/] {label} configured (disabled, not populated)")
            else:
                console.print(f"[dim]…[/] {label} queued (job {result.job.id})")

        if not disabled:
            with console.status("Populating documentation…"):
                outcomes = service.orchestrator.wait()
            for outcome in outcomes:
                print_outcome(outcome)
                failed = failed or not outcome.succeeded
    finally:
        service.close()

    if failed:
        raise typer.Exit(1)


def print_outcome(outcome: JobOutcome) -> None:
    if outcome.succeeded:
        console.print(
            f"[green]✓[/] {outcome.library} → version {outcome.version}: "
            f"{outcome.chunks_populated} chunks"
            + (f", {outcome.skipped_items} page(s) skipped" if outcome.skipped_items else "")
        )
    else:
        console.print(
            f"[red]✗[/] {outcome.library} failed during {outcome.stage.value}: {escape(outcome.error or '')}"
        )
