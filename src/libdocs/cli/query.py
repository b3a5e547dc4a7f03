"""libdocs query — ask a question about a library's documentation.

Usage:
  libdocs query tokio "how do I share a mutex between tasks?"
  libdocs query serde "rename a field" --no-summary --top-k 3
  libdocs query axum "extractors" --plain
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from libdocs.cli.context import build_service
from libdocs.cli.errors import render_error
from libdocs.errors import LibdocsError
from libdocs.rag.query import QueryResult, format_result

console = Console()

_PREVIEW_CHARS = 600


def query_cmd(
    name: Annotated[str, typer.Argument(help="Library name.")],
    question: Annotated[str, typer.Argument(help="Natural-language question.")],
    version: Annotated[
        str | None,
        typer.Option("--version", help="Version spec; defaults to the best populated one."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", min=1, help="Number of chunks to retrieve."),
    ] = None,
    no_summary: Annotated[
        bool,
        typer.Option("--no-summary", help="Skip the LLM answer; show retrieved chunks only."),
    ] = False,
    plain: Annotated[
        bool,
        typer.Option("--plain", help="Plain-text output for piping into other tools."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .libdocs.db (default from libdocs.yaml)."),
    ] = None,
) -> None:
    """Search a library's documentation and answer a question."""
    service = build_service(db, api_keys=True, summarization=not no_summary)
    if top_k is not None:
        service.top_k = top_k
    try:
        result = service.query(name, question, version_spec=version, summarize=not no_summary)
    except (LibdocsError, ValueError) as exc:
        console.print(render_error(exc))
        raise typer.Exit(1) from exc
    finally:
        service.close()

    if plain:
        typer.echo(format_result(result))
        return
    _print_result(result)


def _print_result(result: QueryResult) -> None:
    if not result.chunks:
        console.print(f"[yellow]No relevant documentation found in {result.library}.[/]")
        return

    if result.summary:
        console.print(
            Panel(
                escape(result.summary),
                title=f"[bold]{escape(result.library)} {escape(result.version or '')}[/]",
                expand=False,
            )
        )
    elif result.summary_error:
        console.print(f"[yellow]⚠[/] Summary unavailable: {escape(result.summary_error)}")

    for i, scored in enumerate(result.chunks, start=1):
        text = scored.chunk.text
        if len(text) > _PREVIEW_CHARS:
            text = text[:_PREVIEW_CHARS].rstrip() + " …"
        console.print(
            f"\n[bold]{i}. {escape(scored.chunk.item_path)}[/] "
            f"[dim](similarity: {scored.similarity:.3f})[/]"
        )
        console.print(escape(text))
        if scored.chunk.source_url:
            console.print(f"[dim]{escape(scored.chunk.source_url)}[/]")
