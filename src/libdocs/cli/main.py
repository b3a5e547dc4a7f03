"""libdocs CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from libdocs.cli.add import add_cmd
from libdocs.cli.init import init_cmd
from libdocs.cli.populate import populate_cmd
from libdocs.cli.query import query_cmd
from libdocs.cli.remove import remove_cmd
from libdocs.cli.status import list_cmd, status_cmd
from libdocs.logging_setup import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("libdocs")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"libdocs {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="libdocs",
    help=(
        "libdocs — library documentation search for coding assistants.\n\n"
        "  libdocs add <library>             Fetch, chunk, embed and index documentation.\n"
        "  libdocs query <library> <text>    Semantic search + grounded answer."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log progress (INFO) to stderr."),
    ] = False,
) -> None:
    """libdocs — library documentation search for coding assistants."""
    configure_logging(verbose=verbose)


app.command("init")(init_cmd)
app.command("add")(add_cmd)
app.command("remove")(remove_cmd)
app.command("list")(list_cmd)
app.command("status")(status_cmd)
app.command("query")(query_cmd)
app.command("populate")(populate_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed libdocs version."""
    typer.echo(f"libdocs {_installed_version()}")


if __name__ == "__main__":
    app()
