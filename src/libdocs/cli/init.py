"""libdocs init — create the database and config scaffold.

Creates:
  .libdocs.db              — empty documentation index with schema
  libdocs.yaml             — project config with commented defaults
  ~/.libdocs/config.yaml   — global model defaults (created once, mode 0o600)

Updates .gitignore (if present) to ignore the database.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from libdocs.config import ensure_global_config
from libdocs.db.connection import Database
from libdocs.db.store import open_store

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")
_DB_NAME = ".libdocs.db"
_CONFIG_NAME = "libdocs.yaml"

_PROJECT_YAML = """\
# libdocs project configuration. API keys go in environment variables.
database:
  path: .libdocs.db

embedding:
  model: openai/text-embedding-3-small
  # dimensions: 1536          # required for models libdocs does not know

retrieval:
  top_k: 5
  metric: cosine              # cosine | l2 (fixed once the database is created)

population:
  workers: 2
  retry_budget: 3
  stale_after_hours: 24

fetcher:
  base_url: https://docs.rs
  max_pages: 200
  request_delay: 0.5

chunker:
  max_tokens: 512

summarization:
  enabled: true
  model: openai/gpt-4o-mini
"""


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    global_config: Annotated[
        Path | None,
        typer.Option("--global-config", hidden=True, help="Override global config path (for testing)."),
    ] = None,
) -> None:
    """Create the documentation database and a libdocs.yaml with defaults."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    db_path = project_dir / _DB_NAME
    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists.")
        if not typer.confirm("Re-initialize? Existing data is preserved.", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    console.print(f"\n[bold]Initializing libdocs in {project_dir} …[/]\n")

    with open_store(Database(db_path)):
        pass
    console.print(f"  [green]✓[/] {_DB_NAME}")

    config_path = project_dir / _CONFIG_NAME
    if config_path.exists():
        console.print(f"  [dim]-[/] {_CONFIG_NAME} (kept existing)")
    else:
        config_path.write_text(_PROJECT_YAML, encoding="utf-8")
        console.print(f"  [green]✓[/] {_CONFIG_NAME}")

    _update_gitignore(project_dir)

    cfg_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print("\n[bold green]✓ libdocs initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. export OPENAI_API_KEY=...           (embedding provider key)")
    console.print("  2. libdocs add <library>               (fetch + index documentation)")
    console.print("  3. libdocs query <library> \"question\"  (search it)")


def _update_gitignore(project_dir: Path) -> None:
    """Add the database to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    entries = [_DB_NAME, f"{_DB_NAME}-wal", f"{_DB_NAME}-shm"]

    if gitignore.exists():
        existing = gitignore.read_text(encoding="utf-8")
        to_add = [e for e in entries if e not in existing]
        if to_add:
            with gitignore.open("a", encoding="utf-8") as f:
                f.write("\n# libdocs\n")
                for entry in to_add:
                    f.write(f"{entry}\n")
            console.print("  [green]✓[/] .gitignore (updated with libdocs entries)")
