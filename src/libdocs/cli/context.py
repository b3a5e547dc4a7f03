"""Shared CLI plumbing: load config, check API keys, build the service."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from libdocs.cli.errors import err_no_api_key, err_no_db, render_error
from libdocs.config import ConfigError, LibdocsConfig, load_config
from libdocs.providers import missing_keys
from libdocs.service import DocsService

console = Console()


def load_cli_config(db: Path | None = None) -> LibdocsConfig:
    """Load config, applying the ``--db`` flag on top. Exits 1 on ConfigError."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(render_error(exc))
        raise typer.Exit(1) from exc
    if db is not None:
        cfg.database.path = str(db)
    return cfg


def require_api_keys(cfg: LibdocsConfig, *, summarization: bool = False) -> None:
    """Exit 1 with setup instructions if a needed provider key is missing."""
    models = [cfg.embedding.model]
    if summarization and cfg.summarization.enabled:
        models.append(cfg.summarization.model)
    missing = missing_keys(models)
    for provider in missing:
        console.print(err_no_api_key(provider))
    if missing:
        raise typer.Exit(1)


def build_service(
    db: Path | None = None,
    *,
    require_db: bool = True,
    api_keys: bool = False,
    summarization: bool = False,
) -> DocsService:
    """Build a DocsService for a CLI command.

    Args:
        db: ``--db`` override for the database path.
        require_db: Exit 1 when the database file does not exist yet.
        api_keys: Require the embedding model's API key.
        summarization: Also require the summarization model's API key.
    """
    cfg = load_cli_config(db)
    if require_db and not Path(cfg.database.path).exists():
        console.print(err_no_db(cfg.database.path))
        raise typer.Exit(1)
    if api_keys:
        require_api_keys(cfg, summarization=summarization)
    try:
        return DocsService.from_config(cfg)
    except ValueError as exc:
        console.print(render_error(exc))
        raise typer.Exit(1) from exc
