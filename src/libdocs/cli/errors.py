"""libdocs rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from libdocs.cli.errors import render_error
    console.print(render_error(exc))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from libdocs.config import ConfigError
from libdocs.errors import (
    AlreadyInProgress,
    ConfigMismatch,
    FetchError,
    NotFound,
    PageNotFound,
    ParseError,
    ProviderError,
    RateLimited,
    StorageError,
)
from libdocs.providers import key_env_var


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = key_env_var(provider) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=..."
    )


def err_no_db(db_path: str = ".libdocs.db") -> str:
    """No database found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  libdocs init"
    )


def err_not_found(message: str) -> str:
    """Library not configured or never populated."""
    return (
        f"[yellow]Not found:[/] {escape(message)}\n"
        "  Run:  libdocs list  to see configured libraries."
    )


def err_already_in_progress(message: str) -> str:
    return (
        f"[yellow]Busy:[/] {escape(message)}\n"
        "  Run:  libdocs status <name>  to follow the running job."
    )


def err_config_mismatch(message: str) -> str:
    """Stored corpus was built with another embedding model, size or metric."""
    return (
        f"[red]Error:[/] Embedding configuration mismatch.\n"
        f"  {escape(message)}\n"
        "  Restore the previous embedding/retrieval settings, or re-populate:\n"
        "    libdocs populate <name>"
    )


def err_provider(message: str, retryable: bool = False) -> str:
    hint = (
        "  The provider is rate limiting or unavailable. Try again later or lower population.workers."
        if retryable
        else "  Check the model name in libdocs.yaml and your provider account."
    )
    return f"[red]Error:[/] Embedding/completion provider failed: {escape(message)}\n{hint}"


def err_fetch(message: str, not_found: bool = False) -> str:
    hint = (
        "  Check the library name and version on the documentation host."
        if not_found
        else "  Check your network connection and fetcher.base_url, then retry."
    )
    return f"[red]Error:[/] Could not fetch documentation: {escape(message)}\n{hint}"


def err_config(message: str) -> str:
    """libdocs.yaml or ~/.libdocs/config.yaml is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {escape(message)}\n"
        "  Fix libdocs.yaml (or ~/.libdocs/config.yaml) and retry."
    )


def err_invalid_input(message: str) -> str:
    return f"[red]Error:[/] {escape(message)}"


def render_error(exc: Exception) -> str:
    """Map any libdocs error to its actionable message."""
    message = str(exc)
    if isinstance(exc, NotFound):
        return err_not_found(message)
    if isinstance(exc, AlreadyInProgress):
        return err_already_in_progress(message)
    if isinstance(exc, ConfigMismatch):
        return err_config_mismatch(message)
    if isinstance(exc, RateLimited):
        return err_provider(message, retryable=True)
    if isinstance(exc, ProviderError):
        return err_provider(message)
    if isinstance(exc, FetchError):
        return err_fetch(message, not_found=isinstance(exc, PageNotFound))
    if isinstance(exc, ParseError):
        return (
            f"[red]Error:[/] Documentation could not be parsed: {escape(message)}\n"
            "  The host's page layout may have changed; check fetcher.base_url."
        )
    if isinstance(exc, StorageError):
        return (
            f"[red]Error:[/] Database failure: {escape(message)}\n"
            "  Check that the database file is writable and not held by another tool."
        )
    if isinstance(exc, ConfigError):
        return err_config(message)
    if isinstance(exc, ValueError):
        return err_invalid_input(message)
    return f"[red]Error:[/] {escape(type(exc).__name__)}: {escape(message)}"
