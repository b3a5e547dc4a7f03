"""Tests for the libdocs CLI entry point."""

from __future__ import annotations

import logging

import pytest
from typer.testing import CliRunner

from libdocs.cli.main import app

runner = CliRunner()


def test_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("init", "add", "remove", "list", "status", "query", "populate", "version"):
        assert command in result.output


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("libdocs ")


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("libdocs ")


@pytest.mark.parametrize("flag,level", [([], logging.WARNING), (["-v"], logging.INFO)])
def test_verbose_sets_log_level(
    flag: list[str], level: int, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("LIBDOCS_LOG_LEVEL", raising=False)
    result = runner.invoke(app, [*flag, "version"])
    assert result.exit_code == 0
    assert logging.getLogger().level == level


def test_log_level_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LIBDOCS_LOG_LEVEL", "debug")
    runner.invoke(app, ["version"])
    assert logging.getLogger().level == logging.DEBUG
