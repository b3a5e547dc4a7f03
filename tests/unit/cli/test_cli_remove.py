"""Tests for libdocs remove command."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from libdocs.cli.main import app

runner = CliRunner()


# ---------------------------------------------------------------------------
# libdocs remove: no DB
# ---------------------------------------------------------------------------


def test_remove_no_db_exits_1(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    missing = tmp_path / "missing.db"
    result = runner.invoke(app, ["remove", "tokio", "--db", str(missing), "--yes"])
    assert result.exit_code == 1
    assert "libdocs init" in result.output


# ---------------------------------------------------------------------------
# libdocs remove: with a populated library
# ---------------------------------------------------------------------------


def test_remove_unknown_library_exits_1(docs_service) -> None:
    with patch("libdocs.cli.remove.build_service", return_value=docs_service):
        result = runner.invoke(app, ["remove", "ghost-lib", "--yes"])
    assert result.exit_code == 1
    assert "Not found:" in result.output


def test_remove_with_yes(docs_service, store) -> None:
    docs_service.add_library("demo-lib")
    docs_service.orchestrator.wait(timeout=10)

    with patch("libdocs.cli.remove.build_service", return_value=docs_service):
        result = runner.invoke(app, ["remove", "demo-lib", "--yes"])

    assert result.exit_code == 0, result.output
    assert "Removed: demo-lib@latest" in result.output
    assert "3 chunks deleted" in result.output
    assert store.get_library_config("demo-lib", "latest") is None


def test_remove_prompt_declined(docs_service, store) -> None:
    docs_service.add_library("demo-lib", enabled=False)

    with patch("libdocs.cli.remove.build_service", return_value=docs_service):
        result = runner.invoke(app, ["remove", "demo-lib"], input="n\n")

    assert result.exit_code == 0
    assert "Cancelled" in result.output
    assert store.get_library_config("demo-lib", "latest") is not None


def test_remove_prompt_accepted(docs_service, store) -> None:
    docs_service.add_library("demo-lib", enabled=False)

    with patch("libdocs.cli.remove.build_service", return_value=docs_service):
        result = runner.invoke(app, ["remove", "demo-lib"], input="y\n")

    assert result.exit_code == 0, result.output
    assert store.get_library_config("demo-lib", "latest") is None


def test_remove_refused_while_job_active(docs_service, store) -> None:
    docs_service.add_library("demo-lib", enabled=False)
    config = store.get_library_config("demo-lib", "latest")
    store.create_job(config.id)

    with patch("libdocs.cli.remove.build_service", return_value=docs_service):
        result = runner.invoke(app, ["remove", "demo-lib", "--yes"])

    assert result.exit_code == 1
    assert "Busy:" in result.output
    assert store.get_library_config("demo-lib", "latest") is not None
