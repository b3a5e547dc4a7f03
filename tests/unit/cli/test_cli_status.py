"""Tests for libdocs list / status commands."""

from __future__ import annotations

from unittest.mock import patch

from typer.testing import CliRunner

from libdocs.cli.main import app

runner = CliRunner()


# ---------------------------------------------------------------------------
# libdocs list
# ---------------------------------------------------------------------------


def test_list_empty(docs_service) -> None:
    with patch("libdocs.cli.status.build_service", return_value=docs_service):
        result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No libraries configured" in result.output


def test_list_shows_libraries(docs_service) -> None:
    docs_service.add_library("demo-lib")
    docs_service.orchestrator.wait(timeout=10)
    docs_service.add_library("other", enabled=False)

    with patch("libdocs.cli.status.build_service", return_value=docs_service):
        result = runner.invoke(app, ["list"])

    assert result.exit_code == 0, result.output
    assert "demo-lib" in result.output
    assert "1.0.0" in result.output
    assert "completed" in result.output
    assert "disabled" in result.output


def test_list_enabled_only(docs_service) -> None:
    docs_service.add_library("other", enabled=False)
    with patch("libdocs.cli.status.build_service", return_value=docs_service):
        result = runner.invoke(app, ["list", "--enabled"])
    assert "No libraries configured" in result.output


# ---------------------------------------------------------------------------
# libdocs status
# ---------------------------------------------------------------------------


def test_status_populated_library(docs_service) -> None:
    docs_service.add_library("demo-lib", features=["full"])
    docs_service.orchestrator.wait(timeout=10)

    with patch("libdocs.cli.status.build_service", return_value=docs_service):
        result = runner.invoke(app, ["status", "demo-lib"])

    assert result.exit_code == 0, result.output
    assert "demo-lib@latest" in result.output
    assert "1.0.0" in result.output
    assert "full" in result.output
    assert "completed" in result.output
    assert "yes" in result.output


def test_status_failed_job_shows_error(docs_service) -> None:
    docs_service.orchestrator._fetcher.fetch.side_effect = RuntimeError("host down")
    docs_service.add_library("demo-lib")
    docs_service.orchestrator.wait(timeout=10)

    with patch("libdocs.cli.status.build_service", return_value=docs_service):
        result = runner.invoke(app, ["status", "demo-lib"])

    assert result.exit_code == 0, result.output
    assert "failed" in result.output
    assert "host down" in result.output


def test_status_unknown_library_exits_1(docs_service) -> None:
    with patch("libdocs.cli.status.build_service", return_value=docs_service):
        result = runner.invoke(app, ["status", "ghost-lib"])
    assert result.exit_code == 1
    assert "Not found:" in result.output
