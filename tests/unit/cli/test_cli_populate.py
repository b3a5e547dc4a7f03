"""Tests for libdocs populate command."""

from __future__ import annotations

from unittest.mock import patch

from typer.testing import CliRunner

from libdocs.cli.main import app
from libdocs.db.models import JobStatus, LibraryConfig

runner = CliRunner()


def _invoke(service, *args: str):
    with patch("libdocs.cli.populate.build_service", return_value=service):
        return runner.invoke(app, ["populate", *args])


def test_populate_requires_name_or_all(docs_service) -> None:
    assert _invoke(docs_service).exit_code == 2
    assert _invoke(docs_service, "demo-lib", "--all").exit_code == 2


def test_populate_single_library(docs_service) -> None:
    docs_service.add_library("demo-lib", enabled=False)

    result = _invoke(docs_service, "demo-lib")

    assert result.exit_code == 0, result.output
    assert "version 1.0.0: 3 chunks" in result.output
    assert docs_service.check_status("demo-lib").chunk_count == 3


def test_populate_unknown_library_exits_1(docs_service) -> None:
    result = _invoke(docs_service, "ghost-lib")
    assert result.exit_code == 1
    assert "Not found:" in result.output


def test_populate_failure_exits_1(docs_service) -> None:
    docs_service.orchestrator._fetcher.fetch.side_effect = RuntimeError("host down")
    docs_service.add_library("demo-lib", enabled=False)

    result = _invoke(docs_service, "demo-lib")

    assert result.exit_code == 1
    assert "failed during fetching" in result.output


def test_populate_all_up_to_date(docs_service) -> None:
    result = _invoke(docs_service, "--all")
    assert result.exit_code == 0
    assert "up to date" in result.output


def test_populate_all_runs_pending_libraries(docs_service, store) -> None:
    docs_service.add_library("demo-lib", enabled=False)
    store.upsert_library_config(LibraryConfig(name="demo-lib"))

    result = _invoke(docs_service, "--all")

    assert result.exit_code == 0, result.output
    assert "demo-lib@latest" in result.output
    assert "3 chunks" in result.output


def test_populate_recover_fails_interrupted_jobs(docs_service, store) -> None:
    docs_service.add_library("demo-lib", enabled=False)
    config = store.get_library_config("demo-lib", "latest")
    stale = store.create_job(config.id)

    result = _invoke(docs_service, "demo-lib", "--recover")

    assert result.exit_code == 0, result.output
    assert "Recovered 1 interrupted job(s)" in result.output
    assert store.get_job(stale.id).status is JobStatus.FAILED
    assert docs_service.check_status("demo-lib").latest_job.status is JobStatus.COMPLETED
