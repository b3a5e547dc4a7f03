"""Tests for libdocs query command."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from libdocs.cli.main import app
from libdocs.errors import ProviderError
from libdocs.rag.summarizer import AnswerSummarizer

runner = CliRunner()


@pytest.fixture
def populated(docs_service):
    docs_service.add_library("demo-lib")
    docs_service.orchestrator.wait(timeout=10)
    return docs_service


def _invoke(service, *args: str):
    with patch("libdocs.cli.query.build_service", return_value=service) as mock_build:
        result = runner.invoke(app, ["query", *args])
    return result, mock_build


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def test_query_prints_ranked_chunks(populated) -> None:
    result, mock_build = _invoke(populated, "demo-lib", "lock the mutex", "--no-summary")

    assert result.exit_code == 0, result.output
    assert "1. demo_lib::Mutex" in result.output
    assert "similarity:" in result.output
    assert "https://docs.rs/demo-lib/1.0.0/demo_lib/struct.Mutex.html" in result.output
    mock_build.assert_called_once_with(None, api_keys=True, summarization=False)


def test_query_plain_output(populated) -> None:
    result, _ = _invoke(populated, "demo-lib", "spawn", "--plain", "--top-k", "1")

    assert result.exit_code == 0, result.output
    assert result.output.startswith("1. [demo_lib::spawn] ")
    assert "2. [" not in result.output
    assert "(similarity: " in result.output


def test_query_with_summary(populated) -> None:
    summarizer = MagicMock(spec=AnswerSummarizer)
    summarizer.summarize.return_value = "Call Mutex::lock."
    populated.summarizer = summarizer

    result, mock_build = _invoke(populated, "demo-lib", "lock the mutex")

    assert result.exit_code == 0, result.output
    assert "Call Mutex::lock." in result.output
    mock_build.assert_called_once_with(None, api_keys=True, summarization=True)


def test_query_summary_failure_still_shows_chunks(populated) -> None:
    summarizer = MagicMock(spec=AnswerSummarizer)
    summarizer.summarize.side_effect = ProviderError("model overloaded")
    populated.summarizer = summarizer

    result, _ = _invoke(populated, "demo-lib", "lock the mutex")

    assert result.exit_code == 0, result.output
    assert "Summary unavailable" in result.output
    assert "demo_lib::Mutex" in result.output


# ---------------------------------------------------------------------------
# Refusals
# ---------------------------------------------------------------------------


def test_query_unknown_library_exits_1(docs_service) -> None:
    result, _ = _invoke(docs_service, "ghost-lib", "anything", "--no-summary")
    assert result.exit_code == 1
    assert "Not found:" in result.output


def test_query_unpopulated_library_exits_1(docs_service) -> None:
    docs_service.add_library("demo-lib", enabled=False)
    result, _ = _invoke(docs_service, "demo-lib", "mutex", "--no-summary")
    assert result.exit_code == 1
    assert "not been populated" in result.output


def test_query_blank_question_exits_1(populated) -> None:
    result, _ = _invoke(populated, "demo-lib", "   ", "--no-summary")
    assert result.exit_code == 1


def test_query_top_k_must_be_positive(populated) -> None:
    result, _ = _invoke(populated, "demo-lib", "mutex", "--top-k", "0")
    assert result.exit_code == 2


def test_query_no_db_exits_1(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["query", "tokio", "spawn", "--db", str(tmp_path / "missing.db")])
    assert result.exit_code == 1
    assert "libdocs init" in result.output
