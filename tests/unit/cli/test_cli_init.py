"""Tests for libdocs init command."""

from __future__ import annotations

import sqlite3
import stat
from pathlib import Path

import yaml
from typer.testing import CliRunner

from libdocs.cli.main import app
from libdocs.config import load_config

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_init(tmp_path: Path, input_str: str | None = None):
    global_cfg = tmp_path / "home" / ".libdocs" / "config.yaml"
    return runner.invoke(
        app,
        ["init", str(tmp_path), "--global-config", str(global_cfg)],
        input=input_str,
    )


# ---------------------------------------------------------------------------
# Scaffold
# ---------------------------------------------------------------------------


def test_init_creates_db_with_schema(tmp_path: Path) -> None:
    result = _run_init(tmp_path)
    assert result.exit_code == 0, result.output

    db_path = tmp_path / ".libdocs.db"
    assert db_path.exists()
    conn = sqlite3.connect(db_path)
    tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()
    assert {"library_configs", "chunks", "population_jobs", "library_stats", "store_settings"} <= tables


def test_init_writes_project_config(tmp_path: Path) -> None:
    _run_init(tmp_path)

    config_path = tmp_path / "libdocs.yaml"
    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert data["embedding"]["model"] == "openai/text-embedding-3-small"
    assert data["retrieval"]["metric"] == "cosine"

    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "none.yaml")
    assert cfg.database.path == ".libdocs.db"
    assert cfg.population.workers == 2


def test_init_creates_global_config(tmp_path: Path) -> None:
    _run_init(tmp_path)

    global_cfg = tmp_path / "home" / ".libdocs" / "config.yaml"
    assert global_cfg.exists()
    assert stat.S_IMODE(global_cfg.stat().st_mode) == 0o600


def test_init_keeps_existing_project_config(tmp_path: Path) -> None:
    (tmp_path / "libdocs.yaml").write_text("retrieval:\n  top_k: 9\n", encoding="utf-8")

    result = _run_init(tmp_path)

    assert result.exit_code == 0, result.output
    assert "kept existing" in result.output
    assert (tmp_path / "libdocs.yaml").read_text(encoding="utf-8") == "retrieval:\n  top_k: 9\n"


def test_init_updates_gitignore(tmp_path: Path) -> None:
    (tmp_path / ".gitignore").write_text("target/\n", encoding="utf-8")

    _run_init(tmp_path)

    content = (tmp_path / ".gitignore").read_text(encoding="utf-8")
    assert content.startswith("target/\n")
    assert ".libdocs.db\n" in content
    assert ".libdocs.db-wal\n" in content
    assert ".libdocs.db-shm\n" in content


def test_init_gitignore_not_duplicated(tmp_path: Path) -> None:
    (tmp_path / ".gitignore").write_text("target/\n", encoding="utf-8")
    _run_init(tmp_path)
    _run_init(tmp_path, "y\n")

    content = (tmp_path / ".gitignore").read_text(encoding="utf-8")
    assert content.count(".libdocs.db-wal") == 1


def test_init_without_gitignore_creates_none(tmp_path: Path) -> None:
    _run_init(tmp_path)
    assert not (tmp_path / ".gitignore").exists()


# ---------------------------------------------------------------------------
# Re-initialization
# ---------------------------------------------------------------------------


def test_reinit_declined(tmp_path: Path) -> None:
    _run_init(tmp_path)
    result = _run_init(tmp_path, "n\n")
    assert result.exit_code == 0
    assert "Cancelled" in result.output


def test_reinit_preserves_data(tmp_path: Path) -> None:
    _run_init(tmp_path)
    db_path = tmp_path / ".libdocs.db"
    conn = sqlite3.connect(db_path)
    conn.execute("INSERT INTO library_configs (name, version_spec) VALUES ('tokio', 'latest')")
    conn.commit()
    conn.close()

    result = _run_init(tmp_path, "y\n")

    assert result.exit_code == 0, result.output
    conn = sqlite3.connect(db_path)
    count = conn.execute("SELECT COUNT(*) FROM library_configs").fetchone()[0]
    conn.close()
    assert count == 1
