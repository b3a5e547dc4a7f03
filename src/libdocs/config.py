"""libdocs configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (LIBDOCS_DATABASE, LIBDOCS_EMBEDDING_MODEL, LIBDOCS_SUMMARY_MODEL)
  3. Per-project libdocs.yaml  (in the working directory)
  4. Global ~/.libdocs/config.yaml  (defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from libdocs.db.vectors import METRICS

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".libdocs"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "libdocs.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or max_batch_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token, auth_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # my_secret, client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections. Unknown keys produce a warning.
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["database", "embedding", "retrieval", "population", "fetcher", "chunker", "summarization"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DatabaseCfg:
    """SQLite database location (libdocs.yaml: database:)."""

    path: str = ".libdocs.db"
    busy_timeout: float = 30.0


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (libdocs.yaml: embedding:).

    ``dimensions`` and the batch limits default to the known-model table; they
    are required only for models libdocs does not know.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int | None = None
    max_batch_items: int | None = None
    max_batch_tokens: int | None = None
    timeout: float = 60.0


@dataclass
class RetrievalCfg:
    """Query configuration (libdocs.yaml: retrieval:)."""

    top_k: int = 5
    metric: str = "cosine"


@dataclass
class PopulationCfg:
    """Population orchestrator configuration (libdocs.yaml: population:)."""

    workers: int = 2
    retry_budget: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    stale_after_hours: float | None = 24.0


@dataclass
class FetcherCfg:
    """Documentation host configuration (libdocs.yaml: fetcher:)."""

    base_url: str = "https://docs.rs"
    max_pages: int = 200
    timeout: float = 30.0
    max_retries: int = 3
    request_delay: float = 0.5


@dataclass
class ChunkerCfg:
    """Chunk size limit (libdocs.yaml: chunker:)."""

    max_tokens: int = 512


@dataclass
class SummarizationCfg:
    """Answer summarization (libdocs.yaml: summarization:)."""

    enabled: bool = True
    model: str = "openai/gpt-4o-mini"
    max_tokens: int = 1024
    timeout: float = 60.0


@dataclass
class LibdocsConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    population: PopulationCfg = field(default_factory=PopulationCfg)
    fetcher: FetcherCfg = field(default_factory=FetcherCfg)
    chunker: ChunkerCfg = field(default_factory=ChunkerCfg)
    summarization: SummarizationCfg = field(default_factory=SummarizationCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names.

    Global config must never store credentials; they belong in env vars.
    """

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: LibdocsConfig) -> None:
    """Raise ConfigError for values no component can run with."""
    if cfg.retrieval.metric not in METRICS:
        raise ConfigError(
            f"retrieval.metric must be one of {', '.join(sorted(METRICS))}, "
            f"got '{cfg.retrieval.metric}'"
        )
    positive = {
        "retrieval.top_k": cfg.retrieval.top_k,
        "population.workers": cfg.population.workers,
        "population.retry_budget": cfg.population.retry_budget,
        "fetcher.max_pages": cfg.fetcher.max_pages,
        "chunker.max_tokens": cfg.chunker.max_tokens,
        "summarization.max_tokens": cfg.summarization.max_tokens,
    }
    for name, value in positive.items():
        if value < 1:
            raise ConfigError(f"{name} must be >= 1, got {value}")
    if cfg.embedding.dimensions is not None and cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if cfg.population.backoff_base < 0 or cfg.population.backoff_max < 0:
        raise ConfigError("population backoff values must not be negative")
    if cfg.fetcher.max_retries < 0:
        raise ConfigError(f"fetcher.max_retries must be >= 0, got {cfg.fetcher.max_retries}")
    if not cfg.fetcher.base_url.startswith(("http://", "https://")):
        raise ConfigError(f"fetcher.base_url must be an http(s) URL, got '{cfg.fetcher.base_url}'")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _opt_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _read_yaml(path: Path) -> dict[str, Any]:
    """Parse *path* with yaml.safe_load; an empty file is an empty mapping."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse '{path}': {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{path}' must contain a mapping at the top level")
    return data


def _cfg_from_dict(data: dict[str, Any]) -> LibdocsConfig:
    """Build a *LibdocsConfig* from a merged raw YAML dict."""
    cfg = LibdocsConfig()

    try:
        if "database" in data:
            d = data["database"]
            cfg.database = DatabaseCfg(
                path=str(d.get("path", cfg.database.path)),
                busy_timeout=float(d.get("busy_timeout", cfg.database.busy_timeout)),
            )

        if "embedding" in data:
            e = data["embedding"]
            cfg.embedding = EmbeddingCfg(
                model=str(e.get("model", cfg.embedding.model)),
                dimensions=_opt_int(e.get("dimensions")),
                max_batch_items=_opt_int(e.get("max_batch_items")),
                max_batch_tokens=_opt_int(e.get("max_batch_tokens")),
                timeout=float(e.get("timeout", cfg.embedding.timeout)),
            )

        if "retrieval" in data:
            r = data["retrieval"]
            cfg.retrieval = RetrievalCfg(
                top_k=int(r.get("top_k", cfg.retrieval.top_k)),
                metric=str(r.get("metric", cfg.retrieval.metric)),
            )

        if "population" in data:
            p = data["population"]
            stale = p.get("stale_after_hours", cfg.population.stale_after_hours)
            cfg.population = PopulationCfg(
                workers=int(p.get("workers", cfg.population.workers)),
                retry_budget=int(p.get("retry_budget", cfg.population.retry_budget)),
                backoff_base=float(p.get("backoff_base", cfg.population.backoff_base)),
                backoff_max=float(p.get("backoff_max", cfg.population.backoff_max)),
                stale_after_hours=None if stale is None else float(stale),
            )

        if "fetcher" in data:
            f = data["fetcher"]
            cfg.fetcher = FetcherCfg(
                base_url=str(f.get("base_url", cfg.fetcher.base_url)),
                max_pages=int(f.get("max_pages", cfg.fetcher.max_pages)),
                timeout=float(f.get("timeout", cfg.fetcher.timeout)),
                max_retries=int(f.get("max_retries", cfg.fetcher.max_retries)),
                request_delay=float(f.get("request_delay", cfg.fetcher.request_delay)),
            )

        if "chunker" in data:
            c = data["chunker"]
            cfg.chunker = ChunkerCfg(max_tokens=int(c.get("max_tokens", cfg.chunker.max_tokens)))

        if "summarization" in data:
            s = data["summarization"]
            cfg.summarization = SummarizationCfg(
                enabled=bool(s.get("enabled", cfg.summarization.enabled)),
                model=str(s.get("model", cfg.summarization.model)),
                max_tokens=int(s.get("max_tokens", cfg.summarization.max_tokens)),
                timeout=float(s.get("timeout", cfg.summarization.timeout)),
            )
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: LibdocsConfig) -> LibdocsConfig:
    """Apply LIBDOCS_* environment variable overrides (layer 2)."""
    if path := os.environ.get("LIBDOCS_DATABASE"):
        cfg.database.path = path
    if model := os.environ.get("LIBDOCS_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("LIBDOCS_SUMMARY_MODEL"):
        cfg.summarization.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> LibdocsConfig:
    """Load and return a merged *LibdocsConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *libdocs.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *LibdocsConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if any
            value is malformed or out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.libdocs/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# libdocs global configuration — defaults only.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export VOYAGE_API_KEY=pa-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "summarization:\n"
            "  model: openai/gpt-4o-mini\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
