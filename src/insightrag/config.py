"""InsightRAG configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (INSIGHTRAG_EMBEDDING_MODEL, INSIGHTRAG_GENERATION_MODEL,
                             INSIGHTRAG_CHUNK_SIZE, INSIGHTRAG_BATCH_POLICY)
  3. Per-project insightrag.yaml
  4. Global ~/.insightrag/config.yaml  (model defaults only — no API keys)
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

from insightrag.errors import ConfigError
from insightrag.ingest.batch_embedder import (
    DEFAULT_BATCH_DELAY,
    DEFAULT_CHUNK_SIZE,
    BatchFailurePolicy,
)
from insightrag.rag.llm_client import DEFAULT_EMBEDDING_MODEL, DEFAULT_GENERATION_MODEL
from insightrag.rag.pipeline import DEFAULT_TOP_K
from insightrag.store.vectors import METRICS

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".insightrag"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "insightrag.yaml"

# Fields that suggest an API key — forbidden in global config.
# Does NOT match legitimate config keys like max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # access_token, auth_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections — unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["data", "embedding", "index", "retrieval", "generation"]
)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DataCfg:
    """Record source (insightrag.yaml: data:)."""

    path: str = "data/customer_feedback_satisfaction.csv"


@dataclass
class EmbeddingCfg:
    """Embedding model and batching (insightrag.yaml: embedding:).

    Attributes:
        model: LiteLLM embedding model string.
        chunk_size: Records per embedding batch.
        on_batch_failure: 'fail-fast' or 'skip'.
        max_workers: Parallel batch workers (1 = sequential).
        batch_timeout: Seconds to wait per batch (None = no limit).
        batch_delay: Pause between sequential batches, in seconds.
        num_retries: LiteLLM retries on transient provider errors.
    """

    model: str = DEFAULT_EMBEDDING_MODEL
    chunk_size: int = DEFAULT_CHUNK_SIZE
    on_batch_failure: str = BatchFailurePolicy.SKIP.value
    max_workers: int = 1
    batch_timeout: float | None = None
    batch_delay: float = DEFAULT_BATCH_DELAY
    num_retries: int = 3


@dataclass
class IndexCfg:
    """Vector index (insightrag.yaml: index:)."""

    metric: str = "cosine"
    dedupe: bool = False


@dataclass
class RetrievalCfg:
    """Retrieval (insightrag.yaml: retrieval:)."""

    top_k: int = DEFAULT_TOP_K


@dataclass
class GenerationCfg:
    """Chat completion (insightrag.yaml: generation:)."""

    model: str = DEFAULT_GENERATION_MODEL
    max_tokens: int = 1024
    temperature: float = 0.0
    timeout: float | None = None
    num_retries: int = 3


@dataclass
class InsightConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    data: DataCfg = field(default_factory=DataCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    index: IndexCfg = field(default_factory=IndexCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

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


def validate_config(cfg: InsightConfig) -> InsightConfig:
    """Raise ConfigError for values no pipeline stage can run with."""
    if cfg.embedding.chunk_size <= 0:
        raise ConfigError(f"embedding.chunk_size must be > 0, got {cfg.embedding.chunk_size}")
    if cfg.embedding.max_workers < 1:
        raise ConfigError(f"embedding.max_workers must be >= 1, got {cfg.embedding.max_workers}")
    BatchFailurePolicy.parse(cfg.embedding.on_batch_failure)
    if cfg.index.metric not in METRICS:
        raise ConfigError(
            f"index.metric must be one of {', '.join(sorted(METRICS))}, got '{cfg.index.metric}'"
        )
    if cfg.retrieval.top_k <= 0:
        raise ConfigError(f"retrieval.top_k must be > 0, got {cfg.retrieval.top_k}")
    return cfg


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


def _opt_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data[name] or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(section).__name__}")
    return section


def _strict_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be true or false, got {value!r}")
    return value


def _cfg_from_dict(data: dict[str, Any]) -> InsightConfig:
    """Build an *InsightConfig* from a merged raw YAML dict."""
    cfg = InsightConfig()

    try:
        if "data" in data:
            d = _section(data, "data")
            cfg.data = DataCfg(path=str(d.get("path", cfg.data.path)))

        if "embedding" in data:
            e = _section(data, "embedding")
            cfg.embedding = EmbeddingCfg(
                model=str(e.get("model", cfg.embedding.model)),
                chunk_size=int(e.get("chunk_size", cfg.embedding.chunk_size)),
                on_batch_failure=str(e.get("on_batch_failure", cfg.embedding.on_batch_failure)),
                max_workers=int(e.get("max_workers", cfg.embedding.max_workers)),
                batch_timeout=_opt_float(e.get("batch_timeout", cfg.embedding.batch_timeout)),
                batch_delay=float(e.get("batch_delay", cfg.embedding.batch_delay)),
                num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
            )

        if "index" in data:
            i = _section(data, "index")
            cfg.index = IndexCfg(
                metric=str(i.get("metric", cfg.index.metric)),
                dedupe=_strict_bool(i.get("dedupe", cfg.index.dedupe), "index.dedupe"),
            )

        if "retrieval" in data:
            r = _section(data, "retrieval")
            cfg.retrieval = RetrievalCfg(top_k=int(r.get("top_k", cfg.retrieval.top_k)))

        if "generation" in data:
            g = _section(data, "generation")
            cfg.generation = GenerationCfg(
                model=str(g.get("model", cfg.generation.model)),
                max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
                temperature=float(g.get("temperature", cfg.generation.temperature)),
                timeout=_opt_float(g.get("timeout", cfg.generation.timeout)),
                num_retries=int(g.get("num_retries", cfg.generation.num_retries)),
            )
    except ConfigError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: InsightConfig) -> InsightConfig:
    """Apply INSIGHTRAG_* environment variable overrides (layer 2)."""
    if model := os.environ.get("INSIGHTRAG_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("INSIGHTRAG_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if chunk_size := os.environ.get("INSIGHTRAG_CHUNK_SIZE"):
        try:
            cfg.embedding.chunk_size = int(chunk_size)
        except ValueError:
            raise ConfigError(
                f"INSIGHTRAG_CHUNK_SIZE must be an integer, got {chunk_size!r}"
            ) from None
    if policy := os.environ.get("INSIGHTRAG_BATCH_POLICY"):
        cfg.embedding.on_batch_failure = policy
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> InsightConfig:
    """Load and return a merged, validated *InsightConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function
    (and re-validated with :func:`validate_config`).

    Args:
        project_dir: Directory to search for *insightrag.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields or a
            value is invalid.
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

    return validate_config(cfg)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"'{path}' must contain a mapping at the top level.")
    return data
