"""Memoria configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (MEMORIA_DATA_DIR, MEMORIA_EMBEDDING_MODEL,
                             MEMORIA_SUMMARY_MODEL)
  3. Per-project memoria.yaml
  4. Global ~/.memoria/config.yaml  (no API keys)
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
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".memoria"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "memoria.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like budget_tokens or max_results.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections. Unknown keys produce a warning.
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["memory", "embedding", "search", "chunking", "temporal_decay", "context", "compaction"]
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
class MemoryCfg:
    """Storage configuration (memoria.yaml: memory:)."""

    enabled: bool = True
    data_dir: str = "data"
    timezone: str = "UTC"
    db_name: str = "memory.sqlite"

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_name

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (memoria.yaml: embedding:)."""

    enabled: bool = True
    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536


@dataclass
class SearchCfg:
    """Hybrid search configuration (memoria.yaml: search:)."""

    vector_weight: float = 0.7
    text_weight: float = 0.3
    max_results: int = 6
    min_score: float = 0.35
    candidate_multiplier: int = 4
    snippet_max_chars: int = 700


@dataclass
class ChunkingCfg:
    """Chunk size and overlap in tokens (4 chars per token)."""

    tokens: int = 400
    overlap: int = 80


@dataclass
class TemporalDecayCfg:
    enabled: bool = True
    half_life_days: float = 30.0


@dataclass
class ContextCfg:
    """Context builder configuration (memoria.yaml: context:)."""

    budget_tokens: int = 2_000
    recent_messages: int = 10
    message_max_chars: int = 200
    search_min_tokens: int = 200
    search_results: int = 3


@dataclass
class CompactionCfg:
    """Conversation compaction configuration (memoria.yaml: compaction:)."""

    threshold: int = 100
    keep_recent: int = 20
    model: str = "anthropic/claude-3-5-haiku-20241022"
    timeout: float = 60.0


@dataclass
class MemoriaConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    memory: MemoryCfg = field(default_factory=MemoryCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    temporal_decay: TemporalDecayCfg = field(default_factory=TemporalDecayCfg)
    context: ContextCfg = field(default_factory=ContextCfg)
    compaction: CompactionCfg = field(default_factory=CompactionCfg)


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


def _validate(cfg: MemoriaConfig) -> None:
    """Raise ConfigError for values the engine cannot run with."""
    try:
        ZoneInfo(cfg.memory.timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"memory.timezone: unknown timezone '{cfg.memory.timezone}'") from exc
    if cfg.embedding.dimensions < 1:
        raise ConfigError("embedding.dimensions must be >= 1")
    if cfg.chunking.tokens < 1:
        raise ConfigError("chunking.tokens must be >= 1")
    if not 0 <= cfg.chunking.overlap < cfg.chunking.tokens:
        raise ConfigError("chunking.overlap must be in [0, chunking.tokens)")
    if cfg.search.max_results < 1 or cfg.search.candidate_multiplier < 1:
        raise ConfigError("search.max_results and search.candidate_multiplier must be >= 1")
    if cfg.compaction.keep_recent < 0:
        raise ConfigError("compaction.keep_recent must be >= 0")


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


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(raw).__name__}")
    return raw


def _cfg_from_dict(data: dict[str, Any]) -> MemoriaConfig:
    """Build a *MemoriaConfig* from a merged raw YAML dict."""
    cfg = MemoriaConfig()

    try:
        m = _section(data, "memory")
        cfg.memory = MemoryCfg(
            enabled=bool(m.get("enabled", cfg.memory.enabled)),
            data_dir=str(m.get("data_dir", cfg.memory.data_dir)),
            timezone=str(m.get("timezone", cfg.memory.timezone)),
            db_name=str(m.get("db_name", cfg.memory.db_name)),
        )

        e = _section(data, "embedding")
        cfg.embedding = EmbeddingCfg(
            enabled=bool(e.get("enabled", cfg.embedding.enabled)),
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
        )

        s = _section(data, "search")
        cfg.search = SearchCfg(
            vector_weight=float(s.get("vector_weight", cfg.search.vector_weight)),
            text_weight=float(s.get("text_weight", cfg.search.text_weight)),
            max_results=int(s.get("max_results", cfg.search.max_results)),
            min_score=float(s.get("min_score", cfg.search.min_score)),
            candidate_multiplier=int(
                s.get("candidate_multiplier", cfg.search.candidate_multiplier)
            ),
            snippet_max_chars=int(s.get("snippet_max_chars", cfg.search.snippet_max_chars)),
        )

        ch = _section(data, "chunking")
        cfg.chunking = ChunkingCfg(
            tokens=int(ch.get("tokens", cfg.chunking.tokens)),
            overlap=int(ch.get("overlap", cfg.chunking.overlap)),
        )

        td = _section(data, "temporal_decay")
        cfg.temporal_decay = TemporalDecayCfg(
            enabled=bool(td.get("enabled", cfg.temporal_decay.enabled)),
            half_life_days=float(td.get("half_life_days", cfg.temporal_decay.half_life_days)),
        )

        c = _section(data, "context")
        cfg.context = ContextCfg(
            budget_tokens=int(c.get("budget_tokens", cfg.context.budget_tokens)),
            recent_messages=int(c.get("recent_messages", cfg.context.recent_messages)),
            message_max_chars=int(c.get("message_max_chars", cfg.context.message_max_chars)),
            search_min_tokens=int(c.get("search_min_tokens", cfg.context.search_min_tokens)),
            search_results=int(c.get("search_results", cfg.context.search_results)),
        )

        co = _section(data, "compaction")
        cfg.compaction = CompactionCfg(
            threshold=int(co.get("threshold", cfg.compaction.threshold)),
            keep_recent=int(co.get("keep_recent", cfg.compaction.keep_recent)),
            model=str(co.get("model", cfg.compaction.model)),
            timeout=float(co.get("timeout", cfg.compaction.timeout)),
        )
    except ConfigError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: MemoriaConfig) -> MemoriaConfig:
    """Apply MEMORIA_* environment variable overrides (layer 2)."""
    if data_dir := os.environ.get("MEMORIA_DATA_DIR"):
        cfg.memory.data_dir = data_dir
    if model := os.environ.get("MEMORIA_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("MEMORIA_SUMMARY_MODEL"):
        cfg.compaction.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> MemoriaConfig:
    """Load and return a merged *MemoriaConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *memoria.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *MemoriaConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields or a value
            is invalid.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    # A relative data_dir lives under the project directory, not the CWD.
    cfg.memory.data_dir = str((search_dir / cfg.memory.data_dir).resolve())

    _validate(cfg)
    return cfg
