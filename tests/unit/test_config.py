"""Tests for memoria config loader."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest
import yaml

from memoria.config import ConfigError, MemoriaConfig, load_config


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture
def no_global(tmp_path):
    return tmp_path / "nonexistent" / "config.yaml"


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for var in ("MEMORIA_DATA_DIR", "MEMORIA_EMBEDDING_MODEL", "MEMORIA_SUMMARY_MODEL"):
        monkeypatch.delenv(var, raising=False)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path, no_global):
    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)

    assert cfg.memory.enabled is True
    assert cfg.memory.data_dir == str((tmp_path / "data").resolve())
    assert cfg.memory.db_path == (tmp_path / "data").resolve() / "memory.sqlite"
    assert cfg.memory.timezone == "UTC"
    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.embedding.dimensions == 1536
    assert cfg.search.vector_weight == 0.7
    assert cfg.search.text_weight == 0.3
    assert cfg.search.max_results == 6
    assert cfg.search.min_score == 0.35
    assert cfg.chunking.tokens == 400
    assert cfg.chunking.overlap == 80
    assert cfg.temporal_decay.half_life_days == 30.0
    assert cfg.context.budget_tokens == 2_000
    assert cfg.compaction.threshold == 100
    assert cfg.compaction.keep_recent == 20


def test_dataclass_defaults_match_loader(tmp_path, no_global):
    assert load_config(project_dir=tmp_path, global_config_path=no_global) == MemoriaConfig()


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_project_config_overrides_defaults(tmp_path, no_global):
    _write_yaml(tmp_path / "memoria.yaml", {
        "memory": {"timezone": "Asia/Tokyo"},
        "search": {"max_results": 3},
    })
    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)
    assert cfg.memory.timezone == "Asia/Tokyo"
    assert cfg.search.max_results == 3
    assert cfg.search.min_score == 0.35  # untouched keys keep defaults


def test_project_overrides_global(tmp_path):
    global_path = tmp_path / "global" / "config.yaml"
    _write_yaml(global_path, {"context": {"budget_tokens": 1_000, "recent_messages": 5}})
    _write_yaml(tmp_path / "memoria.yaml", {"context": {"budget_tokens": 3_000}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_path)

    assert cfg.context.budget_tokens == 3_000
    assert cfg.context.recent_messages == 5


def test_env_overrides(tmp_path, no_global, monkeypatch):
    _write_yaml(tmp_path / "memoria.yaml", {"memory": {"data_dir": "from-yaml"}})
    monkeypatch.setenv("MEMORIA_DATA_DIR", "/srv/memory")
    monkeypatch.setenv("MEMORIA_EMBEDDING_MODEL", "ollama/nomic-embed-text")
    monkeypatch.setenv("MEMORIA_SUMMARY_MODEL", "openai/gpt-4o-mini")

    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)

    assert cfg.memory.data_dir == str(Path("/srv/memory").resolve())
    assert cfg.embedding.model == "ollama/nomic-embed-text"
    assert cfg.compaction.model == "openai/gpt-4o-mini"


def test_empty_yaml_file(tmp_path, no_global):
    (tmp_path / "memoria.yaml").write_text("", encoding="utf-8")
    assert load_config(project_dir=tmp_path, global_config_path=no_global) == MemoriaConfig()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_global_config_rejects_api_keys(tmp_path):
    global_path = tmp_path / "global" / "config.yaml"
    _write_yaml(global_path, {"embedding": {"api_key": "sk-leaked"}})
    with pytest.raises(ConfigError, match="embedding.api_key"):
        load_config(project_dir=tmp_path, global_config_path=global_path)


def test_budget_tokens_is_not_a_secret(tmp_path):
    global_path = tmp_path / "global" / "config.yaml"
    _write_yaml(global_path, {"context": {"budget_tokens": 500}})
    assert load_config(project_dir=tmp_path, global_config_path=global_path).context.budget_tokens == 500


def test_unknown_section_warns(tmp_path, no_global):
    _write_yaml(tmp_path / "memoria.yaml", {"retrieval": {"top_k": 3}})
    with pytest.warns(UserWarning, match="retrieval"):
        load_config(project_dir=tmp_path, global_config_path=no_global)


def test_known_sections_do_not_warn(tmp_path, no_global):
    _write_yaml(tmp_path / "memoria.yaml", {"compaction": {"threshold": 50}})
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        load_config(project_dir=tmp_path, global_config_path=no_global)


@pytest.mark.parametrize("data,match", [
    ({"memory": {"timezone": "Mars/Olympus"}}, "timezone"),
    ({"embedding": {"dimensions": 0}}, "dimensions"),
    ({"chunking": {"tokens": 100, "overlap": 100}}, "overlap"),
    ({"search": {"max_results": 0}}, "max_results"),
    ({"compaction": {"keep_recent": -1}}, "keep_recent"),
    ({"search": {"max_results": "lots"}}, "Invalid config value"),
    ({"search": ["not", "a", "mapping"]}, "mapping"),
])
def test_invalid_values_raise(tmp_path, no_global, data, match):
    _write_yaml(tmp_path / "memoria.yaml", data)
    with pytest.raises(ConfigError, match=match):
        load_config(project_dir=tmp_path, global_config_path=no_global)


def test_relative_data_dir_is_anchored_at_project(tmp_path, no_global, monkeypatch):
    project = tmp_path / "bot"
    _write_yaml(project / "memoria.yaml", {"memory": {"data_dir": "state"}})
    monkeypatch.chdir(tmp_path)

    cfg = load_config(project_dir=project, global_config_path=no_global)

    assert cfg.memory.data_dir == str((project / "state").resolve())
