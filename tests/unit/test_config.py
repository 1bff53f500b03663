"""Tests for the doconvo config loader."""

from __future__ import annotations

import stat
import warnings
from pathlib import Path

import pytest
import yaml

from doconvo.config import (
    ChunkerCfg,
    ConfigError,
    DoconvoConfig,
    RagCfg,
    ensure_global_config,
    load_config,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "DOCONVO_CONVO_MODEL",
        "DOCONVO_TITLE_MODEL",
        "DOCONVO_EMBEDDING_MODEL",
        "DOCONVO_DATA_DIR",
    ):
        monkeypatch.delenv(var, raising=False)


def _write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.dump(data), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_file(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing" / "config.yaml")

    assert cfg.convo.model == "ollama/llama3.2"
    assert cfg.convo.temperature == 0.8
    assert cfg.title.temperature == 0.2
    assert cfg.embedding.model == "ollama/nomic-embed-text"
    assert cfg.rag == RagCfg(results_count=20, similarity_threshold=0.5, needed_count=10, context_pairs=2)
    assert cfg.chunker == ChunkerCfg(chunk_size=500, overlap=50)
    assert cfg.data_dir == Path.home() / ".doconvo"
    assert cfg.db_path == cfg.data_dir / "doconvo.db"


@pytest.mark.parametrize("content", ["", "~\n"])
def test_load_config_empty_or_null_file(tmp_path: Path, content: str) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(content, encoding="utf-8")
    assert load_config(path) == DoconvoConfig()


# ---------------------------------------------------------------------------
# YAML overrides
# ---------------------------------------------------------------------------


def test_yaml_overrides_defaults(tmp_path: Path) -> None:
    path = _write_yaml(tmp_path / "config.yaml", {
        "convo": {"model": "anthropic/claude-3-5-haiku-20241022"},
        "title": {"model": "openai/gpt-4o-mini", "temperature": 0.0},
        "embedding": {"model": "openai/text-embedding-3-small"},
        "rag": {"similarity_threshold": 0.3, "needed_count": 5},
        "chunker": {"chunk_size": 800, "overlap": 100},
        "data_dir": str(tmp_path / "data"),
    })

    cfg = load_config(path)

    assert cfg.convo.model == "anthropic/claude-3-5-haiku-20241022"
    assert cfg.convo.temperature == 0.8
    assert (cfg.title.model, cfg.title.temperature) == ("openai/gpt-4o-mini", 0.0)
    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.rag.similarity_threshold == 0.3
    assert cfg.rag.needed_count == 5
    assert cfg.rag.results_count == 20
    assert cfg.chunker == ChunkerCfg(chunk_size=800, overlap=100)
    assert cfg.data_dir == tmp_path / "data"


def test_non_mapping_yaml_rejected(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(path)


@pytest.mark.parametrize("data", [
    {"chunker": {"chunk_size": 0}},
    {"chunker": {"chunk_size": 100, "overlap": 100}},
    {"rag": {"similarity_threshold": 1.5}},
    {"rag": {"needed_count": 0}},
    {"rag": {"context_pairs": -1}},
])
def test_invalid_values_rejected(tmp_path: Path, data: dict) -> None:
    with pytest.raises(ConfigError):
        load_config(_write_yaml(tmp_path / "config.yaml", data))


# ---------------------------------------------------------------------------
# Credentials never come from config
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("bad_key", ["api_key", "openai_api_key", "token", "password", "client_secret"])
def test_api_key_fields_rejected(tmp_path: Path, bad_key: str) -> None:
    path = _write_yaml(tmp_path / "config.yaml", {bad_key: "sk-123"})
    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(path)


def test_nested_api_key_rejected(tmp_path: Path) -> None:
    path = _write_yaml(tmp_path / "config.yaml", {"convo": {"api_key": "sk-123"}})
    with pytest.raises(ConfigError, match="convo.api_key"):
        load_config(path)


def test_config_error_is_value_error() -> None:
    assert issubclass(ConfigError, ValueError)


# ---------------------------------------------------------------------------
# Unknown keys
# ---------------------------------------------------------------------------


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    path = _write_yaml(tmp_path / "config.yaml", {"retrieval": {"top_k": 3}})
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        load_config(path)
    assert any("retrieval" in str(w.message) for w in caught)


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------


def test_env_vars_override_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write_yaml(tmp_path / "config.yaml", {"convo": {"model": "ollama/llama3.2"}})
    monkeypatch.setenv("DOCONVO_CONVO_MODEL", "openai/gpt-4o-mini")
    monkeypatch.setenv("DOCONVO_TITLE_MODEL", "openai/gpt-4o-mini")
    monkeypatch.setenv("DOCONVO_EMBEDDING_MODEL", "openai/text-embedding-3-small")
    monkeypatch.setenv("DOCONVO_DATA_DIR", str(tmp_path / "elsewhere"))

    cfg = load_config(path)

    assert cfg.convo.model == "openai/gpt-4o-mini"
    assert cfg.title.model == "openai/gpt-4o-mini"
    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.data_dir == tmp_path / "elsewhere"


def test_empty_env_var_does_not_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCONVO_CONVO_MODEL", "")
    assert load_config(tmp_path / "none.yaml").convo.model == "ollama/llama3.2"


# ---------------------------------------------------------------------------
# ensure_global_config
# ---------------------------------------------------------------------------


def test_ensure_global_config_creates_loadable_file(tmp_path: Path) -> None:
    target = ensure_global_config(tmp_path / ".doconvo" / "config.yaml")

    assert target.exists()
    text = target.read_text(encoding="utf-8")
    assert "NEVER store API keys" in text
    assert load_config(target) == DoconvoConfig()


def test_ensure_global_config_file_mode(tmp_path: Path) -> None:
    target = ensure_global_config(tmp_path / ".doconvo" / "config.yaml")
    assert stat.S_IMODE(target.stat().st_mode) == 0o600


def test_ensure_global_config_keeps_existing(tmp_path: Path) -> None:
    target = tmp_path / "config.yaml"
    target.write_text("convo:\n  model: openai/gpt-4o-mini\n", encoding="utf-8")

    ensure_global_config(target)

    assert load_config(target).convo.model == "openai/gpt-4o-mini"


def test_config_does_not_execute_yaml_load(tmp_path: Path) -> None:
    """Python object tags are refused, never executed."""
    path = tmp_path / "config.yaml"
    path.write_text("!!python/object/apply:os.system ['echo pwned']\n", encoding="utf-8")
    with pytest.raises(yaml.YAMLError):
        load_config(path)
