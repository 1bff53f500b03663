"""doconvo configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (DOCONVO_CONVO_MODEL, DOCONVO_TITLE_MODEL,
                             DOCONVO_EMBEDDING_MODEL, DOCONVO_DATA_DIR)
  3. Global ~/.doconvo/config.yaml  (model and RAG settings only, no API keys)
  4. Hardcoded defaults

Config must never contain API keys; providers read them from environment variables.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from doconvo.errors import ConfigError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_DEFAULT_DATA_DIR: Path = Path.home() / ".doconvo"
_GLOBAL_CONFIG_PATH: Path = _DEFAULT_DATA_DIR / "config.yaml"

DB_FILENAME: str = "doconvo.db"

# Fields that suggest a credential are forbidden in config.
# Does NOT match legitimate keys like max_tokens or results_count.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["convo", "title", "embedding", "rag", "chunker", "data_dir"]
)

__all__ = [
    "ChunkerCfg",
    "ConfigError",
    "ConvoCfg",
    "DoconvoConfig",
    "EmbeddingCfg",
    "RagCfg",
    "TitleCfg",
    "ensure_global_config",
    "load_config",
]


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ConvoCfg:
    """Conversation LLM (config.yaml: convo:)."""

    model: str = "ollama/llama3.2"
    temperature: float = 0.8


@dataclass
class TitleCfg:
    """Title generation LLM (config.yaml: title:)."""

    model: str = "ollama/llama3.2"
    temperature: float = 0.2


@dataclass
class EmbeddingCfg:
    """Embedding model (config.yaml: embedding:)."""

    model: str = "ollama/nomic-embed-text"


@dataclass
class RagCfg:
    """Retrieval settings (config.yaml: rag:).

    Attributes:
        results_count: Nearest chunks fetched per document.
        similarity_threshold: Results below this similarity are dropped (inclusive floor).
        needed_count: Passages handed to the prompt after merging.
        context_pairs: Recent user/assistant pairs folded into the search text.
    """

    results_count: int = 20
    similarity_threshold: float = 0.5
    needed_count: int = 10
    context_pairs: int = 2


@dataclass
class ChunkerCfg:
    """Fixed-window chunker (config.yaml: chunker:). Sizes are in characters."""

    chunk_size: int = 500
    overlap: int = 50


@dataclass
class DoconvoConfig:
    """Root configuration object, built by load_config() from merged layers."""

    convo: ConvoCfg = field(default_factory=ConvoCfg)
    title: TitleCfg = field(default_factory=TitleCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    rag: RagCfg = field(default_factory=RagCfg)
    chunker: ChunkerCfg = field(default_factory=ChunkerCfg)
    data_dir: Path = field(default_factory=lambda: _DEFAULT_DATA_DIR)

    @property
    def db_path(self) -> Path:
        return self.data_dir / DB_FILENAME


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
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
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
                f"Unknown config key '{key}' in '{source}' is ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: DoconvoConfig) -> None:
    if cfg.chunker.chunk_size < 1:
        raise ConfigError(f"chunker.chunk_size must be >= 1, got {cfg.chunker.chunk_size}")
    if not 0 <= cfg.chunker.overlap < cfg.chunker.chunk_size:
        raise ConfigError(
            f"chunker.overlap must be in [0, chunk_size), got {cfg.chunker.overlap}"
        )
    if cfg.rag.results_count < 1 or cfg.rag.needed_count < 1:
        raise ConfigError("rag.results_count and rag.needed_count must be >= 1")
    if not 0.0 <= cfg.rag.similarity_threshold <= 1.0:
        raise ConfigError(
            f"rag.similarity_threshold must be in [0, 1], got {cfg.rag.similarity_threshold}"
        )
    if cfg.rag.context_pairs < 0:
        raise ConfigError(f"rag.context_pairs must be >= 0, got {cfg.rag.context_pairs}")


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


def _cfg_from_dict(data: dict[str, Any]) -> DoconvoConfig:
    """Build a *DoconvoConfig* from a raw YAML dict."""
    cfg = DoconvoConfig()

    if "convo" in data:
        c = data["convo"] or {}
        cfg.convo = ConvoCfg(
            model=str(c.get("model", cfg.convo.model)),
            temperature=float(c.get("temperature", cfg.convo.temperature)),
        )

    if "title" in data:
        t = data["title"] or {}
        cfg.title = TitleCfg(
            model=str(t.get("model", cfg.title.model)),
            temperature=float(t.get("temperature", cfg.title.temperature)),
        )

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(model=str(e.get("model", cfg.embedding.model)))

    if "rag" in data:
        r = data["rag"] or {}
        cfg.rag = RagCfg(
            results_count=int(r.get("results_count", cfg.rag.results_count)),
            similarity_threshold=float(
                r.get("similarity_threshold", cfg.rag.similarity_threshold)
            ),
            needed_count=int(r.get("needed_count", cfg.rag.needed_count)),
            context_pairs=int(r.get("context_pairs", cfg.rag.context_pairs)),
        )

    if "chunker" in data:
        ch = data["chunker"] or {}
        cfg.chunker = ChunkerCfg(
            chunk_size=int(ch.get("chunk_size", cfg.chunker.chunk_size)),
            overlap=int(ch.get("overlap", cfg.chunker.overlap)),
        )

    if data.get("data_dir"):
        cfg.data_dir = Path(str(data["data_dir"])).expanduser()

    return cfg


def _apply_env_overrides(cfg: DoconvoConfig) -> DoconvoConfig:
    """Apply DOCONVO_* environment variable overrides."""
    if model := os.environ.get("DOCONVO_CONVO_MODEL"):
        cfg.convo.model = model
    if model := os.environ.get("DOCONVO_TITLE_MODEL"):
        cfg.title.model = model
    if model := os.environ.get("DOCONVO_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if data_dir := os.environ.get("DOCONVO_DATA_DIR"):
        cfg.data_dir = Path(data_dir).expanduser()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(global_config_path: Path | None = None) -> DoconvoConfig:
    """Load and return a merged *DoconvoConfig*.

    Args:
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *DoconvoConfig* with env var overrides applied.

    Raises:
        ConfigError: If the config contains API-key-like fields or invalid values.
    """
    path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH

    raw: dict[str, Any] = {}
    if path.exists():
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Config '{path}' must be a YAML mapping.")
        _check_no_api_keys(raw, path)
        _warn_unknown_keys(raw, path)

    cfg = _apply_env_overrides(_cfg_from_dict(raw))
    _validate(cfg)
    return cfg


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Create ``~/.doconvo/config.yaml`` with defaults if it does not exist.

    The parent directory gets mode 0o700 and the file mode 0o600.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# doconvo configuration: models and retrieval settings only.\n"
            "# NEVER store API keys here; use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export ANTHROPIC_API_KEY=sk-ant-...\n"
            "\n"
            "convo:\n"
            "  model: ollama/llama3.2\n"
            "  temperature: 0.8\n"
            "\n"
            "title:\n"
            "  model: ollama/llama3.2\n"
            "  temperature: 0.2\n"
            "\n"
            "embedding:\n"
            "  model: ollama/nomic-embed-text\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
