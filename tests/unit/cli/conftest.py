"""CLI fixtures: isolated data dir, fake providers, one CliRunner."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from doconvo.db.connection import Database
from doconvo.db.repository import Repository
from doconvo.db.schema import initialize

FACT = "Python is great for scripting."
QUESTION = "What is Python good for?"


class CliEnv:
    """Paths and helpers for one isolated doconvo installation."""

    def __init__(self, tmp_path: Path, embedder, runner: CliRunner) -> None:
        self.config_path = tmp_path / "config.yaml"
        self.data_dir = tmp_path / "data"
        self.docs_dir = tmp_path / "notes"
        self.embedder = embedder
        self.runner = runner
        self.chats: list = []

    def invoke(self, *args: str, input: str | None = None):
        from doconvo.cli.main import app

        return self.runner.invoke(app, ["--config", str(self.config_path), *args], input=input)

    def open_repo(self) -> Repository:
        conn = Database(self.data_dir / "doconvo.db").connect()
        initialize(conn)
        return Repository(conn)


@pytest.fixture
def cli(tmp_path, monkeypatch, make_embedder):
    for var in ("DOCONVO_CONVO_MODEL", "DOCONVO_TITLE_MODEL", "DOCONVO_EMBEDDING_MODEL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("DOCONVO_DATA_DIR", str(tmp_path / "data"))

    embedder = make_embedder(vectors={FACT: [2.0, 0.0], QUESTION: [1.6, 1.2]}, dims=2)
    monkeypatch.setattr("doconvo.cli.runtime.LiteLLMEmbedder", lambda model: embedder)

    env = CliEnv(tmp_path, embedder, CliRunner())
    env.docs_dir.mkdir()
    (env.docs_dir / "python.txt").write_text(FACT)
    return env


@pytest.fixture
def fake_chat(cli, monkeypatch, make_chat):
    """Route every LiteLLMChat the CLI builds to one ScriptedChat."""
    chat = make_chat(tokens=["[python.txt] ", "Python is great for scripting."])
    monkeypatch.setattr("doconvo.cli.chat.LiteLLMChat", lambda model, temperature=0.8: chat)
    return chat
