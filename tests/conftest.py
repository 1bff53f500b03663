"""Shared pytest fixtures."""

from __future__ import annotations

import re
import threading
import zlib

import pytest

from doconvo.db.connection import Database
from doconvo.db.repository import Repository
from doconvo.db.schema import initialize
from doconvo.db.vectors import VectorIndex
from doconvo.errors import ProviderError


class FakeEmbedder:
    """Deterministic, unnormalized bag-of-words embedder.

    Texts listed in *vectors* get that exact vector; anything else is hashed
    word by word into ``dims`` buckets and scaled by 3 so callers must
    normalize.
    """

    def __init__(self, vectors: dict[str, list[float]] | None = None, dims: int = 8) -> None:
        self.vectors = dict(vectors or {})
        self.dims = dims
        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        self._lock = threading.Lock()

    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.calls.append(text)
        if text in self.fail_on:
            raise ProviderError(f"cannot embed {text!r}")
        if text in self.vectors:
            return list(self.vectors[text])
        vec = [0.0] * self.dims
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            vec[zlib.crc32(word.encode()) % self.dims] += 3.0
        if not any(vec):
            vec[0] = 3.0
        return vec

    __call__ = embed


class ScriptedChat:
    """Chat provider that streams a fixed token list and answers ``chat`` with *reply*.

    ``gate``: when set, streaming waits on it after the first token.
    ``error``: raised from the stream after all tokens.
    """

    def __init__(
        self,
        tokens: list[str] | None = None,
        reply: str = "Python Scripting Strengths Overview",
        error: Exception | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.tokens = list(tokens if tokens is not None else ["Hello", " there"])
        self.reply = reply
        self.error = error
        self.gate = gate
        self.stream_calls: list[list] = []
        self.chat_calls: list[list] = []

    def chat(self, messages, cancel=None) -> str:
        self.chat_calls.append(list(messages))
        return self.reply

    def chat_stream(self, messages, cancel=None):
        self.stream_calls.append(list(messages))
        for i, token in enumerate(self.tokens):
            if cancel is not None and cancel.is_set():
                return
            yield token
            if i == 0 and self.gate is not None:
                self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error


class MemoryStore:
    """SessionStore that records every save."""

    def __init__(self) -> None:
        self.sessions: list = []
        self.documents: list = []

    def save_session(self, conversation) -> None:
        if conversation.id is None:
            conversation.id = 1
        self.sessions.append([m.content for m in conversation.messages])

    def save_document(self, document) -> None:
        self.documents.append(document)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "doconvo.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def db_lock():
    return threading.RLock()


@pytest.fixture
def repo(tmp_db, db_lock):
    return Repository(tmp_db, db_lock)


@pytest.fixture
def index(tmp_db, db_lock):
    return VectorIndex(tmp_db, db_lock, max_workers=2)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def make_embedder():
    return FakeEmbedder


@pytest.fixture
def make_chat():
    return ScriptedChat


@pytest.fixture
def memory_store():
    return MemoryStore()
