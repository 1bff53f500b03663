"""Shared CLI wiring: open the database and build index, repository, embedder."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import typer

from doconvo.config import DoconvoConfig
from doconvo.db.connection import Database
from doconvo.db.repository import Repository
from doconvo.db.schema import initialize
from doconvo.db.vectors import VectorIndex
from doconvo.rag.embedding import EmbeddingFunction
from doconvo.rag.llm_client import LiteLLMEmbedder


@dataclass
class Runtime:
    config: DoconvoConfig
    conn: sqlite3.Connection
    repo: Repository
    index: VectorIndex
    embedding_fn: EmbeddingFunction


def get_config(ctx: typer.Context) -> DoconvoConfig:
    """Config loaded by the root callback."""
    return ctx.find_root().obj


@contextmanager
def open_runtime(config: DoconvoConfig) -> Iterator[Runtime]:
    """Open ``<data_dir>/doconvo.db`` and yield the wired collaborators.

    Repository and VectorIndex share one connection and one lock.
    """
    conn = Database(config.db_path).connect()
    try:
        initialize(conn)
        lock = threading.RLock()
        yield Runtime(
            config=config,
            conn=conn,
            repo=Repository(conn, lock),
            index=VectorIndex(conn, lock),
            embedding_fn=EmbeddingFunction(
                LiteLLMEmbedder(config.embedding.model), name=config.embedding.model
            ),
        )
    finally:
        conn.close()
