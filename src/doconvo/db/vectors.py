"""Vector index adapter: per-document collections on top of sqlite-vec.

Each collection owns a row in ``collections``, its chunk rows in ``chunks`` and
one ``vec0`` virtual table keyed by the chunk rowid. The vec table is created
the first time embeddings are added, once the dimensionality is known.

Embeddings are unit-normalized before storage, so the L2 distance returned by
sqlite-vec maps exactly onto cosine similarity: ``cos = 1 - d² / 2``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import sqlite3
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from doconvo.db.models import Chunk, RetrievalResult
from doconvo.errors import (
    AddChunksError,
    CollectionNotFoundError,
    IndexConsistencyError,
    VectorIndexError,
)
from doconvo.rag.embedding import EmbeddingFunction

logger = logging.getLogger(__name__)

EmbeddingFn = Callable[[str], list[float]]

# sqlite-vec rejects k-NN queries with k above this.
_MAX_K = 4096


@dataclass
class Collection:
    name: str
    metadata: dict[str, str] = field(default_factory=dict)
    dimensions: int | None = None

    @property
    def vec_table(self) -> str:
        return vec_table_name(self.name)


def collection_to_slug(name: str) -> str:
    """Convert a collection name to a valid table name suffix.

    Examples:
        "doc-1"  -> "doc_1"
        "Doc 2!" -> "doc_2_"
    """
    return re.sub(r"[^a-z0-9]", "_", name.lower())


def vec_table_name(name: str) -> str:
    """Return the vec table for collection *name*.

    A short digest keeps names that slug identically ("doc-1", "doc_1") apart.
    """
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
    return f"vec_{collection_to_slug(name)}_{digest}"


class VectorIndex:
    """Collections of embedded chunks with k-nearest-neighbour search.

    Writes and reads of one collection are serialised through a per-collection
    lock. ``replace_collection`` swaps a whole generation in one transaction,
    so a re-scan never exposes an empty or half-written collection to a query.
    The connection itself is guarded by *lock*, which should be shared with
    any other object using the same connection.

    Args:
        conn: Open connection with sqlite-vec loaded and schema initialised.
        lock: Lock guarding *conn*; a private one is created if omitted.
        max_workers: Embedding fan-out for ``add_chunks`` (default: CPU count).
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        lock: threading.RLock | None = None,
        max_workers: int | None = None,
    ) -> None:
        self._conn = conn
        self._conn_lock = lock or threading.RLock()
        self._max_workers = max_workers or os.cpu_count() or 1
        self._collection_locks: dict[str, threading.RLock] = {}
        self._wrappers: dict[EmbeddingFn, EmbeddingFunction] = {}
        self._guard = threading.Lock()

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def create_collection(
        self,
        name: str,
        metadata: dict[str, str] | None = None,
        dimensions: int | None = None,
    ) -> Collection:
        """Create collection *name*, or return it if it already exists.

        Raises:
            IndexConsistencyError: If *dimensions* is given and differs from the
                dimensionality already stored for the collection.
        """
        with self._lock_for(name), self._conn_lock:
            existing = self._fetch_collection(name)
            if existing is not None:
                if (
                    dimensions is not None
                    and existing.dimensions is not None
                    and existing.dimensions != dimensions
                ):
                    raise IndexConsistencyError(name, existing.dimensions, dimensions)
                if dimensions is not None and existing.dimensions is None:
                    self._set_dimensions(existing, dimensions)
                    self._conn.commit()
                return existing

            collection = Collection(name=name, metadata=dict(metadata or {}))
            self._conn.execute(
                "INSERT INTO collections (name, metadata) VALUES (?, ?)",
                (name, json.dumps(collection.metadata)),
            )
            if dimensions is not None:
                self._set_dimensions(collection, dimensions)
            self._conn.commit()
            logger.debug("created collection %s", name)
            return collection

    def get_collection(self, name: str) -> Collection:
        """Return collection *name*.

        Raises:
            CollectionNotFoundError: If it was never created.
        """
        with self._conn_lock:
            collection = self._fetch_collection(name)
        if collection is None:
            raise CollectionNotFoundError(name)
        return collection

    def list_collections(self) -> list[Collection]:
        with self._conn_lock:
            try:
                rows = self._conn.execute(
                    "SELECT name, metadata, dimensions FROM collections ORDER BY name"
                ).fetchall()
            except sqlite3.Error as exc:
                raise VectorIndexError(f"failed to list collections: {exc}") from exc
        return [_row_to_collection(r) for r in rows]

    def delete_collection(self, name: str) -> bool:
        """Drop collection *name* with its chunks and vectors. Returns False if absent."""
        with self._lock_for(name), self._conn_lock:
            collection = self._fetch_collection(name)
            if collection is None:
                return False
            self._conn.execute(f"DROP TABLE IF EXISTS {collection.vec_table}")
            self._conn.execute("DELETE FROM chunks WHERE collection = ?", (name,))
            self._conn.execute("DELETE FROM collections WHERE name = ?", (name,))
            self._conn.commit()
        logger.debug("deleted collection %s", name)
        return True

    def count(self, collection: Collection | str) -> int:
        name = _name_of(collection)
        with self._conn_lock:
            try:
                return self._conn.execute(
                    "SELECT COUNT(*) FROM chunks WHERE collection = ?", (name,)
                ).fetchone()[0]
            except sqlite3.Error as exc:
                raise VectorIndexError(f"failed to count collection {name}: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_chunks(
        self,
        collection: Collection | str,
        chunks: Sequence[Chunk],
        embedding_fn: EmbeddingFn,
    ) -> None:
        """Embed *chunks* and store them; chunks with an existing id are replaced.

        Embedding fans out over a thread pool. Chunks that embed successfully
        are stored in one transaction even when others fail.

        Raises:
            CollectionNotFoundError: If the collection does not exist.
            IndexConsistencyError: If the embedding size differs from the
                collection's; nothing is stored in that case.
            AddChunksError: If some chunks could not be embedded; lists their ids.
        """
        coll = self.get_collection(_name_of(collection))
        if not chunks:
            return

        embedded, failed, first_error = self._embed_all(chunks, embedding_fn)
        if embedded:
            dim = _single_dimension(coll.name, embedded)
            with self._lock_for(coll.name), self._conn_lock:
                coll = self._fetch_collection(coll.name)
                if coll is None:
                    raise CollectionNotFoundError(_name_of(collection))
                if coll.dimensions is None:
                    self._set_dimensions(coll, dim)
                elif coll.dimensions != dim:
                    raise IndexConsistencyError(coll.name, coll.dimensions, dim)
                try:
                    for chunk, vector in embedded:
                        self._upsert(coll, chunk, vector)
                    self._conn.commit()
                except sqlite3.Error as exc:
                    self._conn.rollback()
                    raise VectorIndexError(
                        f"failed to store chunks in collection {coll.name}: {exc}"
                    ) from exc

        if failed:
            raise AddChunksError(coll.name, failed, cause=first_error)

    def replace_collection(
        self,
        name: str,
        metadata: dict[str, str] | None,
        chunks: Sequence[Chunk],
        embedding_fn: EmbeddingFn,
    ) -> Collection:
        """Swap collection *name* for a new generation holding exactly *chunks*.

        All chunks are embedded before the collection is touched. The drop,
        re-create and inserts then run as one transaction under the
        collection's lock, so a concurrent query sees either the old
        generation or the new one, never an empty or partial one.

        Raises:
            IndexConsistencyError: If the embeddings disagree on size; the old
                generation is left in place.
            AddChunksError: If some chunks could not be embedded; the new
                generation holds the rest.
        """
        embedded, failed, first_error = self._embed_all(chunks, embedding_fn)
        dim = _single_dimension(name, embedded) if embedded else None

        with self._lock_for(name), self._conn_lock:
            try:
                if not self._conn.in_transaction:
                    self._conn.execute("BEGIN")
                old = self._fetch_collection(name)
                if old is not None:
                    self._conn.execute(f"DROP TABLE IF EXISTS {old.vec_table}")
                    self._conn.execute("DELETE FROM chunks WHERE collection = ?", (name,))
                    self._conn.execute("DELETE FROM collections WHERE name = ?", (name,))
                coll = Collection(name=name, metadata=dict(metadata or {}))
                self._conn.execute(
                    "INSERT INTO collections (name, metadata) VALUES (?, ?)",
                    (name, json.dumps(coll.metadata)),
                )
                if dim is not None:
                    self._set_dimensions(coll, dim)
                for chunk, vector in embedded:
                    self._upsert(coll, chunk, vector)
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise VectorIndexError(f"failed to replace collection {name}: {exc}") from exc
            except BaseException:
                self._conn.rollback()
                raise
        logger.debug("replaced collection %s with %d chunks", name, len(embedded))

        if failed:
            raise AddChunksError(name, failed, cause=first_error)
        return coll

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(
        self,
        collection: Collection | str,
        text: str,
        k: int,
        embedding_fn: EmbeddingFn,
    ) -> list[RetrievalResult]:
        """Return up to *k* chunks nearest to *text* by cosine similarity.

        Raises:
            CollectionNotFoundError: If the collection does not exist.
            IndexConsistencyError: If the query embedding size differs from the
                collection's.
        """
        name = _name_of(collection)
        coll = self.get_collection(name)
        if k <= 0 or coll.dimensions is None:
            return []

        vector = self.embedding_function(embedding_fn)(text)

        # The collection may have been replaced or dropped while embedding.
        with self._lock_for(name), self._conn_lock:
            coll = self._fetch_collection(name)
            if coll is None:
                raise CollectionNotFoundError(name)
            if coll.dimensions is None:
                return []
            if len(vector) != coll.dimensions:
                raise IndexConsistencyError(coll.name, coll.dimensions, len(vector))
            try:
                vec_rows = self._conn.execute(
                    f"SELECT rowid, distance FROM {coll.vec_table} "
                    "WHERE embedding MATCH ? ORDER BY distance LIMIT ?",
                    (json.dumps(vector), min(k, _MAX_K)),
                ).fetchall()
                if not vec_rows:
                    return []
                rowids = [r["rowid"] for r in vec_rows]
                placeholders = ",".join("?" * len(rowids))
                chunk_rows = self._conn.execute(
                    f"SELECT rowid, chunk_id, content, metadata FROM chunks "
                    f"WHERE rowid IN ({placeholders})",
                    rowids,
                ).fetchall()
            except sqlite3.Error as exc:
                raise VectorIndexError(
                    f"failed to query collection {coll.name}: {exc}"
                ) from exc

        by_rowid = {r["rowid"]: r for r in chunk_rows}
        results: list[RetrievalResult] = []
        for vec_row in vec_rows:
            row = by_rowid.get(vec_row["rowid"])
            if row is None:
                continue
            results.append(
                RetrievalResult(
                    id=row["chunk_id"],
                    content=row["content"],
                    similarity=distance_to_similarity(vec_row["distance"]),
                    metadata=json.loads(row["metadata"]),
                )
            )
        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def embedding_function(self, fn: EmbeddingFn) -> EmbeddingFunction:
        """Return the normalizing wrapper for *fn*.

        A plain callable is wrapped once and the wrapper reused, so its
        normalization check runs once per callable rather than once per call.
        """
        if isinstance(fn, EmbeddingFunction):
            return fn
        with self._guard:
            wrapper = self._wrappers.get(fn)
            if wrapper is None:
                wrapper = self._wrappers[fn] = EmbeddingFunction(
                    _CallableProvider(fn), name=getattr(fn, "__name__", "")
                )
            return wrapper

    def _embed_all(
        self, chunks: Sequence[Chunk], embedding_fn: EmbeddingFn
    ) -> tuple[list[tuple[Chunk, list[float]]], list[str], BaseException | None]:
        """Embed *chunks* on the pool; return (embedded, failed ids, first error)."""
        embedded: list[tuple[Chunk, list[float]]] = []
        failed: list[str] = []
        first_error: BaseException | None = None
        if not chunks:
            return embedded, failed, first_error
        embed = self.embedding_function(embedding_fn)
        workers = max(1, min(self._max_workers, len(chunks)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [(c, pool.submit(embed, c.content)) for c in chunks]
            for chunk, future in futures:
                try:
                    embedded.append((chunk, future.result()))
                except Exception as exc:
                    logger.error("failed to embed chunk %s: %s", chunk.id, exc)
                    failed.append(chunk.id)
                    if first_error is None:
                        first_error = exc
        return embedded, failed, first_error

    def _lock_for(self, name: str) -> threading.RLock:
        with self._guard:
            lock = self._collection_locks.get(name)
            if lock is None:
                lock = self._collection_locks[name] = threading.RLock()
            return lock

    def _fetch_collection(self, name: str) -> Collection | None:
        try:
            row = self._conn.execute(
                "SELECT name, metadata, dimensions FROM collections WHERE name = ?", (name,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise VectorIndexError(f"failed to read collection {name}: {exc}") from exc
        return _row_to_collection(row) if row else None

    def _set_dimensions(self, collection: Collection, dimensions: int) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")
        self._conn.execute(
            f"CREATE VIRTUAL TABLE IF NOT EXISTS {collection.vec_table} "
            f"USING vec0(embedding float[{dimensions}])"
        )
        self._conn.execute(
            "UPDATE collections SET dimensions = ? WHERE name = ?",
            (dimensions, collection.name),
        )
        collection.dimensions = dimensions

    def _upsert(self, collection: Collection, chunk: Chunk, vector: list[float]) -> None:
        old = self._conn.execute(
            "SELECT rowid FROM chunks WHERE collection = ? AND chunk_id = ?",
            (collection.name, chunk.id),
        ).fetchone()
        if old is not None:
            self._conn.execute(
                f"DELETE FROM {collection.vec_table} WHERE rowid = ?", (old["rowid"],)
            )
            self._conn.execute("DELETE FROM chunks WHERE rowid = ?", (old["rowid"],))
        cur = self._conn.execute(
            "INSERT INTO chunks (collection, chunk_id, content, metadata) VALUES (?, ?, ?, ?)",
            (collection.name, chunk.id, chunk.content, json.dumps(chunk.metadata)),
        )
        self._conn.execute(
            f"INSERT INTO {collection.vec_table}(rowid, embedding) VALUES (?, ?)",
            (cur.lastrowid, json.dumps(vector)),
        )


def distance_to_similarity(distance: float) -> float:
    """Map the L2 distance between two unit vectors to cosine similarity in [0, 1]."""
    return max(0.0, min(1.0, 1.0 - (distance * distance) / 2.0))


class _CallableProvider:
    def __init__(self, fn: EmbeddingFn) -> None:
        self._fn = fn

    def embed(self, text: str) -> list[float]:
        return self._fn(text)


def _single_dimension(name: str, embedded: Sequence[tuple[Chunk, list[float]]]) -> int:
    dims = {len(v) for _, v in embedded}
    if len(dims) > 1:
        raise IndexConsistencyError(name, min(dims), max(dims))
    (dim,) = dims
    return dim


def _name_of(collection: Collection | str) -> str:
    return collection.name if isinstance(collection, Collection) else collection


def _row_to_collection(row: sqlite3.Row) -> Collection:
    return Collection(
        name=row["name"],
        metadata=json.loads(row["metadata"]),
        dimensions=row["dimensions"],
    )
