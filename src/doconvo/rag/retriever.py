"""Per-document retriever: top-K nearest chunks above a similarity floor.

Each SourceDocument owns one collection (``doc-<id>``). A turn queries every
configured document; queries run on a small thread pool but results are
collected in document order, so concurrency never changes the output.

Failure policy is fail-fast: one failing document aborts the whole
retrieval with RetrievalError. A document that was never scanned has no
collection and contributes zero results.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

from doconvo.db.models import RetrievalResult, SourceDocument
from doconvo.db.vectors import EmbeddingFn, VectorIndex
from doconvo.errors import CollectionNotFoundError, DoconvoError, RetrievalError

logger = logging.getLogger(__name__)


@dataclass
class RetrieverConfig:
    """Configuration for the retriever.

    Attributes:
        results_count: Nearest chunks requested per document.
        similarity_threshold: Results below this similarity are dropped
            (the boundary is inclusive).
        max_workers: Documents queried concurrently.
    """

    results_count: int = 20
    similarity_threshold: float = 0.5
    max_workers: int = 4


def retrieve(
    documents: Sequence[SourceDocument],
    query_text: str,
    index: VectorIndex,
    embedding_fn: EmbeddingFn,
    config: RetrieverConfig | None = None,
) -> list[RetrievalResult]:
    """Query every document and return the concatenated, filtered results.

    Results are grouped by document in the order of *documents*; within a
    document they are in the index's order.

    Raises:
        RetrievalError: If any document's query fails.
    """
    config = config or RetrieverConfig()
    documents = list(documents)
    if not documents:
        return []

    if len(documents) == 1:
        return _retrieve_one(documents[0], query_text, index, embedding_fn, config)

    workers = max(1, min(config.max_workers, len(documents)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="doconvo-retrieve") as pool:
        futures: list[Future[list[RetrievalResult]]] = [
            pool.submit(_retrieve_one, doc, query_text, index, embedding_fn, config)
            for doc in documents
        ]
        results: list[RetrievalResult] = []
        try:
            for future in futures:
                results.extend(future.result())
        except RetrievalError:
            for future in futures:
                future.cancel()
            raise
    return results


def filter_by_similarity(
    results: Sequence[RetrievalResult], threshold: float
) -> list[RetrievalResult]:
    """Keep results whose similarity is at least *threshold*."""
    return [r for r in results if r.similarity >= threshold]


# ------------------------------------------------------------------
# Internals
# ------------------------------------------------------------------


def _retrieve_one(
    document: SourceDocument,
    query_text: str,
    index: VectorIndex,
    embedding_fn: EmbeddingFn,
    config: RetrieverConfig,
) -> list[RetrievalResult]:
    if document.id is None:
        return []
    name = document.collection_name
    try:
        raw = index.query(name, query_text, config.results_count, embedding_fn)
    except CollectionNotFoundError:
        logger.debug("document %r has no collection yet; skipping", document.name)
        return []
    except DoconvoError as exc:
        raise RetrievalError(
            f"failed to query collection {name} for document '{document.name}': {exc}"
        ) from exc

    kept = filter_by_similarity(raw, config.similarity_threshold)
    logger.debug(
        "document %r: %d of %d results above %.2f",
        document.name,
        len(kept),
        len(raw),
        config.similarity_threshold,
    )
    return kept
