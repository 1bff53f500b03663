"""Chunk merger: collapse adjacent retrieved chunks into coherent passages.

Pipeline:
  1. Sort all retrieved results by similarity (desc) and keep the best
     ``needed_count * 2`` to bound merge cost.
  2. Group by ``originalID`` (an unsplit document is its own group).
  3. Merge each multi-chunk group: chunk order ascending, first chunk in
     full, then every chunk whose index is exactly one past the last
     appended chunk, minus its leading ``overlap`` characters.
  4. Re-sort by similarity (desc) and keep ``needed_count``.

The merged similarity is contributing_count / group_size where every
grouped chunk contributes, so a merged group always scores 1.0.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from doconvo.db.models import RetrievalResult
from doconvo.ingest.chunker import DEFAULT_CHUNK_OVERLAP


@dataclass
class MergerConfig:
    needed_count: int = 10
    overlap: int = DEFAULT_CHUNK_OVERLAP


def select_passages(
    results: Sequence[RetrievalResult],
    config: MergerConfig | None = None,
) -> list[RetrievalResult]:
    """Cap, merge, re-sort and truncate *results* for the system prompt.

    Args:
        results: Retrieval results from all documents, any order.
        config: Merger configuration.

    Returns:
        At most ``config.needed_count`` passages, best first.
    """
    config = config or MergerConfig()
    capped = _by_similarity(results)[: config.needed_count * 2]
    merged = merge_chunks(capped, overlap=config.overlap)
    return _by_similarity(merged)[: config.needed_count]


def merge_chunks(
    results: Sequence[RetrievalResult], overlap: int = DEFAULT_CHUNK_OVERLAP
) -> list[RetrievalResult]:
    """Merge results that share an ``originalID``.

    Groups are returned in order of first appearance. Singletons pass
    through unchanged.
    """
    groups: dict[str, list[RetrievalResult]] = {}
    for result in results:
        groups.setdefault(result.original_id, []).append(result)

    merged: list[RetrievalResult] = []
    for chunks in groups.values():
        if len(chunks) == 1:
            merged.append(chunks[0])
            continue
        merged.append(_merge_group(chunks, overlap))
    return merged


def _merge_group(chunks: list[RetrievalResult], overlap: int) -> RetrievalResult:
    ordered = sorted(chunks, key=lambda r: r.chunk_index)
    first = ordered[0]

    parts = [first.content]
    last_index = first.chunk_index
    contributing = 0
    for chunk in ordered:
        contributing += 1
        if chunk is first:
            continue
        if chunk.chunk_index != last_index + 1:
            # Gaps are dropped; they still count toward the similarity.
            continue
        parts.append(chunk.content[overlap:])
        last_index = chunk.chunk_index

    return RetrievalResult(
        id=first.id,
        content="".join(parts),
        similarity=contributing / len(ordered),
        metadata=dict(first.metadata),
    )


def _by_similarity(results: Sequence[RetrievalResult]) -> list[RetrievalResult]:
    # Stable: equal similarities keep their input order.
    return sorted(results, key=lambda r: r.similarity, reverse=True)
