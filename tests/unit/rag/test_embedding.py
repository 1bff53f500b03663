"""Tests for vector normalization and the normalizing embedding function."""

from __future__ import annotations

import math
import threading

import pytest

from doconvo.errors import ProviderError
from doconvo.rag.embedding import EmbeddingFunction, is_normalized, normalize


# ------------------------------------------------------------------
# normalize / is_normalized
# ------------------------------------------------------------------

@pytest.mark.parametrize("vector", [
    [3.0, 4.0],
    [1.0, 1.0, 1.0, 1.0],
    [-2.5, 0.0, 7.25],
    [1e-9, 2e-9],
])
def test_normalize_is_idempotent_and_unit(vector):
    once = normalize(vector)
    twice = normalize(once)
    assert is_normalized(once)
    assert all(abs(a - b) < 1e-6 for a, b in zip(once, twice))


def test_normalize_values():
    assert normalize([3.0, 4.0]) == pytest.approx([0.6, 0.8])


def test_normalize_zero_vector_raises():
    with pytest.raises(ValueError):
        normalize([0.0, 0.0])


def test_is_normalized_tolerance():
    assert is_normalized([1.0, 0.0])
    assert is_normalized([1.0 + 5e-7, 0.0])
    assert not is_normalized([1.0 + 1e-5, 0.0])
    assert not is_normalized([3.0, 4.0])


# ------------------------------------------------------------------
# EmbeddingFunction
# ------------------------------------------------------------------

class _Provider:
    def __init__(self, vectors):
        self.vectors = list(vectors)
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        return self.vectors[min(self.calls - 1, len(self.vectors) - 1)]


def test_embedding_function_normalizes_unnormalized_provider():
    fn = EmbeddingFunction(_Provider([[3.0, 4.0]]))
    assert fn("x") == pytest.approx([0.6, 0.8])
    assert fn.checked


def test_embedding_function_passes_normalized_vectors_through():
    fn = EmbeddingFunction(_Provider([[0.6, 0.8]]))
    assert fn("x") == [0.6, 0.8]


def test_normalization_decided_once_per_instance():
    # First vector is already unit length, so later ones are not touched.
    provider = _Provider([[1.0, 0.0], [3.0, 4.0]])
    fn = EmbeddingFunction(provider)
    fn("a")
    assert fn("b") == [3.0, 4.0]

    # A fresh instance decides again.
    other = EmbeddingFunction(_Provider([[3.0, 4.0], [1.0, 0.0]]))
    assert other("a") == pytest.approx([0.6, 0.8])
    assert other("b") == pytest.approx([1.0, 0.0])


def test_embedding_function_not_checked_before_first_call():
    assert not EmbeddingFunction(_Provider([[1.0]])).checked


def test_embedding_function_wraps_provider_errors():
    class _Broken:
        def embed(self, text):
            raise RuntimeError("connection refused")

    with pytest.raises(ProviderError, match="connection refused"):
        EmbeddingFunction(_Broken(), name="ollama/nomic-embed-text")("x")


def test_embedding_function_rejects_empty_vector():
    with pytest.raises(ProviderError, match="empty"):
        EmbeddingFunction(_Provider([[]]))("x")


def test_embedding_function_zero_vector_is_provider_error():
    with pytest.raises(ProviderError):
        EmbeddingFunction(_Provider([[0.0, 0.0]]))("x")


def test_embedding_function_thread_safe(embedder):
    fn = EmbeddingFunction(embedder)
    results = []

    def _worker(i):
        results.append(fn(f"text number {i}"))

    threads = [threading.Thread(target=_worker, args=(i,)) for i in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 16
    assert all(math.isclose(math.sqrt(sum(v * v for v in r)), 1.0, abs_tol=1e-6) for r in results)
