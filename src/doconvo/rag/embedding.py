"""Embedding vector normalization and the normalizing embedding function.

Every vector that enters the vector index is unit-length, so cosine
similarity reduces to a dot product and L2 distance maps onto it exactly.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Protocol

from doconvo.errors import ProviderError

logger = logging.getLogger(__name__)

NORMALIZED_TOLERANCE = 1e-6


class EmbeddingProvider(Protocol):
    """Anything that maps text to a fixed-length float vector."""

    def embed(self, text: str) -> list[float]: ...


def normalize(vector: list[float]) -> list[float]:
    """Return *vector* scaled to unit L2 norm.

    Raises:
        ValueError: If *vector* is empty or all zeros.
    """
    norm = math.sqrt(math.fsum(v * v for v in vector))
    if norm == 0.0:
        raise ValueError("cannot normalize a zero-length vector")
    return [v / norm for v in vector]


def is_normalized(vector: list[float]) -> bool:
    """True when the L2 norm of *vector* is 1 within ``NORMALIZED_TOLERANCE``."""
    magnitude = math.sqrt(math.fsum(v * v for v in vector))
    return abs(magnitude - 1.0) < NORMALIZED_TOLERANCE


class EmbeddingFunction:
    """Callable wrapping an embedding provider; always returns unit vectors.

    Whether the provider already returns normalized vectors is decided once,
    on the first successful embedding, and remembered for the lifetime of
    this instance. Different provider/model pairs get different instances.

    Args:
        provider: Object with an ``embed(text) -> list[float]`` method.
        name: Label used in logs and errors (usually the model string).
    """

    def __init__(self, provider: EmbeddingProvider, name: str = "") -> None:
        self._provider = provider
        self.name = name or type(provider).__name__
        self._lock = threading.Lock()
        self._needs_normalizing: bool | None = None

    @property
    def checked(self) -> bool:
        """True once the normalization behaviour of the provider is known."""
        return self._needs_normalizing is not None

    def __call__(self, text: str) -> list[float]:
        try:
            vector = list(self._provider.embed(text))
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(f"embedding with {self.name} failed: {exc}") from exc

        if not vector:
            raise ProviderError(f"embedding with {self.name} returned an empty vector")

        if self._needs_normalizing is None:
            with self._lock:
                if self._needs_normalizing is None:
                    self._needs_normalizing = not is_normalized(vector)
                    logger.debug(
                        "embedder %s returns %snormalized vectors",
                        self.name,
                        "un" if self._needs_normalizing else "",
                    )

        if self._needs_normalizing:
            try:
                return normalize(vector)
            except ValueError as exc:
                raise ProviderError(f"embedding with {self.name}: {exc}") from exc
        return vector
