"""Exception taxonomy for the doconvo core.

Every error raised inside the core derives from ``DoconvoError`` and carries
the operation it came from in its message. Cancellation is modelled by
``Cancelled`` and is never shown to the user as a failure.
"""

from __future__ import annotations


class DoconvoError(Exception):
    """Base class for all doconvo errors."""


class ConfigError(DoconvoError, ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Vector index
# ---------------------------------------------------------------------------


class VectorIndexError(DoconvoError):
    """Failure inside the vector index adapter."""


class CollectionNotFoundError(VectorIndexError):
    """The requested collection was never created (document never scanned)."""

    def __init__(self, name: str) -> None:
        super().__init__(f"collection {name} does not exist")
        self.name = name


class IndexConsistencyError(VectorIndexError):
    """Embedding dimensionality does not match the collection."""

    def __init__(self, name: str, expected: int, got: int) -> None:
        super().__init__(
            f"collection {name} stores {expected}-dimensional embeddings, got {got}"
        )
        self.name = name
        self.expected = expected
        self.got = got


class AddChunksError(VectorIndexError):
    """Some chunks could not be embedded; the rest were stored."""

    def __init__(self, name: str, failed_ids: list[str], cause: BaseException | None = None) -> None:
        self.name = name
        self.failed_ids = sorted(failed_ids)
        detail = f": {cause}" if cause is not None else ""
        super().__init__(
            f"failed to embed {len(self.failed_ids)} chunk(s) into collection {name} "
            f"(first: {self.failed_ids[0] if self.failed_ids else '-'}){detail}"
        )


# ---------------------------------------------------------------------------
# RAG pipeline
# ---------------------------------------------------------------------------


class RetrievalError(DoconvoError):
    """An index query failed for one of the configured documents."""


class ProviderError(DoconvoError):
    """A chat or embedding provider call failed."""


class EmptyTitleError(DoconvoError):
    """Title generation returned blank text."""

    def __init__(self) -> None:
        super().__init__("empty title generated")


class TurnInProgressError(DoconvoError):
    """A message was submitted while the previous turn is still running."""


class PersistenceError(DoconvoError):
    """Saving a session or document failed."""


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class Cancelled(Exception):
    """The caller cancelled the operation. Not an application error."""


class ScanCancelledError(Cancelled, DoconvoError):
    """A document scan was cancelled before it completed."""
