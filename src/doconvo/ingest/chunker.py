"""Fixed-window chunker with overlap.

Window and overlap are measured in Python string characters (code points).
The merger strips overlap using the same unit, so a merged passage never
duplicates or drops text at chunk boundaries.
"""

from __future__ import annotations

from doconvo.db.models import Chunk
from doconvo.ingest.source import RawDocument

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50


class Chunker:
    """Split documents into overlapping fixed-size chunks.

    A document no longer than ``chunk_size`` is returned unchanged as a single
    chunk. Longer documents produce windows of ``chunk_size`` characters that
    advance by ``chunk_size - overlap``; the last window may be shorter and
    ends exactly at the end of the content.

    Chunk ids are ``<documentID>-chunk-<index>`` and each chunk's metadata
    carries ``filename``, ``originalID`` and ``chunkIndex`` (a string).
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @property
    def step(self) -> int:
        return self.chunk_size - self.overlap

    def chunk(self, document: RawDocument) -> list[Chunk]:
        content = document.content
        if len(content) <= self.chunk_size:
            return [Chunk(id=document.id, content=content, metadata=dict(document.metadata))]

        filename = document.metadata.get("filename", "")
        chunks: list[Chunk] = []
        length = len(content)
        pos = 0
        while pos < length:
            end = min(pos + self.chunk_size, length)
            index = len(chunks)
            chunks.append(
                Chunk(
                    id=f"{document.id}-chunk-{index}",
                    content=content[pos:end],
                    metadata={
                        "filename": filename,
                        "originalID": document.id,
                        "chunkIndex": str(index),
                    },
                )
            )
            if end >= length:
                break
            pos += self.step
        return chunks
