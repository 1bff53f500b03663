"""Tests for the fixed-window Chunker."""

from __future__ import annotations

import math

import pytest

from doconvo.ingest.chunker import Chunker
from doconvo.ingest.source import RawDocument


def _doc(content: str, id: str = "/docs/notes/a.txt") -> RawDocument:
    return RawDocument(id=id, content=content, metadata={"filename": "a.txt"})


def test_defaults():
    chunker = Chunker()
    assert (chunker.chunk_size, chunker.overlap, chunker.step) == (500, 50, 450)


@pytest.mark.parametrize("length", [0, 1, 499, 500])
def test_short_document_is_unchanged(length):
    doc = _doc("x" * length)
    (chunk,) = Chunker().chunk(doc)
    assert chunk.id == doc.id
    assert chunk.content == doc.content
    assert chunk.metadata == {"filename": "a.txt"}
    assert chunk.original_id == doc.id


@pytest.mark.parametrize("length", [501, 950, 951, 1200, 5000])
def test_chunk_count(length):
    chunks = Chunker().chunk(_doc("y" * length))
    assert len(chunks) == math.ceil((length - 500) / 450) + 1


def test_windows_and_last_chunk():
    content = "".join(chr(ord("a") + i % 26) for i in range(1200))
    chunks = Chunker().chunk(_doc(content))

    assert [c.content for c in chunks] == [content[0:500], content[450:950], content[900:1200]]


def test_overlap_round_trip():
    content = "".join(str(i % 10) for i in range(2345))
    chunks = Chunker().chunk(_doc(content))
    rebuilt = chunks[0].content + "".join(c.content[50:] for c in chunks[1:])
    assert rebuilt == content


def test_chunk_ids_and_metadata():
    doc = _doc("z" * 1000)
    chunks = Chunker().chunk(doc)
    for i, chunk in enumerate(chunks):
        assert chunk.id == f"{doc.id}-chunk-{i}"
        assert chunk.metadata == {"filename": "a.txt", "originalID": doc.id, "chunkIndex": str(i)}
        assert chunk.original_id == doc.id
        assert chunk.chunk_index == i


def test_windows_count_characters_not_bytes():
    chunks = Chunker().chunk(_doc("é" * 600))
    assert len(chunks[0].content) == 500
    assert len(chunks) == 2


def test_zero_overlap():
    chunks = Chunker(chunk_size=4, overlap=0).chunk(_doc("abcdefghij"))
    assert [c.content for c in chunks] == ["abcd", "efgh", "ij"]


@pytest.mark.parametrize("size,overlap", [(0, 0), (10, 10), (10, -1)])
def test_invalid_settings(size, overlap):
    with pytest.raises(ValueError):
        Chunker(chunk_size=size, overlap=overlap)
