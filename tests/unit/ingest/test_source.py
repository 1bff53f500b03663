"""Tests for directory walking and file reading."""

from __future__ import annotations

import pytest

from doconvo.ingest.source import iter_files, read_document


@pytest.fixture
def tree(tmp_path):
    (tmp_path / "b.md").write_text("# Beta")
    (tmp_path / "a.txt").write_text("Alpha")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "c.txt").write_text("Gamma")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config").write_text("[core]")
    (tmp_path / "empty.txt").write_text("")
    return tmp_path


def test_iter_files_sorted_and_skips_git(tree):
    names = [p.relative_to(tree).as_posix() for p in iter_files(tree)]
    assert names == ["a.txt", "b.md", "empty.txt", "sub/c.txt"]


def test_iter_files_single_file(tree):
    assert list(iter_files(tree / "a.txt")) == [tree / "a.txt"]


def test_iter_files_missing_root(tmp_path):
    with pytest.raises(FileNotFoundError):
        list(iter_files(tmp_path / "nope"))


def test_read_document_uses_path_id_and_basename(tree):
    doc = read_document(tree / "sub" / "c.txt")
    assert doc is not None
    assert doc.id == str(tree / "sub" / "c.txt")
    assert doc.content == "Gamma"
    assert doc.metadata == {"filename": "c.txt"}


def test_read_document_skips_empty(tree):
    assert read_document(tree / "empty.txt") is None


def test_read_document_skips_unreadable(tmp_path):
    assert read_document(tmp_path / "missing.txt") is None


def test_read_document_replaces_invalid_utf8(tmp_path):
    path = tmp_path / "bin.dat"
    path.write_bytes(b"ok \xff\xfe")
    doc = read_document(path)
    assert doc is not None
    assert doc.content.startswith("ok ")
    assert "�" in doc.content
