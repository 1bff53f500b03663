"""Tests for domain models."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from doconvo.db.models import Chunk, Conversation, Message, RetrievalResult


def test_message_rejects_unknown_role():
    with pytest.raises(ValueError, match="role"):
        Message("tool", "x")


def test_message_dict_round_trip():
    msg = Message("assistant", "hi", datetime(2024, 5, 1, tzinfo=timezone.utc), failed=True)
    assert Message.from_dict(msg.to_dict()) == msg
    assert msg.to_llm() == {"role": "assistant", "content": "hi"}


def test_conversation_refuses_system_messages():
    with pytest.raises(ValueError):
        Conversation().append(Message("system", "rules"))


def test_conversation_append_returns_index():
    conv = Conversation()
    assert conv.append(Message("user", "a")) == 0
    assert conv.append(Message("assistant", "b")) == 1


def test_llm_history_skips_failed():
    conv = Conversation()
    conv.append(Message("user", "q"))
    conv.append(Message("assistant", "Sorry", failed=True))
    conv.append(Message("user", "q2"))
    assert [m.content for m in conv.llm_history()] == ["q", "q2"]


def test_display_title():
    assert Conversation().display_title == "Untitled"
    assert Conversation(title="Learn Python Basics").display_title == "Learn Python Basics"


def test_chunk_identity_defaults():
    plain = Chunk(id="/d/a.txt", content="x")
    assert plain.original_id == "/d/a.txt"
    assert plain.chunk_index == 0

    piece = RetrievalResult(
        id="/d/a.txt-chunk-3",
        content="x",
        similarity=0.7,
        metadata={"filename": "a.txt", "originalID": "/d/a.txt", "chunkIndex": "3"},
    )
    assert piece.original_id == "/d/a.txt"
    assert piece.chunk_index == 3
    assert piece.filename == "a.txt"
