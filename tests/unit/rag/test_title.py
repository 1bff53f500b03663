"""Tests for the session title summarizer."""

from __future__ import annotations

import pytest

from doconvo.db.models import Conversation, Message
from doconvo.errors import EmptyTitleError
from doconvo.rag.prompts import TITLE_REQUEST, TITLE_SYSTEM_PROMPT
from doconvo.rag.title import generate_title, summarize, title_messages


def _conversation() -> Conversation:
    conv = Conversation()
    conv.append(Message("user", "What is Python good for?"))
    conv.append(Message("assistant", "[notes] Python is great for scripting."))
    conv.append(Message("assistant", "Sorry", failed=True))
    return conv


def test_title_messages_wrap_history():
    messages = title_messages(_conversation())
    assert messages[0].role == "system"
    assert messages[0].content == TITLE_SYSTEM_PROMPT
    assert [m.content for m in messages[1:-1]] == [
        "What is Python good for?",
        "[notes] Python is great for scripting.",
    ]
    assert messages[-1].role == "user"
    assert messages[-1].content == TITLE_REQUEST


def test_summarize_returns_raw_text(make_chat):
    chat = make_chat(reply="  Python Scripting Strengths\n")
    assert summarize(chat, _conversation()) == "  Python Scripting Strengths\n"
    assert len(chat.chat_calls) == 1


def test_generate_title_trims(make_chat):
    chat = make_chat(reply="  Python Scripting Strengths\n")
    assert generate_title(chat, _conversation()) == "Python Scripting Strengths"


@pytest.mark.parametrize("reply", ["", "   ", "\n\n"])
def test_generate_title_blank_is_error(make_chat, reply):
    with pytest.raises(EmptyTitleError):
        generate_title(make_chat(reply=reply), _conversation())
