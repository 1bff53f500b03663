"""Session title summarizer: one non-streaming call over the whole chat."""

from __future__ import annotations

import logging
import threading

from doconvo.db.models import ROLE_SYSTEM, ROLE_USER, Conversation, Message
from doconvo.errors import EmptyTitleError
from doconvo.rag.llm_client import ChatProvider
from doconvo.rag.prompts import TITLE_REQUEST, TITLE_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


def title_messages(conversation: Conversation) -> list[Message]:
    """[title rules] + chat history + closing title request."""
    return [
        Message(ROLE_SYSTEM, TITLE_SYSTEM_PROMPT),
        *conversation.llm_history(),
        Message(ROLE_USER, TITLE_REQUEST),
    ]


def summarize(
    llm: ChatProvider,
    conversation: Conversation,
    cancel: threading.Event | None = None,
) -> str:
    """Ask *llm* for a title and return its raw text (no post-processing)."""
    messages = title_messages(conversation)
    logger.debug("title prompt: %s", [m.to_llm() for m in messages])
    return llm.chat(messages, cancel)


def generate_title(
    llm: ChatProvider,
    conversation: Conversation,
    cancel: threading.Event | None = None,
) -> str:
    """Return a trimmed, non-empty title for *conversation*.

    Raises:
        EmptyTitleError: If the model returned blank text.
        ProviderError: If the model call failed.
    """
    title = summarize(llm, conversation, cancel).strip()
    if not title:
        raise EmptyTitleError()
    return title
