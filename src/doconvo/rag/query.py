"""Context-aware search text for retrieval.

Follow-up questions ("what about the second one?") retrieve poorly on their
own, so the text that gets embedded is the last few user/assistant turns
followed by the new message, newline-joined.
"""

from __future__ import annotations

from collections.abc import Sequence

from doconvo.db.models import ROLE_ASSISTANT, ROLE_USER, Message

DEFAULT_CONTEXT_PAIRS = 2


def build_search_text(
    history: Sequence[Message],
    new_message: str,
    context_pairs: int = DEFAULT_CONTEXT_PAIRS,
) -> str:
    """Return the text to embed for *new_message*.

    Args:
        history: Prior messages, oldest first, NOT including *new_message*.
        new_message: The user message being answered.
        context_pairs: How many trailing user/assistant pairs to include.

    Failed replies and system messages never count toward the window.
    """
    if context_pairs <= 0:
        return new_message

    window = [
        m.content
        for m in history
        if m.role in (ROLE_USER, ROLE_ASSISTANT) and not m.failed and m.content
    ][-2 * context_pairs :]
    return "\n".join([*window, new_message])
