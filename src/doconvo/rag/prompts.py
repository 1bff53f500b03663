"""Prompt templates for grounded chat and session titles.

RAG system prompt structure:
  persona line          ← the model speaks as the documents
  ---\n[filename]\n...   ← one block per merged passage
  STRICT RULES          ← no outside knowledge, [filename] attribution,
                          explicit "I don't have this information" fallback

The rules are load-bearing: answers must stay inside the retrieved passages
and name the file each fact came from.
"""

from __future__ import annotations

from collections.abc import Sequence

from doconvo.db.models import RetrievalResult

NO_INFORMATION = "I don't have this information"

_RAG_TEMPLATE = """\
You ARE these documents. Speak as if you are the content itself. You have NO other knowledge:

{knowledge}

STRICT RULES:
1. ONLY use information explicitly stated in the documents
2. DO NOT use any external knowledge
3. When information is missing, simply say "{no_information}"
4. Include [filename] in brackets before relevant information
5. Speak directly - don't say "according to" or "based on documents"
6. NO explanations unless they're directly from the documents
7. NO general statements unless explicitly in the documents

Remember: You ARE the documents. Just state the facts with [filename] attribution. \
You know NOTHING else."""

TITLE_SYSTEM_PROMPT = """\
Generate ONE line containing ONLY the title. No markdown, no quotes, no explanations.

Rules for the title:
1. EXACTLY 3-6 words
2. NO punctuation marks or special characters
3. NO formatting symbols or markdown
4. Start with action verb or topic noun
5. Use simple everyday words
6. NO technical terms unless absolutely necessary

Examples of good titles:
Building Smart Home Network
Learn Python Programming Basics
Planning Family Summer Vacation

Bad titles (don't do these):
- "Setting up Docker containers" (has quotes)
* Technical Infrastructure Review (has bullet point)
Implementation of ML Models (too technical)
This is a very long title about programming (too many words)"""

TITLE_REQUEST = (
    "Based on this conversation, create a clear and concise title that captures "
    "its main focus. The title should be immediately understandable to someone "
    "new to the discussion."
)


def format_passage(passage: RetrievalResult) -> str:
    """One knowledge block: separator, ``[filename]`` label, content."""
    label = f"[{passage.filename}]" if passage.filename else ""
    return f"\n---\n{label}\n{passage.content}\n"


def build_system_prompt(passages: Sequence[RetrievalResult]) -> str:
    """Build the grounded system prompt around the merged *passages*.

    With no passages the knowledge section is empty, so the rules force the
    "don't know" answer.
    """
    knowledge = "".join(format_passage(p) for p in passages)
    return _RAG_TEMPLATE.format(knowledge=knowledge, no_information=NO_INFORMATION)
