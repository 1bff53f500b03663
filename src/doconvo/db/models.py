"""Domain models for the doconvo core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"

_ROLES = frozenset([ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Message:
    role: str
    content: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    failed: bool = False

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"unknown message role: {self.role!r}")

    def to_llm(self) -> dict[str, str]:
        """OpenAI-style message dict, as accepted by litellm."""
        return {"role": self.role, "content": self.content}

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "failed": self.failed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        ts = data.get("timestamp")
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            timestamp=datetime.fromisoformat(ts) if ts else utcnow(),
            failed=bool(data.get("failed", False)),
        )


@dataclass
class Conversation:
    """A chat session: ordered user/assistant messages plus an optional title.

    System messages are never stored here; the orchestrator prepends exactly
    one per model call.
    """

    id: int | None = None
    title: str = ""
    created_at: datetime = field(default_factory=utcnow)
    messages: list[Message] = field(default_factory=list)

    def append(self, message: Message) -> int:
        """Append *message* and return its index."""
        if message.role == ROLE_SYSTEM:
            raise ValueError("system messages are not stored in a conversation")
        self.messages.append(message)
        return len(self.messages) - 1

    def llm_history(self) -> list[Message]:
        """Messages to send to the model: everything except failed replies."""
        return [m for m in self.messages if not m.failed and m.role != ROLE_SYSTEM]

    @property
    def display_title(self) -> str:
        return self.title or "Untitled"


@dataclass
class SourceDocument:
    """A user-defined knowledge base rooted at a directory."""

    name: str
    path: str
    id: int | None = None
    scanned_file_count: int = 0
    last_scan_time: datetime | None = None

    @property
    def collection_name(self) -> str:
        """Vector collection holding this document's chunks."""
        if self.id is None:
            raise ValueError("document has no id yet; save it before scanning")
        return f"doc-{self.id}"


@dataclass
class Chunk:
    """An index record. ``metadata`` carries filename, originalID and chunkIndex."""

    id: str
    content: str
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def original_id(self) -> str:
        return self.metadata.get("originalID") or self.id

    @property
    def chunk_index(self) -> int:
        return int(self.metadata.get("chunkIndex", "0"))


@dataclass
class RetrievalResult:
    id: str
    content: str
    similarity: float
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def original_id(self) -> str:
        return self.metadata.get("originalID") or self.id

    @property
    def chunk_index(self) -> int:
        return int(self.metadata.get("chunkIndex", "0"))

    @property
    def filename(self) -> str:
        return self.metadata.get("filename", "")
