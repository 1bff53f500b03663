"""Chat engine: one grounded, streaming turn at a time over a Conversation.

Turn pipeline:
  1. Append the user message and save.
  2. Build the search text from recent turns + the new message.
  3. Retrieve from every configured document (fail-fast).
  4. Merge adjacent chunks, keep the best passages.
  5. Prepend one system prompt built from the passages; stream the reply.
  6. Append the assistant message and save; start title generation if the
     conversation is still untitled.

Events for a turn are TokenEvent* followed by exactly one terminal event:
ErrorEvent (retrieval or provider failure; the reply is stored as failed
with a fallback text) or DoneEvent. Cancellation ends with
DoneEvent(cancelled=True): no error is reported, and whatever content had
streamed is kept as a normal assistant message.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
from collections.abc import Iterator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

from doconvo.config import RagCfg
from doconvo.db.models import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Conversation, Message, SourceDocument
from doconvo.db.repository import SessionStore
from doconvo.db.vectors import EmbeddingFn, VectorIndex
from doconvo.errors import (
    Cancelled,
    DoconvoError,
    PersistenceError,
    ProviderError,
    RetrievalError,
    TurnInProgressError,
)
from doconvo.ingest.chunker import DEFAULT_CHUNK_OVERLAP
from doconvo.rag.llm_client import ChatProvider
from doconvo.rag.merger import MergerConfig, select_passages
from doconvo.rag.prompts import build_system_prompt
from doconvo.rag.query import build_search_text
from doconvo.rag.retriever import RetrieverConfig, retrieve
from doconvo.rag.title import generate_title

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I'm having trouble connecting to the LLM. Please try again later."


class TurnState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


# ------------------------------------------------------------------
# Events
# ------------------------------------------------------------------


@dataclass(frozen=True)
class TokenEvent:
    """A streamed delta for the assistant message at ``index``."""

    index: int
    content: str


@dataclass(frozen=True)
class ErrorEvent:
    index: int
    error: BaseException


@dataclass(frozen=True)
class DoneEvent:
    index: int
    cancelled: bool = False


TurnEvent = TokenEvent | ErrorEvent | DoneEvent


class TurnHandle:
    """Caller's view of one turn: events, state, cancel, title result.

    ``index`` is the position the assistant message takes in the
    conversation. ``title_future`` is set before the DoneEvent is emitted
    when the turn started title generation.
    """

    def __init__(self, index: int, cancel: threading.Event | None = None) -> None:
        self.index = index
        self.state = TurnState.IDLE
        self.title_future: Future[str] | None = None
        self._cancel = cancel or threading.Event()
        self._events: queue.Queue[TurnEvent] = queue.Queue()
        self._thread: threading.Thread | None = None

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def events(self, timeout: float | None = None) -> Iterator[TurnEvent]:
        """Yield events until the terminal one (inclusive).

        Raises:
            queue.Empty: If *timeout* elapses with no event.
        """
        while True:
            event = self._events.get(timeout=timeout)
            yield event
            if isinstance(event, (ErrorEvent, DoneEvent)):
                return

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


# ------------------------------------------------------------------
# Engine
# ------------------------------------------------------------------


class ChatEngine:
    """Drive grounded chat turns over one conversation.

    Args:
        chat: Provider used for streamed replies.
        title_llm: Provider used for one-shot title generation.
        index: Vector index holding the documents' collections.
        embedding_fn: Embedding function used for retrieval queries.
        documents: SourceDocuments searched on every turn.
        conversation: Conversation to continue (a new one when None).
        store: Persistence collaborator; saves after every state change.
        rag: Retrieval and merge settings.
        chunk_overlap: Overlap used when the documents were chunked.
    """

    def __init__(
        self,
        chat: ChatProvider,
        title_llm: ChatProvider,
        index: VectorIndex,
        embedding_fn: EmbeddingFn,
        documents: Sequence[SourceDocument] = (),
        conversation: Conversation | None = None,
        store: SessionStore | None = None,
        rag: RagCfg | None = None,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        rag = rag or RagCfg()
        self._chat = chat
        self._title_llm = title_llm
        self._index = index
        self._embedding_fn = embedding_fn
        self.documents: list[SourceDocument] = list(documents)
        self.conversation = conversation or Conversation()
        self._store = store
        self._context_pairs = rag.context_pairs
        self._retriever_cfg = RetrieverConfig(
            results_count=rag.results_count,
            similarity_threshold=rag.similarity_threshold,
        )
        self._merger_cfg = MergerConfig(needed_count=rag.needed_count, overlap=chunk_overlap)
        self._busy = threading.Lock()
        self._title_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="doconvo-title")
        self._title_future: Future[str] | None = None

    # -- public API -----------------------------------------------------

    def submit(self, text: str) -> TurnHandle:
        """Start a turn on a worker thread and return its handle.

        The user message is appended and saved before this returns.

        Raises:
            TurnInProgressError: If the previous turn has not finished.
            PersistenceError: If saving the user message failed.
        """
        handle = self._begin(text)

        def _run() -> None:
            for event in self._run_turn(handle):
                handle._events.put(event)

        handle._thread = threading.Thread(target=_run, name="doconvo-turn", daemon=True)
        handle._thread.start()
        return handle

    def stream_turn(
        self, text: str, cancel: threading.Event | None = None
    ) -> Iterator[TurnEvent]:
        """Run a turn on the calling thread, yielding its events.

        Raises:
            TurnInProgressError: If the previous turn has not finished.
        """
        handle = self._begin(text, cancel)
        yield from self._run_turn(handle)

    @property
    def title_future(self) -> Future[str] | None:
        """The most recent title generation, if any was started."""
        return self._title_future

    def generate_title(self) -> str:
        """Generate, store and save a title now (blocking)."""
        title = generate_title(self._title_llm, self.conversation)
        self.conversation.title = title
        self._save()
        return title

    def close(self) -> None:
        self._title_executor.shutdown(wait=True)

    def __enter__(self) -> ChatEngine:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- turn -------------------------------------------------------------

    def _begin(self, text: str, cancel: threading.Event | None = None) -> TurnHandle:
        if not self._busy.acquire(blocking=False):
            raise TurnInProgressError("a reply is still being generated")
        try:
            self.conversation.append(Message(ROLE_USER, text))
            if self._store is not None:
                self._store.save_session(self.conversation)
        except BaseException:
            self._busy.release()
            raise
        return TurnHandle(len(self.conversation.messages), cancel)

    def _run_turn(self, handle: TurnHandle) -> Iterator[TurnEvent]:
        terminal_sent = False
        try:
            for event in self._turn_events(handle):
                terminal_sent = isinstance(event, (ErrorEvent, DoneEvent))
                yield event
        except Exception as exc:
            # Every turn ends with exactly one terminal event, whatever went wrong.
            if terminal_sent:
                raise
            logger.exception("turn %d raised unexpectedly", handle.index)
            error: DoconvoError
            if handle.state is TurnState.STREAMING:
                error = ProviderError(f"chat stream failed: {exc}")
            else:
                error = RetrievalError(f"could not prepare the reply: {exc}")
            error.__cause__ = exc
            yield self._fail(handle, error)
        finally:
            self._busy.release()

    def _turn_events(self, handle: TurnHandle) -> Iterator[TurnEvent]:
        conv = self.conversation
        handle.state = TurnState.AWAITING_RESPONSE
        user_message = conv.messages[handle.index - 1]

        search_text = build_search_text(
            conv.messages[: handle.index - 1], user_message.content, self._context_pairs
        )
        try:
            results = retrieve(
                self.documents, search_text, self._index, self._embedding_fn, self._retriever_cfg
            )
        except RetrievalError as exc:
            yield self._fail(handle, exc)
            return

        if handle.cancelled:
            yield self._finish_cancelled(handle, "")
            return

        passages = select_passages(results, self._merger_cfg)
        messages = [Message(ROLE_SYSTEM, build_system_prompt(passages)), *conv.llm_history()]
        logger.debug("RAG prompt: %s", [m.to_llm() for m in messages])

        parts: list[str] = []
        try:
            for delta in self._chat.chat_stream(messages, handle._cancel):
                if handle.cancelled:
                    break
                handle.state = TurnState.STREAMING
                parts.append(delta)
                yield TokenEvent(handle.index, delta)
        except Cancelled:
            pass
        except DoconvoError as exc:
            yield self._fail(handle, exc)
            return
        except Exception as exc:
            yield self._fail(handle, ProviderError(f"chat stream failed: {exc}"))
            return

        content = "".join(parts)
        if handle.cancelled:
            yield self._finish_cancelled(handle, content)
            return

        conv.append(Message(ROLE_ASSISTANT, content))
        self._save()
        handle.state = TurnState.DONE
        if not conv.title:
            try:
                handle.title_future = self._start_title()
            except RuntimeError as exc:
                logger.error("could not start title generation: %s", exc)
        yield DoneEvent(handle.index)

    def _fail(self, handle: TurnHandle, error: BaseException) -> ErrorEvent:
        logger.error("turn %d failed: %s", handle.index, error)
        self.conversation.append(Message(ROLE_ASSISTANT, FALLBACK_REPLY, failed=True))
        self._save()
        handle.state = TurnState.FAILED
        return ErrorEvent(handle.index, error)

    def _finish_cancelled(self, handle: TurnHandle, content: str) -> DoneEvent:
        logger.debug("turn %d cancelled after %d chars", handle.index, len(content))
        if content:
            self.conversation.append(Message(ROLE_ASSISTANT, content))
            self._save()
        handle.state = TurnState.DONE
        return DoneEvent(handle.index, cancelled=True)

    # -- title ------------------------------------------------------------

    def _start_title(self) -> Future[str]:
        if self._title_future is not None and not self._title_future.done():
            return self._title_future
        self._title_future = self._title_executor.submit(self._title_job)
        return self._title_future

    def _title_job(self) -> str:
        snapshot = Conversation(
            id=self.conversation.id,
            created_at=self.conversation.created_at,
            messages=list(self.conversation.messages),
        )
        try:
            title = generate_title(self._title_llm, snapshot)
        except DoconvoError as exc:
            logger.error("error generating session title: %s", exc)
            raise
        self.conversation.title = title
        self._save()
        return title

    def _save(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save_session(self.conversation)
        except PersistenceError as exc:
            logger.error("could not save session %s: %s", self.conversation.id, exc)
