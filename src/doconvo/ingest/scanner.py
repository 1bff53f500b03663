"""Document scanner: read a directory tree, chunk it, embed it into the index.

Pipeline for one SourceDocument:

  walker thread ──submit──▶ reader pool (cpu_count workers)
                                │  put (Queue maxsize=1, blocks until taken)
                                ▼
                      consumer: chunk + count + progress
                                │
                                ▼
   embed all chunks, then swap collection doc-<id> in one transaction

The hand-off queue holds at most one document, so readers wait for the
consumer and memory stays bounded on large trees. Cancellation is checked
at every received item; readers abandon their hand-off once it is observed
and exit normally.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from doconvo.db.models import Chunk, SourceDocument, utcnow
from doconvo.db.repository import SessionStore
from doconvo.db.vectors import EmbeddingFn, VectorIndex
from doconvo.errors import DoconvoError, PersistenceError, ScanCancelledError
from doconvo.ingest.chunker import Chunker
from doconvo.ingest.source import RawDocument, iter_files, read_document

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.05


@dataclass
class ScanProgress:
    """One progress line. The last one has ``done`` set or carries ``error``."""

    content: str
    error: BaseException | None = None
    done: bool = False
    scanned_file_count: int = 0
    last_scan_time: datetime | None = None

    @property
    def terminal(self) -> bool:
        return self.done or self.error is not None


class _Finished:
    pass


@dataclass
class _WalkFailed:
    error: BaseException


_FINISHED = _Finished()


class ScanHandle:
    """A scan running on a background thread."""

    def __init__(self, cancel: threading.Event) -> None:
        self._cancel = cancel
        self._queue: queue.Queue[ScanProgress] = queue.Queue()
        self._thread: threading.Thread | None = None
        self.result: ScanProgress | None = None

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def progress(self) -> Iterator[ScanProgress]:
        """Yield progress lines until the terminal one (inclusive)."""
        while True:
            item = self._queue.get()
            yield item
            if item.terminal:
                return

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


class DocumentScanner:
    """Scan SourceDocuments into the vector index.

    Args:
        index: Vector index holding one collection per document.
        embedding_fn: Normalizing embedding function for chunk content.
        chunker: Chunker to split files (default 500/50 characters).
        store: Persistence collaborator; the document is saved after a scan.
        max_workers: Reader pool size (default: CPU count).
    """

    def __init__(
        self,
        index: VectorIndex,
        embedding_fn: EmbeddingFn,
        chunker: Chunker | None = None,
        store: SessionStore | None = None,
        max_workers: int | None = None,
    ) -> None:
        self._index = index
        self._embedding_fn = embedding_fn
        self._chunker = chunker or Chunker()
        self._store = store
        self._max_workers = max_workers or os.cpu_count() or 1

    def start(self, document: SourceDocument) -> ScanHandle:
        """Scan *document* on a background thread; read progress from the handle."""
        handle = ScanHandle(threading.Event())

        def _run() -> None:
            handle.result = self.scan(document, handle._cancel, handle._queue.put)

        handle._thread = threading.Thread(
            target=_run, name=f"doconvo-scan-{document.id}", daemon=True
        )
        handle._thread.start()
        return handle

    def scan(
        self,
        document: SourceDocument,
        cancel: threading.Event | None = None,
        on_progress: Callable[[ScanProgress], None] | None = None,
    ) -> ScanProgress:
        """Scan *document* synchronously and return the terminal progress line.

        Errors are reported as the terminal line's ``error``, never raised:
        the caller is an event loop reading progress.
        """
        cancel = cancel or threading.Event()

        def emit(progress: ScanProgress) -> ScanProgress:
            if progress.error is not None:
                logger.error("%s", progress.content)
            else:
                logger.info("%s", progress.content)
            if on_progress is not None:
                on_progress(progress)
            return progress

        emit(ScanProgress(content=f"Scanning {document.path}"))

        channel: queue.Queue[object] = queue.Queue(maxsize=1)
        walker = threading.Thread(
            target=self._produce,
            args=(Path(document.path), channel, cancel),
            name=f"doconvo-walk-{document.id}",
            daemon=True,
        )
        walker.start()

        chunks: list[Chunk] = []
        file_count = 0
        while True:
            try:
                item = channel.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                item = None
            if cancel.is_set():
                return emit(_cancelled(document))
            if item is None:
                continue
            if item is _FINISHED:
                break
            if isinstance(item, _WalkFailed):
                return emit(
                    ScanProgress(
                        content=f"Error scanning {document.path}: {item.error}",
                        error=item.error,
                    )
                )
            if not isinstance(item, RawDocument):
                logger.warning("skipping unexpected scan item %r", item)
                continue
            doc_chunks = self._chunker.chunk(item)
            chunks.extend(doc_chunks)
            file_count += 1
            emit(ScanProgress(content=f"Scanning {item.id} (created {len(doc_chunks)} chunks)"))

        emit(
            ScanProgress(
                content=f"Scanned {file_count} files into {len(chunks)} chunks, embedding..."
            )
        )

        if cancel.is_set():
            return emit(_cancelled(document))

        name = document.collection_name
        try:
            self._index.replace_collection(
                name, {"docName": document.name}, chunks, self._embedding_fn
            )
        except DoconvoError as exc:
            return emit(
                ScanProgress(content=f"Error adding documents to collection: {exc}", error=exc)
            )

        document.scanned_file_count = file_count
        document.last_scan_time = utcnow()
        if self._store is not None:
            try:
                self._store.save_document(document)
            except PersistenceError as exc:
                return emit(ScanProgress(content=f"Error saving document: {exc}", error=exc))

        return emit(
            ScanProgress(
                content="Embedding complete",
                done=True,
                scanned_file_count=file_count,
                last_scan_time=document.last_scan_time,
            )
        )

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def _produce(self, root: Path, channel: queue.Queue, cancel: threading.Event) -> None:
        """Walk *root* and fan file reads out over the reader pool."""
        try:
            with ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="doconvo-read"
            ) as pool:
                for path in iter_files(root):
                    if cancel.is_set():
                        break
                    pool.submit(self._read_and_offer, path, channel, cancel)
        except OSError as exc:
            _offer(channel, _WalkFailed(exc), cancel)
            return
        _offer(channel, _FINISHED, cancel)

    @staticmethod
    def _read_and_offer(path: Path, channel: queue.Queue, cancel: threading.Event) -> None:
        if cancel.is_set():
            return
        doc = read_document(path)
        if doc is not None:
            _offer(channel, doc, cancel)


def _offer(channel: queue.Queue, item: object, cancel: threading.Event) -> bool:
    """Block until *item* is taken by the consumer or the scan is cancelled."""
    while not cancel.is_set():
        try:
            channel.put(item, timeout=_POLL_SECONDS)
            return True
        except queue.Full:
            continue
    return False


def _cancelled(document: SourceDocument) -> ScanProgress:
    err = ScanCancelledError(f"scan of {document.path} cancelled")
    return ScanProgress(content=f"Scan cancelled: {document.path}", error=err)
