"""Repository for sessions and source documents.

This is the persistence collaborator the core calls after every
state-changing event. Vector collections live in ``VectorIndex``; deleting a
document here also drops its collection when an index is supplied.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from doconvo.db.models import Conversation, Message, SourceDocument
from doconvo.errors import PersistenceError

if TYPE_CHECKING:
    from doconvo.db.vectors import VectorIndex


class SessionStore(Protocol):
    """What the core needs from persistence."""

    def save_session(self, conversation: Conversation) -> None: ...

    def save_document(self, document: SourceDocument) -> None: ...


class Repository:
    """Data access layer for sessions and documents.

    Wraps an open sqlite3.Connection; the connection is owned by the caller
    and must be closed after use. Save methods assign ``id`` on first insert.
    Failures are raised as ``PersistenceError``.
    """

    def __init__(self, conn: sqlite3.Connection, lock: threading.RLock | None = None) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see doconvo.db.schema.initialize).
            lock: Lock guarding *conn*, shared with the VectorIndex on the same file.
        """
        self._conn = conn
        self._lock = lock or threading.RLock()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def save_session(self, conversation: Conversation) -> None:
        """Insert or update *conversation*."""
        messages = json.dumps([m.to_dict() for m in conversation.messages])
        try:
            with self._lock:
                if conversation.id is None:
                    cur = self._conn.execute(
                        "INSERT INTO sessions (name, created_at, messages) VALUES (?, ?, ?)",
                        (conversation.title, conversation.created_at.isoformat(), messages),
                    )
                    conversation.id = cur.lastrowid
                else:
                    self._conn.execute(
                        """
                        INSERT INTO sessions (id, name, created_at, messages)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                            name = excluded.name,
                            messages = excluded.messages
                        """,
                        (
                            conversation.id,
                            conversation.title,
                            conversation.created_at.isoformat(),
                            messages,
                        ),
                    )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"error saving session: {exc}") from exc

    def get_session(self, session_id: int) -> Conversation | None:
        """Return a session by ID, or None if not found."""
        with self._lock:
            row = self._conn.execute(
                "SELECT id, name, created_at, messages FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
        return _row_to_conversation(row) if row else None

    def list_sessions(self) -> list[Conversation]:
        """Return all sessions, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, name, created_at, messages FROM sessions ORDER BY id"
            ).fetchall()
        return [_row_to_conversation(r) for r in rows]

    def delete_session(self, session_id: int) -> bool:
        """Delete a session. Returns False if it did not exist."""
        try:
            with self._lock:
                cur = self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
                self._conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"error deleting session: {exc}") from exc
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def save_document(self, document: SourceDocument) -> None:
        """Insert or update *document*."""
        last_scan = document.last_scan_time.isoformat() if document.last_scan_time else None
        try:
            with self._lock:
                if document.id is None:
                    cur = self._conn.execute(
                        """
                        INSERT INTO documents (name, path, scanned_file_count, last_scan_time)
                        VALUES (?, ?, ?, ?)
                        """,
                        (document.name, document.path, document.scanned_file_count, last_scan),
                    )
                    document.id = cur.lastrowid
                else:
                    self._conn.execute(
                        """
                        INSERT INTO documents (id, name, path, scanned_file_count, last_scan_time)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                            name = excluded.name,
                            path = excluded.path,
                            scanned_file_count = excluded.scanned_file_count,
                            last_scan_time = excluded.last_scan_time
                        """,
                        (
                            document.id,
                            document.name,
                            document.path,
                            document.scanned_file_count,
                            last_scan,
                        ),
                    )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"error saving document: {exc}") from exc

    def get_document(self, document_id: int) -> SourceDocument | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, name, path, scanned_file_count, last_scan_time "
                "FROM documents WHERE id = ?",
                (document_id,),
            ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self) -> list[SourceDocument]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, name, path, scanned_file_count, last_scan_time "
                "FROM documents ORDER BY id"
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def delete_document(self, document_id: int, index: VectorIndex | None = None) -> bool:
        """Delete a document and, when *index* is given, its vector collection."""
        document = self.get_document(document_id)
        if document is None:
            return False
        if index is not None:
            index.delete_collection(document.collection_name)
        try:
            with self._lock:
                self._conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
                self._conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"error deleting document: {exc}") from exc
        return True


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        title=row["name"],
        created_at=datetime.fromisoformat(row["created_at"]),
        messages=[Message.from_dict(m) for m in json.loads(row["messages"])],
    )


def _row_to_document(row: sqlite3.Row) -> SourceDocument:
    last_scan = row["last_scan_time"]
    return SourceDocument(
        id=row["id"],
        name=row["name"],
        path=row["path"],
        scanned_file_count=row["scanned_file_count"],
        last_scan_time=datetime.fromisoformat(last_scan) if last_scan else None,
    )
