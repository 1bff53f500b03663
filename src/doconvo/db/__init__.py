"""doconvo database layer."""

from doconvo.db.connection import Database
from doconvo.db.migrations import MIGRATIONS, run_migrations
from doconvo.db.repository import Repository, SessionStore
from doconvo.db.schema import initialize
from doconvo.db.vectors import Collection, VectorIndex, collection_to_slug, vec_table_name

__all__ = [
    "Collection",
    "Database",
    "MIGRATIONS",
    "Repository",
    "SessionStore",
    "VectorIndex",
    "collection_to_slug",
    "initialize",
    "run_migrations",
    "vec_table_name",
]
