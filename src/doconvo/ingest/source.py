"""Document source: walk a directory and yield raw file documents.

Unreadable and empty files are skipped; ``.git`` directories are pruned.
The walk itself is cheap; reading happens in ``read_document`` so the scanner
can fan reads out over a worker pool.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_SKIP_DIRS = frozenset([".git"])


@dataclass
class RawDocument:
    """One file's content before chunking. ``id`` is the file path."""

    id: str
    content: str
    metadata: dict[str, str] = field(default_factory=dict)


def iter_files(root: Path | str) -> Iterator[Path]:
    """Yield every regular file under *root* in a stable (sorted) order.

    Raises:
        FileNotFoundError: If *root* does not exist.
    """
    root = Path(root)
    if not root.exists():
        raise FileNotFoundError(f"no such directory: {root}")
    if root.is_file():
        yield root
        return

    def _onerror(err: OSError) -> None:
        logger.warning("skipping %s: %s", err.filename, err.strerror)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_onerror):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if path.is_file():
                yield path


def read_document(path: Path) -> RawDocument | None:
    """Read *path* as text. Returns None for empty or unreadable files."""
    try:
        data = path.read_bytes()
    except OSError as exc:
        logger.warning("cannot read %s: %s", path, exc)
        return None
    if not data:
        return None
    return RawDocument(
        id=str(path),
        content=data.decode("utf-8", errors="replace"),
        metadata={"filename": path.name},
    )
