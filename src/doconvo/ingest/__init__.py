"""doconvo ingest pipeline: document source, chunker, scanner."""

from doconvo.ingest.chunker import Chunker
from doconvo.ingest.scanner import DocumentScanner, ScanHandle, ScanProgress
from doconvo.ingest.source import RawDocument, iter_files, read_document

__all__ = [
    "Chunker",
    "DocumentScanner",
    "RawDocument",
    "ScanHandle",
    "ScanProgress",
    "iter_files",
    "read_document",
]
