"""SourceHive local ingestion — text extraction, chunking, indexing."""

from sourcehive.ingest.chunker import TextChunker
from sourcehive.ingest.extract import SUPPORTED_SUFFIXES, extract_text
from sourcehive.ingest.indexer import Indexer, IndexResult

__all__ = [
    "SUPPORTED_SUFFIXES",
    "IndexResult",
    "Indexer",
    "TextChunker",
    "extract_text",
]
