"""Persistence adapters: in-memory, SQLite and filesystem stores."""

from kb_ingest.providers.storage.local_blob_store import LocalBlobStore
from kb_ingest.providers.storage.memory_store import (
    InMemoryBlobStore,
    InMemoryChunkStore,
    InMemoryDocumentStore,
    InMemorySummaryStore,
)
from kb_ingest.providers.storage.sqlite_store import (
    SQLiteChunkStore,
    SQLiteDocumentStore,
    SQLiteSummaryStore,
)

__all__ = [
    "InMemoryBlobStore",
    "InMemoryChunkStore",
    "InMemoryDocumentStore",
    "InMemorySummaryStore",
    "LocalBlobStore",
    "SQLiteChunkStore",
    "SQLiteDocumentStore",
    "SQLiteSummaryStore",
]
