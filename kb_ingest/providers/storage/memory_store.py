"""In-memory implementations of the document, chunk, summary and blob stores.

Used by the test-suite and for wiring the API without a database.  Each store
guards its dict with an :class:`asyncio.Lock` so that conditional updates
(:meth:`InMemoryChunkStore.update_where`) are atomic with respect to other
coroutines, matching what the SQLite store gets from a transaction.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from kb_ingest.interfaces.blob_store import IBlobStore
from kb_ingest.interfaces.chunk_store import IChunkStore
from kb_ingest.interfaces.document_store import IDocumentStore
from kb_ingest.interfaces.summary_store import ISummaryStore
from kb_ingest.models.chunk import Chunk, ChunkFilter
from kb_ingest.models.document import Document, DocumentStatus, utc_now
from kb_ingest.models.summary import DocumentSummary, SummaryLevel
from kb_ingest.utils.errors import DocumentNotFoundError, StorageError

logger = structlog.get_logger(logger_name=__name__)


def apply_chunk_patch(chunk: Chunk, patch: dict[str, Any]) -> Chunk:
    """Return *chunk* with *patch* applied; ``metadata`` is merged, not replaced."""
    update = dict(patch)
    if "metadata" in update:
        update["metadata"] = {**chunk.metadata, **(update["metadata"] or {})}
    unknown = set(update) - set(Chunk.model_fields)
    if unknown:
        raise StorageError(message=f"Unknown chunk fields in patch: {sorted(unknown)}")
    return chunk.model_copy(update=update)


def chunk_matches_expected(chunk: Chunk, expected: dict[str, Any]) -> bool:
    """Return ``True`` if every ``expected`` entry equals the chunk's current value."""
    for key, value in expected.items():
        if key.startswith("metadata."):
            current = chunk.metadata.get(key.split(".", 1)[1])
        else:
            current = getattr(chunk, key)
        if current != value:
            return False
    return True


class InMemoryDocumentStore(IDocumentStore):
    """Dict-backed document store."""

    def __init__(self, documents: list[Document] | None = None) -> None:
        self._documents: dict[str, Document] = {d.id: d for d in documents or []}
        self._lock = asyncio.Lock()

    async def create(self, document: Document) -> Document:
        async with self._lock:
            if document.id in self._documents:
                raise StorageError(message=f"Document {document.id} already exists")
            self._documents[document.id] = document
        return document

    async def get(self, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(message=f"Document {document_id} not found")
        return document

    async def update(
        self,
        document_id: str,
        *,
        status: DocumentStatus | None = None,
        metadata: dict[str, Any] | None = None,
        title: str | None = None,
    ) -> Document:
        async with self._lock:
            current = await self.get(document_id)
            update: dict[str, Any] = {"updated_at": utc_now()}
            if status is not None:
                update["status"] = status
            if metadata:
                update["metadata"] = {**current.metadata, **metadata}
            if title is not None:
                update["title"] = title
            updated = current.model_copy(update=update)
            self._documents[document_id] = updated
        return updated


class InMemoryChunkStore(IChunkStore):
    """Dict-backed chunk store keyed by chunk id."""

    def __init__(self) -> None:
        self._chunks: dict[str, Chunk] = {}
        self._lock = asyncio.Lock()

    async def insert_many(self, chunks: list[Chunk]) -> None:
        async with self._lock:
            for chunk in chunks:
                if chunk.id in self._chunks:
                    raise StorageError(message=f"Chunk {chunk.id} already exists")
            for chunk in chunks:
                self._chunks[chunk.id] = chunk

    async def select_where(
        self,
        document_id: str,
        where: ChunkFilter | None = None,
    ) -> list[Chunk]:
        where = where or ChunkFilter()
        rows = [
            c for c in self._chunks.values() if c.document_id == document_id and where.matches(c)
        ]
        return sorted(rows, key=lambda c: c.chunk_index)

    async def update_many(self, chunk_ids: list[str], patch: dict[str, Any]) -> int:
        count = 0
        async with self._lock:
            for chunk_id in chunk_ids:
                chunk = self._chunks.get(chunk_id)
                if chunk is None:
                    continue
                self._chunks[chunk_id] = apply_chunk_patch(chunk, patch)
                count += 1
        return count

    async def update_where(
        self,
        chunk_ids: list[str],
        patch: dict[str, Any],
        expected: dict[str, Any],
    ) -> list[str]:
        updated: list[str] = []
        async with self._lock:
            for chunk_id in chunk_ids:
                chunk = self._chunks.get(chunk_id)
                if chunk is None or not chunk_matches_expected(chunk, expected):
                    continue
                self._chunks[chunk_id] = apply_chunk_patch(chunk, patch)
                updated.append(chunk_id)
        return updated

    async def delete_for_document(self, document_id: str) -> int:
        async with self._lock:
            doomed = [cid for cid, c in self._chunks.items() if c.document_id == document_id]
            for chunk_id in doomed:
                del self._chunks[chunk_id]
        return len(doomed)


class InMemorySummaryStore(ISummaryStore):
    """Dict-backed summary store keyed on ``(document_id, level)``."""

    def __init__(self) -> None:
        self._rows: dict[tuple[str, SummaryLevel], DocumentSummary] = {}

    async def upsert(
        self,
        document_id: str,
        level: SummaryLevel,
        *,
        summary: str,
        status: str,
        model_used: str,
    ) -> DocumentSummary:
        row = DocumentSummary(
            document_id=document_id,
            summary_level=level,
            summary=summary,
            status=status,
            model_used=model_used,
        )
        self._rows[(document_id, level)] = row
        return row

    async def get(self, document_id: str, level: SummaryLevel) -> DocumentSummary | None:
        return self._rows.get((document_id, level))

    def __len__(self) -> int:
        return len(self._rows)


class InMemoryBlobStore(IBlobStore):
    """Dict-backed blob store keyed on ``(bucket, path)``."""

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str], bytes] = {}

    async def download(self, bucket: str, path: str) -> bytes:
        try:
            return self._objects[(bucket, path)]
        except KeyError:
            raise StorageError(
                message=f"Object {path} not found in bucket {bucket}",
                provider_name="memory",
            ) from None

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        self._objects[(bucket, path)] = bytes(data)
        logger.debug("blob_uploaded", bucket=bucket, path=path, size=len(data))
