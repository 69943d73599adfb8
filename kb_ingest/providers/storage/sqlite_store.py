"""SQLite-backed document, chunk and summary stores.

All three stores share one database file (``data/kb_ingest.db`` by
default) and use ``aiosqlite`` for async I/O.  JSON columns hold document
and chunk metadata and chunk embeddings.

Merging updates (metadata patches, conditional chunk claims) run as
read-modify-write inside a ``BEGIN IMMEDIATE`` transaction, which takes
the database write lock up front so two processes cannot interleave
between the read and the write.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from kb_ingest.interfaces.chunk_store import IChunkStore
from kb_ingest.interfaces.document_store import IDocumentStore
from kb_ingest.interfaces.summary_store import ISummaryStore
from kb_ingest.models.chunk import Chunk, ChunkFilter, SummaryStatus
from kb_ingest.models.document import Document, DocumentStatus, utc_now
from kb_ingest.models.summary import DocumentSummary, SummaryLevel
from kb_ingest.providers.storage.memory_store import apply_chunk_patch, chunk_matches_expected
from kb_ingest.utils.errors import DocumentNotFoundError, StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/kb_ingest.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    id               TEXT PRIMARY KEY,
    organisation_id  TEXT NOT NULL,
    storage_path     TEXT,
    file_type        TEXT NOT NULL DEFAULT '',
    title            TEXT NOT NULL DEFAULT '',
    metadata         TEXT NOT NULL DEFAULT '{}',
    status           TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunks (
    id                      TEXT PRIMARY KEY,
    document_id             TEXT NOT NULL,
    chunk_index             INTEGER NOT NULL,
    content                 TEXT NOT NULL,
    token_count             INTEGER NOT NULL DEFAULT 0,
    section_identifier      TEXT,
    citation_key            TEXT NOT NULL DEFAULT '',
    embedding               TEXT,
    chunk_summary           TEXT,
    summary_status          TEXT NOT NULL DEFAULT 'pending',
    section_summary         TEXT,
    section_summary_status  TEXT,
    metadata                TEXT NOT NULL DEFAULT '{}',
    created_at              TEXT NOT NULL,
    UNIQUE(document_id, chunk_index)
);
""",
    """\
CREATE TABLE IF NOT EXISTS document_summaries (
    document_id    TEXT NOT NULL,
    summary_level  TEXT NOT NULL,
    summary        TEXT NOT NULL,
    status         TEXT NOT NULL,
    model_used     TEXT NOT NULL DEFAULT '',
    updated_at     TEXT NOT NULL,
    UNIQUE(document_id, summary_level)
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id, chunk_index);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_summary ON chunks(document_id, summary_status);",
]

_CHUNK_COLUMNS = (
    "id",
    "document_id",
    "chunk_index",
    "content",
    "token_count",
    "section_identifier",
    "citation_key",
    "embedding",
    "chunk_summary",
    "summary_status",
    "section_summary",
    "section_summary_status",
    "metadata",
    "created_at",
)

_UPSERT_SUMMARY_SQL = """\
INSERT INTO document_summaries (document_id, summary_level, summary, status, model_used, updated_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(document_id, summary_level)
DO UPDATE SET summary    = excluded.summary,
              status     = excluded.status,
              model_used = excluded.model_used,
              updated_at = excluded.updated_at;
"""


def _to_db(value: Any) -> Any:
    """Convert a model value to its SQLite column representation."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _row_to_chunk(row: aiosqlite.Row) -> Chunk:
    data = dict(row)
    data["metadata"] = json.loads(data["metadata"] or "{}")
    data["embedding"] = json.loads(data["embedding"]) if data["embedding"] else None
    data["summary_status"] = SummaryStatus(data["summary_status"])
    if data["section_summary_status"] is not None:
        data["section_summary_status"] = SummaryStatus(data["section_summary_status"])
    return Chunk.model_validate(data)


def _row_to_document(row: aiosqlite.Row) -> Document:
    data = dict(row)
    data["metadata"] = json.loads(data["metadata"] or "{}")
    data["status"] = DocumentStatus(data["status"])
    return Document.model_validate(data)


class _SQLiteStoreBase:
    """Shared connection handling for the SQLite stores."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            for sql in _CREATE_TABLES_SQL:
                await db.execute(sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("sqlite_store_initialized", path=str(self._db_path))

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                yield db
        except aiosqlite.Error as exc:
            raise StorageError(message=f"SQLite error: {exc}", provider_name="sqlite") from exc

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection inside ``BEGIN IMMEDIATE`` ... ``COMMIT``."""
        try:
            async with aiosqlite.connect(str(self._db_path), isolation_level=None) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("BEGIN IMMEDIATE")
                try:
                    yield db
                except BaseException:
                    await db.execute("ROLLBACK")
                    raise
                await db.execute("COMMIT")
        except aiosqlite.Error as exc:
            raise StorageError(message=f"SQLite error: {exc}", provider_name="sqlite") from exc


class SQLiteDocumentStore(_SQLiteStoreBase, IDocumentStore):
    """Document records in the ``documents`` table."""

    async def create(self, document: Document) -> Document:
        async with self._connect() as db:
            try:
                await db.execute(
                    "INSERT INTO documents (id, organisation_id, storage_path, file_type, title, "
                    "metadata, status, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        document.id,
                        document.organisation_id,
                        document.storage_path,
                        document.file_type,
                        document.title,
                        json.dumps(document.metadata),
                        document.status.value,
                        document.created_at.isoformat(),
                        document.updated_at.isoformat(),
                    ),
                )
            except aiosqlite.IntegrityError as exc:
                raise StorageError(
                    message=f"Document {document.id} already exists",
                    provider_name="sqlite",
                ) from exc
            await db.commit()
        logger.info("document_created", document_id=document.id, file_type=document.file_type)
        return document

    async def get(self, document_id: str) -> Document:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM documents WHERE id = ?", (document_id,))
            row = await cursor.fetchone()
        if row is None:
            raise DocumentNotFoundError(message=f"Document {document_id} not found")
        return _row_to_document(row)

    async def update(
        self,
        document_id: str,
        *,
        status: DocumentStatus | None = None,
        metadata: dict[str, Any] | None = None,
        title: str | None = None,
    ) -> Document:
        async with self._transaction() as db:
            cursor = await db.execute("SELECT * FROM documents WHERE id = ?", (document_id,))
            row = await cursor.fetchone()
            if row is None:
                raise DocumentNotFoundError(message=f"Document {document_id} not found")
            current = _row_to_document(row)
            merged = {**current.metadata, **(metadata or {})}
            updated = current.model_copy(
                update={
                    "status": status if status is not None else current.status,
                    "metadata": merged,
                    "title": title if title is not None else current.title,
                    "updated_at": utc_now(),
                }
            )
            await db.execute(
                "UPDATE documents SET status = ?, metadata = ?, title = ?, updated_at = ? "
                "WHERE id = ?",
                (
                    updated.status.value,
                    json.dumps(updated.metadata),
                    updated.title,
                    updated.updated_at.isoformat(),
                    document_id,
                ),
            )
        return updated


class SQLiteChunkStore(_SQLiteStoreBase, IChunkStore):
    """Chunk rows in the ``chunks`` table."""

    async def insert_many(self, chunks: list[Chunk]) -> None:
        if not chunks:
            return
        placeholders = ", ".join("?" for _ in _CHUNK_COLUMNS)
        sql = f"INSERT INTO chunks ({', '.join(_CHUNK_COLUMNS)}) VALUES ({placeholders})"
        rows = [
            tuple(_to_db(getattr(chunk, column)) for column in _CHUNK_COLUMNS) for chunk in chunks
        ]
        async with self._connect() as db:
            try:
                await db.executemany(sql, rows)
            except aiosqlite.IntegrityError as exc:
                raise StorageError(
                    message=f"Duplicate chunk for document {chunks[0].document_id}: {exc}",
                    provider_name="sqlite",
                ) from exc
            await db.commit()
        logger.debug("chunks_inserted", document_id=chunks[0].document_id, count=len(chunks))

    async def select_where(
        self,
        document_id: str,
        where: ChunkFilter | None = None,
    ) -> list[Chunk]:
        where = where or ChunkFilter()
        clauses = ["document_id = ?"]
        params: list[Any] = [document_id]
        if where.summary_status is not None:
            clauses.append("summary_status = ?")
            params.append(where.summary_status.value)
        if where.section_summary_status is not None:
            clauses.append("section_summary_status = ?")
            params.append(where.section_summary_status.value)
        if where.section_identifier is not None:
            clauses.append("section_identifier = ?")
            params.append(where.section_identifier)
        if where.missing_embedding:
            clauses.append("embedding IS NULL")
        if where.chunk_ids is not None:
            if not where.chunk_ids:
                return []
            clauses.append(f"id IN ({', '.join('?' for _ in where.chunk_ids)})")
            params.extend(where.chunk_ids)

        sql = f"SELECT * FROM chunks WHERE {' AND '.join(clauses)} ORDER BY chunk_index"
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_row_to_chunk(r) for r in rows]

    async def update_many(self, chunk_ids: list[str], patch: dict[str, Any]) -> int:
        updated = await self._patch(chunk_ids, patch, expected=None)
        return len(updated)

    async def update_where(
        self,
        chunk_ids: list[str],
        patch: dict[str, Any],
        expected: dict[str, Any],
    ) -> list[str]:
        return await self._patch(chunk_ids, patch, expected=expected)

    async def delete_for_document(self, document_id: str) -> int:
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            await db.commit()
            deleted = cursor.rowcount
        logger.debug("chunks_deleted", document_id=document_id, count=deleted)
        return deleted

    async def _patch(
        self,
        chunk_ids: list[str],
        patch: dict[str, Any],
        expected: dict[str, Any] | None,
    ) -> list[str]:
        if not chunk_ids:
            return []
        columns = [c for c in _CHUNK_COLUMNS if c in patch]
        placeholders = ", ".join("?" for _ in chunk_ids)
        updated: list[str] = []
        async with self._transaction() as db:
            cursor = await db.execute(
                f"SELECT * FROM chunks WHERE id IN ({placeholders})", list(chunk_ids)
            )
            rows = await cursor.fetchall()
            for row in rows:
                chunk = _row_to_chunk(row)
                if expected is not None and not chunk_matches_expected(chunk, expected):
                    continue
                new_chunk = apply_chunk_patch(chunk, patch)
                assignments = ", ".join(f"{c} = ?" for c in columns)
                values = [_to_db(getattr(new_chunk, c)) for c in columns]
                await db.execute(
                    f"UPDATE chunks SET {assignments} WHERE id = ?", [*values, chunk.id]
                )
                updated.append(chunk.id)
        return updated


class SQLiteSummaryStore(_SQLiteStoreBase, ISummaryStore):
    """Document summaries in the ``document_summaries`` table."""

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
        async with self._connect() as db:
            await db.execute(
                _UPSERT_SUMMARY_SQL,
                (
                    document_id,
                    level.value,
                    summary,
                    status,
                    model_used,
                    row.updated_at.isoformat(),
                ),
            )
            await db.commit()
        logger.info("document_summary_upserted", document_id=document_id, level=level.value)
        return row

    async def get(self, document_id: str, level: SummaryLevel) -> DocumentSummary | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM document_summaries WHERE document_id = ? AND summary_level = ?",
                (document_id, level.value),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        data = dict(row)
        data["summary_level"] = SummaryLevel(data["summary_level"])
        return DocumentSummary.model_validate(data)
