"""Chunk models: the persisted chunk row, the chunker's draft, and store filters.

A chunk is a bounded, indexed span of a document's extracted text and the
unit of embedding and summarization.  ``chunk_index`` is assigned once by
the chunker, is contiguous from zero within a document and never changes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from kb_ingest.models.document import utc_now


class SummaryStatus(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """State of a chunk- or section-level summary on one chunk.

    ``PROCESSING`` is a claim held by one summarizer invocation; a claim
    older than the configured lease counts as abandoned.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class Chunk(BaseModel):
    """One persisted chunk row."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Chunk identifier (UUID).")
    document_id: str
    chunk_index: int = Field(ge=0, description="Zero-based ordinal within the document.")
    content: str
    token_count: int = Field(default=0, ge=0, description="Approximate token count.")
    section_identifier: str | None = Field(
        default=None,
        description="Grouping key: 'Page N', 'Time MM:SS', a heading, or 'Part N'.",
    )
    citation_key: str = Field(default="", description="Stable source-attribution key.")
    embedding: list[float] | None = None
    chunk_summary: str | None = None
    summary_status: SummaryStatus = SummaryStatus.PENDING
    section_summary: str | None = None
    section_summary_status: SummaryStatus | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class TextChunk(BaseModel):
    """A chunk produced by the chunker before it is persisted."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    content: str
    section_identifier: str | None
    citation_key: str
    token_count: int = Field(ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ChunkFilter(BaseModel):
    """Predicate for :meth:`IChunkStore.select_where`.

    Unset fields match everything.  ``missing_embedding`` restricts to
    chunks whose embedding is still null.
    """

    model_config = ConfigDict(frozen=True)

    chunk_ids: list[str] | None = None
    summary_status: SummaryStatus | None = None
    section_summary_status: SummaryStatus | None = None
    section_identifier: str | None = None
    missing_embedding: bool = False

    def matches(self, chunk: Chunk) -> bool:
        if self.chunk_ids is not None and chunk.id not in self.chunk_ids:
            return False
        if self.summary_status is not None and chunk.summary_status != self.summary_status:
            return False
        if (
            self.section_summary_status is not None
            and chunk.section_summary_status != self.section_summary_status
        ):
            return False
        if (
            self.section_identifier is not None
            and chunk.section_identifier != self.section_identifier
        ):
            return False
        if self.missing_embedding and chunk.embedding is not None:
            return False
        return True
