"""Pydantic v2 data models for documents, chunks, summaries and stage I/O."""

from kb_ingest.models.chunk import Chunk, ChunkFilter, SummaryStatus, TextChunk
from kb_ingest.models.document import (
    TERMINAL_STATUSES,
    Document,
    DocumentStatus,
    ProcessingError,
)
from kb_ingest.models.extraction import (
    EmbeddingResult,
    ExtractionResult,
    SourceKind,
    Transcript,
    TranscriptSegment,
)
from kb_ingest.models.pipeline import (
    STAGE_PROGRESS,
    PipelineStage,
    StageRequest,
    StageResponse,
)
from kb_ingest.models.summary import DocumentSummary, SummaryLevel

__all__ = [
    "STAGE_PROGRESS",
    "TERMINAL_STATUSES",
    "Chunk",
    "ChunkFilter",
    "Document",
    "DocumentStatus",
    "DocumentSummary",
    "EmbeddingResult",
    "ExtractionResult",
    "PipelineStage",
    "ProcessingError",
    "SourceKind",
    "StageRequest",
    "StageResponse",
    "SummaryLevel",
    "SummaryStatus",
    "TextChunk",
    "Transcript",
    "TranscriptSegment",
]
