"""Stage entry-point request/response models.

Every stage entry point returns a :class:`StageResponse` and never
raises; callers poll the document status for details.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from kb_ingest.models.summary import SummaryLevel


class PipelineStage(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Named stages, each with a slice of the overall progress bar."""

    EXTRACTION = "extraction"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    CHUNK_SUMMARIES = "chunk_summaries"
    SECTION_SUMMARIES = "section_summaries"
    DOCUMENT_SUMMARY = "document_summary"


# Percentage band (start, end) for each stage.
STAGE_PROGRESS: dict[PipelineStage, tuple[int, int]] = {
    PipelineStage.EXTRACTION: (10, 30),
    PipelineStage.CHUNKING: (30, 60),
    PipelineStage.EMBEDDING: (60, 75),
    PipelineStage.CHUNK_SUMMARIES: (75, 90),
    PipelineStage.SECTION_SUMMARIES: (90, 95),
    PipelineStage.DOCUMENT_SUMMARY: (95, 100),
}


class StageRequest(BaseModel):
    """Input accepted by the intermediate stage entry points."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    document_id: str = Field(alias="documentId")
    chunk_id: str | None = Field(default=None, alias="chunkId")
    summarize_level: SummaryLevel = Field(default=SummaryLevel.CHUNK, alias="summarizeLevel")


class StageResponse(BaseModel):
    """Non-throwing result of a stage entry point."""

    model_config = ConfigDict(frozen=True)

    success: bool
    document_id: str
    message: str
    error: str | None = None
    error_details: dict[str, Any] | None = None
    data: dict[str, Any] = Field(default_factory=dict)
