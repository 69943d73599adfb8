"""Pydantic request/response schemas for the kb-ingest HTTP API.

Stage endpoints return :class:`StageResultResponse`, a JSON mirror of
:class:`~kb_ingest.models.pipeline.StageResponse`.  When a stage is
queued as a background task the response carries ``queued=True`` and no
result; callers poll ``/documents/{id}/status`` instead.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from kb_ingest.models.pipeline import StageResponse
from kb_ingest.models.summary import SummaryLevel


class SummarizeRequest(BaseModel):
    """Body of ``POST /documents/{id}/summarize``."""

    chunk_id: str | None = Field(default=None, description="Summarize just this chunk.")
    summarize_level: SummaryLevel = Field(
        default=SummaryLevel.CHUNK,
        description="Level to start from: chunk, section or document.",
    )


class StageResultResponse(BaseModel):
    """Outcome of a stage request."""

    success: bool
    document_id: str
    message: str
    queued: bool = False
    error: str | None = None
    error_details: dict[str, Any] | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_stage(cls, response: StageResponse) -> StageResultResponse:
        return cls(**response.model_dump())

    @classmethod
    def queued_for(cls, document_id: str, stage: str) -> StageResultResponse:
        return cls(
            success=True,
            document_id=document_id,
            message=f"{stage} queued",
            queued=True,
        )


class DocumentStatusResponse(BaseModel):
    """Snapshot returned by ``GET /documents/{id}/status``."""

    document_id: str
    status: str
    processing_stage: str | None = None
    progress: int = Field(default=0, ge=0, le=100)
    status_message: str = ""
    last_updated_at: str | None = None
    processing_error: dict[str, Any] | None = None


class HealthResponse(BaseModel):
    """Response for the health-check endpoint."""

    status: str
    version: str
    providers: dict[str, bool] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Structured error body returned by the error-handling middleware."""

    error: str
    code: str
    detail: str
    suggested_actions: list[str] = Field(default_factory=list)
