"""Document record models.

A :class:`Document` is one ingested source (uploaded file, web page,
video or audio).  The pipeline never creates or deletes documents; it
reads them, advances :attr:`Document.status`, and merges progress and
error information into :attr:`Document.metadata`.

All models use frozen config; stores return fresh copies on every read
and updates go through the store, never through attribute assignment.
"""

from __future__ import annotations

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from kb_ingest.utils.errors import KBIngestError

_STACK_LIMIT = 2000


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# DocumentStatus -- lifecycle of one document.
# ---------------------------------------------------------------------------
class DocumentStatus(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Lifecycle status of a document.

    Forward order::

        QUEUED -> PROCESSING -> CHUNKING -> SUMMARIZING_CHUNKS ->
        SUMMARIZING_DOCUMENT -> COMPLETED | COMPLETED_WITH_ERRORS | PROCESSING_FAILED

    ``ERROR`` is reachable from any state.  See
    :mod:`kb_ingest.pipeline.status_tracker` for the transition rules.
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    CHUNKING = "chunking"
    SUMMARIZING_CHUNKS = "summarizing_chunks"
    SUMMARIZING_DOCUMENT = "summarizing_document"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    ERROR = "error"
    PROCESSING_FAILED = "processing_failed"


TERMINAL_STATUSES = frozenset(
    {
        DocumentStatus.COMPLETED,
        DocumentStatus.COMPLETED_WITH_ERRORS,
        DocumentStatus.ERROR,
        DocumentStatus.PROCESSING_FAILED,
    }
)


class Document(BaseModel):
    """One ingested source and its processing state."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Document identifier.")
    organisation_id: str = Field(description="Owning organisation; selects the blob bucket.")
    storage_path: str | None = Field(
        default=None,
        description="Opaque locator of the uploaded blob inside the org bucket.",
    )
    file_type: str = Field(
        default="",
        description="Declared media type, e.g. application/pdf, audio/mpeg, youtube.",
    )
    title: str = Field(default="", description="Display title, if known.")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form map: source URL, detected type, progress, error history.",
    )
    status: DocumentStatus = Field(default=DocumentStatus.QUEUED)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def bucket(self) -> str:
        """Blob bucket for this document's organisation."""
        return f"org-{self.organisation_id}-uploads"

    @property
    def source_url(self) -> str | None:
        """URL the document was registered from, if any."""
        for key in ("source_url", "originalUrl", "url"):
            value = self.metadata.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None


# ---------------------------------------------------------------------------
# ProcessingError -- the structured error written onto the document.
# ---------------------------------------------------------------------------
class ProcessingError(BaseModel):
    """Structured, user-presentable error stored in document metadata.

    Serialized with camelCase keys (``userFriendlyMessage``,
    ``suggestedActions``) because that is what status pollers read.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    code: str
    message: str
    user_friendly_message: str = Field(alias="userFriendlyMessage")
    suggested_actions: list[str] = Field(default_factory=list, alias="suggestedActions")
    retryable: bool = False
    stage: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    stack: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException, stage: str | None = None) -> ProcessingError:
        """Build the structured error for *exc*.

        :class:`KBIngestError` subclasses contribute their code,
        user message and suggested actions; anything else becomes
        ``UNEXPECTED_ERROR`` with a generic explanation.
        """
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        if len(stack) > _STACK_LIMIT:
            stack = stack[:_STACK_LIMIT] + "...[truncated]"

        if isinstance(exc, KBIngestError):
            return cls(
                code=exc.code,
                message=str(exc),
                userFriendlyMessage=exc.user_message,
                suggestedActions=exc.suggested_actions,
                retryable=bool(exc.retryable),
                stage=stage,
                stack=stack,
            )
        return cls(
            code="UNEXPECTED_ERROR",
            message=f"{type(exc).__name__}: {exc}",
            userFriendlyMessage="An unexpected error occurred while processing this document.",
            suggestedActions=[
                "Try processing the document again.",
                "Contact support if the problem persists.",
            ],
            retryable=True,
            stage=stage,
            stack=stack,
        )

    def to_metadata(self) -> dict[str, Any]:
        """JSON-ready camelCase dict for the document metadata map."""
        return self.model_dump(mode="json", by_alias=True)
