"""Document-level summary model.

At most one row exists per ``(document_id, summary_level)``; the summary
store upserts on that pair.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from kb_ingest.models.document import utc_now


class SummaryLevel(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Granularity of a summarization request."""

    CHUNK = "chunk"
    SECTION = "section"
    DOCUMENT = "document"


class DocumentSummary(BaseModel):
    """The stored rollup for one document."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    summary_level: SummaryLevel = SummaryLevel.DOCUMENT
    summary: str
    status: str = "completed"
    model_used: str = ""
    updated_at: datetime = Field(default_factory=utc_now)
