"""Abstract base class for document summary persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod

from kb_ingest.models.summary import DocumentSummary, SummaryLevel


class ISummaryStore(ABC):
    """Contract for the one-row-per-(document, level) summary table."""

    @abstractmethod
    async def upsert(
        self,
        document_id: str,
        level: SummaryLevel,
        *,
        summary: str,
        status: str,
        model_used: str,
    ) -> DocumentSummary:
        """Insert or replace the summary keyed on ``(document_id, level)``."""

    @abstractmethod
    async def get(self, document_id: str, level: SummaryLevel) -> DocumentSummary | None:
        """Return the stored summary, or ``None``."""
