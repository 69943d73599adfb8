"""Common base for the per-source extractors."""

from __future__ import annotations

from abc import ABC, abstractmethod

from kb_ingest.interfaces.progress_reporter import IProgressReporter
from kb_ingest.models.document import Document
from kb_ingest.models.extraction import ExtractionResult, SourceKind


class SourceExtractor(ABC):
    """One extraction variant.

    Subclasses set :attr:`kind` and :attr:`needs_blob`.  When
    ``needs_blob`` is true the dispatcher downloads the document's blob and
    passes the bytes as *data*; URL-based variants receive ``None``.

    ``quality_user_message`` / ``quality_actions`` override the generic
    content-quality explanation for this kind of source.
    """

    kind: SourceKind
    needs_blob: bool = True
    quality_user_message: str | None = None
    quality_actions: list[str] | None = None

    @abstractmethod
    async def extract(
        self,
        document: Document,
        data: bytes | None,
        progress: IProgressReporter,
    ) -> ExtractionResult:
        """Convert the source into text plus light metadata."""
