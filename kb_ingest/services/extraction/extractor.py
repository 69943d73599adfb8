"""Extraction dispatcher.

:class:`DocumentExtractor` selects the variant for a document, fetches
its blob when the variant needs one, and applies the same post-processing
to every variant's output: sanitization, then the content-quality gate.
"""

from __future__ import annotations

import structlog

from kb_ingest.interfaces.blob_store import IBlobStore
from kb_ingest.interfaces.progress_reporter import IProgressReporter, NullProgressReporter
from kb_ingest.models.document import Document
from kb_ingest.models.extraction import ExtractionResult, SourceKind
from kb_ingest.services.extraction.base import SourceExtractor
from kb_ingest.services.extraction.detection import detect_source_kind, effective_media_type
from kb_ingest.utils.errors import UnsupportedSourceError
from kb_ingest.utils.text_sanitizer import MIN_ALPHA_RATIO, ensure_quality, sanitize_text

logger = structlog.get_logger(logger_name=__name__)


class DocumentExtractor:
    """Converts any supported document into sanitized plain text.

    Parameters
    ----------
    blob_store:
        Source of uploaded files.
    extractors:
        One :class:`SourceExtractor` per supported :class:`SourceKind`.
    min_content_length:
        Shortest acceptable extracted text, in characters.
    """

    def __init__(
        self,
        blob_store: IBlobStore,
        extractors: dict[SourceKind, SourceExtractor],
        min_content_length: int = 50,
        min_alpha_ratio: float = MIN_ALPHA_RATIO,
    ) -> None:
        self._blob_store = blob_store
        self._extractors = dict(extractors)
        self._min_content_length = min_content_length
        self._min_alpha_ratio = min_alpha_ratio

    async def extract(
        self,
        document: Document,
        progress: IProgressReporter | None = None,
    ) -> ExtractionResult:
        """Extract, sanitize and quality-check the text of *document*.

        Raises
        ------
        MissingLocatorError, UnsupportedSourceError
            When the document cannot be routed to a variant.
        ExtractionError
            Any variant-specific failure, including
            :class:`ContentQualityError` from the quality gate.
        """
        progress = progress or NullProgressReporter()
        kind = detect_source_kind(document)
        extractor = self._extractors.get(kind)
        if extractor is None:
            raise UnsupportedSourceError(message=f"No extractor configured for {kind.value} sources")

        data: bytes | None = None
        if extractor.needs_blob:
            data = await self._blob_store.download(document.bucket, document.storage_path or "")

        logger.info(
            "extraction_started",
            document_id=document.id,
            source_kind=kind.value,
            media_type=effective_media_type(document),
            blob_bytes=len(data) if data is not None else None,
        )
        raw = await extractor.extract(document, data, progress)
        text = sanitize_text(raw.text)

        report = ensure_quality(
            text,
            source_label=f"{kind.value} extraction",
            min_length=self._min_content_length,
            min_alpha_ratio=self._min_alpha_ratio,
            user_message=extractor.quality_user_message,
            suggested_actions=extractor.quality_actions,
        )

        metadata = {
            **raw.metadata,
            "source_kind": kind.value,
            "content_length": len(text),
            "alpha_ratio": report.alpha_ratio,
        }
        logger.info(
            "extraction_completed",
            document_id=document.id,
            source_kind=kind.value,
            chars=len(text),
        )
        return ExtractionResult(text=text, source_kind=kind, metadata=metadata)
