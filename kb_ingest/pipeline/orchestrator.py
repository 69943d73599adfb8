"""Stage entry points for the ingestion pipeline.

:class:`DocumentPipeline` wires the extractor, chunker, embedder and
summarizer to the stores and the status tracker.  Each public coroutine
is one independently re-runnable stage:

    extract    source -> sanitized text persisted to the blob store
    chunk      persisted text -> fresh chunk rows
    embed      chunks without an embedding -> vectors
    summarize  chunk / section / document summaries
    process    all of the above in order, with embedding running
               concurrently with chunk summaries

Stages communicate only through the stores, never through in-process
state, so any stage can be retried on its own.  None of them raise:
failures are written to the document (structured error, ``error``
status) and returned as ``StageResponse(success=False)``.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable

import structlog

from kb_ingest.interfaces.blob_store import IBlobStore
from kb_ingest.interfaces.chunk_store import IChunkStore
from kb_ingest.models.chunk import Chunk
from kb_ingest.models.document import TERMINAL_STATUSES, Document, DocumentStatus
from kb_ingest.models.extraction import SourceKind
from kb_ingest.models.pipeline import STAGE_PROGRESS, PipelineStage, StageResponse
from kb_ingest.models.summary import SummaryLevel
from kb_ingest.pipeline.progress import StageProgressReporter
from kb_ingest.pipeline.status_tracker import StatusTracker
from kb_ingest.services.chunking.chunker import DocumentChunker
from kb_ingest.services.embedding.embedder import ChunkEmbedder
from kb_ingest.services.extraction.extractor import DocumentExtractor
from kb_ingest.services.summarization.summarizer import NO_CONTENT_MESSAGE, HierarchicalSummarizer
from kb_ingest.utils.errors import (
    ChunkingError,
    DocumentNotFoundError,
    InvalidStatusTransitionError,
    KBIngestError,
)
from kb_ingest.utils.logging import bind_stage_context

logger = structlog.get_logger(logger_name=__name__)

EXTRACTED_TEXT_TEMPLATE = "extracted/{document_id}.txt"

_StageBody = Callable[[Document], Awaitable[StageResponse]]


def extracted_text_path(document: Document) -> str:
    """Blob path of the document's extracted text."""
    stored = document.metadata.get("extracted_text_path")
    if isinstance(stored, str) and stored:
        return stored
    return EXTRACTED_TEXT_TEMPLATE.format(document_id=document.id)


class DocumentPipeline:
    """Runs ingestion stages for one document at a time.

    Parameters
    ----------
    tracker:
        Status tracker over the document store.
    chunk_store:
        Chunk persistence.
    blob_store:
        Uploads and extracted text.
    extractor, chunker, embedder, summarizer:
        The stage services.
    """

    def __init__(
        self,
        tracker: StatusTracker,
        chunk_store: IChunkStore,
        blob_store: IBlobStore,
        extractor: DocumentExtractor,
        chunker: DocumentChunker,
        embedder: ChunkEmbedder,
        summarizer: HierarchicalSummarizer,
    ) -> None:
        self._tracker = tracker
        self._chunks = chunk_store
        self._blobs = blob_store
        self._extractor = extractor
        self._chunker = chunker
        self._embedder = embedder
        self._summarizer = summarizer

    @property
    def tracker(self) -> StatusTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def extract(self, document_id: str) -> StageResponse:
        """Extract the document's text and persist it."""
        return await self._run_stage(document_id, PipelineStage.EXTRACTION, self._extract)

    async def chunk(self, document_id: str) -> StageResponse:
        """Replace the document's chunks with a fresh split of its extracted text."""
        return await self._run_stage(document_id, PipelineStage.CHUNKING, self._chunk)

    async def embed(self, document_id: str) -> StageResponse:
        """Embed every chunk that has no embedding yet."""
        return await self._run_stage(document_id, PipelineStage.EMBEDDING, self._embed)

    async def summarize(
        self,
        document_id: str,
        chunk_id: str | None = None,
        level: SummaryLevel = SummaryLevel.CHUNK,
    ) -> StageResponse:
        """Run summarization from *level* upwards.

        ``chunk`` summarizes pending chunks (or just *chunk_id*), then
        eligible sections, then the document.  ``section`` starts at the
        sections and ``document`` only finalizes.
        """
        if level == SummaryLevel.DOCUMENT:
            return await self._run_stage(document_id, PipelineStage.DOCUMENT_SUMMARY, self._finalize)

        steps: list[StageResponse] = []
        if level == SummaryLevel.CHUNK:
            response = await self._run_stage(
                document_id,
                PipelineStage.CHUNK_SUMMARIES,
                lambda document: self._summarize_chunks(document, chunk_id),
            )
            if not response.success:
                return response
            steps.append(response)

        response = await self._run_stage(document_id, PipelineStage.SECTION_SUMMARIES, self._summarize_sections)
        if not response.success:
            return response
        steps.append(response)

        final = await self._run_stage(document_id, PipelineStage.DOCUMENT_SUMMARY, self._finalize)
        return self._combine(final, steps)

    async def process(self, document_id: str) -> StageResponse:
        """Run every stage in order for *document_id*."""
        steps: list[StageResponse] = []
        for entry in (self.extract, self.chunk):
            response = await entry(document_id)
            if not response.success:
                return response
            steps.append(response)

        embed_response, chunk_response = await asyncio.gather(
            self.embed(document_id),
            self._run_stage(
                document_id,
                PipelineStage.CHUNK_SUMMARIES,
                lambda document: self._summarize_chunks(document, None),
            ),
        )
        for response in (embed_response, chunk_response):
            if not response.success:
                return response
            steps.append(response)

        final = await self.summarize(document_id, level=SummaryLevel.SECTION)
        return self._combine(final, steps)

    # ------------------------------------------------------------------
    # Stage bodies
    # ------------------------------------------------------------------

    async def _extract(self, document: Document) -> StageResponse:
        await self._begin(document, DocumentStatus.PROCESSING, PipelineStage.EXTRACTION)
        reporter = StageProgressReporter(self._tracker, document.id)

        result = await self._extractor.extract(document, reporter)
        path = EXTRACTED_TEXT_TEMPLATE.format(document_id=document.id)
        await self._blobs.upload(
            document.bucket,
            path,
            result.text.encode("utf-8"),
            content_type="text/plain; charset=utf-8",
        )

        title = result.metadata.get("title")
        await self._tracker.update_progress(
            document.id, PipelineStage.EXTRACTION.value, STAGE_PROGRESS[PipelineStage.EXTRACTION][1]
        )
        await self._update_document(
            document,
            metadata={
                "extraction": result.metadata,
                "extracted_text_path": path,
                "source_kind": result.source_kind.value,
                "content_length": len(result.text),
            },
            title=title if isinstance(title, str) and title and not document.title else None,
        )
        return StageResponse(
            success=True,
            document_id=document.id,
            message=f"Extracted {len(result.text)} characters",
            data={"source_kind": result.source_kind.value, "content_length": len(result.text)},
        )

    async def _chunk(self, document: Document) -> StageResponse:
        await self._begin(document, DocumentStatus.CHUNKING, PipelineStage.CHUNKING)
        raw = await self._blobs.download(document.bucket, extracted_text_path(document))
        text = raw.decode("utf-8")

        kind_value = document.metadata.get("source_kind")
        source_kind = SourceKind(kind_value) if kind_value in {k.value for k in SourceKind} else None
        drafts = self._chunker.chunk(text, document.id, source_kind)
        if not drafts:
            raise ChunkingError(message=f"No chunks created for document {document.id}")

        chunks = [
            Chunk(
                id=str(uuid.uuid4()),
                document_id=document.id,
                chunk_index=draft.index,
                content=draft.content,
                token_count=draft.token_count,
                section_identifier=draft.section_identifier,
                citation_key=draft.citation_key,
                metadata=dict(draft.metadata),
            )
            for draft in drafts
        ]
        removed = await self._chunks.delete_for_document(document.id)
        await self._chunks.insert_many(chunks)

        sections = len({c.section_identifier for c in chunks if c.section_identifier})
        await self._tracker.update_progress(
            document.id,
            PipelineStage.CHUNKING.value,
            STAGE_PROGRESS[PipelineStage.CHUNKING][1],
            f"Created {len(chunks)} chunks",
        )
        await self._update_document(document, metadata={"chunk_count": len(chunks), "section_count": sections})
        logger.info("chunks_stored", document_id=document.id, chunks=len(chunks), replaced=removed)
        return StageResponse(
            success=True,
            document_id=document.id,
            message=f"Created {len(chunks)} chunks",
            data={"chunk_count": len(chunks), "section_count": sections},
        )

    async def _embed(self, document: Document) -> StageResponse:
        reporter = StageProgressReporter(self._tracker, document.id)
        report = await self._embedder.embed_document(document.id, reporter)
        await self._update_document(document, metadata={"embedding": report.as_dict()})
        message = f"Embedded {report.embedded} of {report.total} chunks"
        if report.failed:
            message += f" ({report.failed} failed)"
        return StageResponse(
            success=True,
            document_id=document.id,
            message=message,
            data={"embedding": report.as_dict()},
        )

    async def _summarize_chunks(self, document: Document, chunk_id: str | None) -> StageResponse:
        await self._begin(document, DocumentStatus.SUMMARIZING_CHUNKS, PipelineStage.CHUNK_SUMMARIES)
        reporter = StageProgressReporter(self._tracker, document.id)
        report = await self._summarizer.summarize_chunks(document.id, chunk_id, reporter)
        return StageResponse(
            success=True,
            document_id=document.id,
            message=f"Summarized {report.completed} of {report.claimed} chunks",
            data={"chunk_summaries": report.as_dict()},
        )

    async def _summarize_sections(self, document: Document) -> StageResponse:
        await self._begin(document, DocumentStatus.SUMMARIZING_CHUNKS, PipelineStage.SECTION_SUMMARIES)
        reporter = StageProgressReporter(self._tracker, document.id)
        report = await self._summarizer.summarize_sections(document.id, reporter)
        return StageResponse(
            success=True,
            document_id=document.id,
            message=f"Summarized {report.completed} of {report.sections} sections",
            data={"section_summaries": report.as_dict()},
        )

    async def _finalize(self, document: Document) -> StageResponse:
        await self._begin(document, DocumentStatus.SUMMARIZING_DOCUMENT, PipelineStage.DOCUMENT_SUMMARY)
        reporter = StageProgressReporter(self._tracker, document.id)
        stage = PipelineStage.DOCUMENT_SUMMARY.value
        try:
            result = await self._summarizer.finalize_document(document, reporter)
        except KBIngestError as exc:
            error = await self._tracker.record_error(
                document.id, exc, stage=stage, status=DocumentStatus.PROCESSING_FAILED
            )
            return StageResponse(
                success=False,
                document_id=document.id,
                message="Document summary failed",
                error=error.user_friendly_message,
                error_details=error.to_metadata(),
            )

        if not result.produced:
            await self._tracker.transition(
                document.id,
                DocumentStatus.PROCESSING_FAILED,
                stage=stage,
                message=NO_CONTENT_MESSAGE,
                metadata={"summary_failures": result.failures},
            )
            return StageResponse(
                success=True,
                document_id=document.id,
                message=NO_CONTENT_MESSAGE,
                data={"summary_failures": result.failures},
            )

        status = (
            DocumentStatus.COMPLETED_WITH_ERRORS if result.had_errors else DocumentStatus.COMPLETED
        )
        await self._tracker.transition(
            document.id,
            status,
            stage=stage,
            progress=100,
            metadata={"summary_failures": result.failures, "summary_model": result.model_used},
        )
        return StageResponse(
            success=True,
            document_id=document.id,
            message=result.message,
            data={
                "status": status.value,
                "sections_used": result.sections_used,
                "summary_failures": result.failures,
            },
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run_stage(
        self,
        document_id: str,
        stage: PipelineStage,
        body: _StageBody,
    ) -> StageResponse:
        """Run *body* for the document, turning every failure into a response."""
        with bind_stage_context(document_id, stage.value):
            try:
                document = await self._tracker.get_document(document_id)
            except DocumentNotFoundError as exc:
                logger.warning("stage_document_missing", error=str(exc))
                return self._failure(document_id, exc, "Document not found")
            except KBIngestError as exc:
                logger.error("stage_document_unreadable", error=str(exc))
                return self._failure(document_id, exc, "Document could not be loaded")

            try:
                return await body(document)
            except InvalidStatusTransitionError as exc:
                # Another invocation owns the document; leave its status alone.
                logger.warning("stage_rejected", error=str(exc), status=document.status.value)
                return self._failure(document_id, exc, f"{stage.value} cannot run now")
            except Exception as exc:  # noqa: BLE001 -- entry points never raise
                logger.exception("stage_failed", error=str(exc))
                return await self._record_failure(document_id, exc, stage)

    async def _record_failure(
        self,
        document_id: str,
        exc: BaseException,
        stage: PipelineStage,
    ) -> StageResponse:
        try:
            error = await self._tracker.record_error(document_id, exc, stage=stage.value)
        except Exception as record_exc:  # noqa: BLE001 -- the store itself may be the failure
            logger.error("stage_error_not_recorded", error=str(record_exc))
            return self._failure(document_id, exc, f"{stage.value} failed")
        return StageResponse(
            success=False,
            document_id=document_id,
            message=f"{stage.value} failed",
            error=error.user_friendly_message,
            error_details=error.to_metadata(),
        )

    @staticmethod
    def _failure(document_id: str, exc: BaseException, message: str) -> StageResponse:
        details = None
        if isinstance(exc, KBIngestError):
            details = {
                "code": exc.code,
                "message": str(exc),
                "userFriendlyMessage": exc.user_message,
                "suggestedActions": exc.suggested_actions,
            }
        return StageResponse(
            success=False,
            document_id=document_id,
            message=message,
            error=exc.user_message if isinstance(exc, KBIngestError) else str(exc),
            error_details=details,
        )

    async def _begin(self, document: Document, status: DocumentStatus, stage: PipelineStage) -> None:
        """Move the document into *status*, restarting it first if it is terminal."""
        current = await self._tracker.get_document(document.id)
        start = STAGE_PROGRESS[stage][0]
        if current.status in TERMINAL_STATUSES and status != DocumentStatus.PROCESSING:
            await self._tracker.transition(
                document.id,
                DocumentStatus.PROCESSING,
                stage=stage.value,
                progress=start,
                message="Restarting processing",
            )
        await self._tracker.transition(document.id, status, stage=stage.value, progress=start)

    async def _update_document(
        self,
        document: Document,
        *,
        metadata: dict[str, object],
        title: str | None = None,
    ) -> None:
        # Status is owned by the tracker; this only merges stage results.
        await self._tracker.merge_metadata(document.id, metadata, title=title)

    @staticmethod
    def _combine(final: StageResponse, steps: list[StageResponse]) -> StageResponse:
        data: dict[str, object] = {}
        for step in steps:
            data.update(step.data)
        data.update(final.data)
        return final.model_copy(update={"data": data})
