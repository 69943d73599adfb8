"""PDF text extraction with page sampling and resource budgets.

Reads PDFs with PyMuPDF (``fitz``) page by page and joins the pages with
``[Page N]`` markers, which the chunker uses to assign ``Page N`` section
identifiers.

Large documents (more than ``sampling_threshold`` pages) are sampled
instead of read in full: a fixed share of pages from the beginning, the
middle and the end, then a seeded random fill up to ``max_sampled_pages``.
The first and last pages are always included and the same PDF always
yields the same sample.

Two budgets are checked inside the page loop: wall-clock time and
accumulated text bytes.  Breaching either stops the loop and keeps the
pages read so far; the result metadata records why.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from kb_ingest.interfaces.progress_reporter import IProgressReporter
from kb_ingest.models.document import Document
from kb_ingest.models.extraction import ExtractionResult, SourceKind
from kb_ingest.models.pipeline import PipelineStage
from kb_ingest.services.extraction.base import SourceExtractor
from kb_ingest.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)

PAGE_MARKER = "[Page {number}]"

# Share of the sample drawn from each region; the remainder is random fill.
_BEGINNING_SHARE = 0.3
_MIDDLE_SHARE = 0.2
_END_SHARE = 0.2

_PROGRESS_EVERY = 10


def select_sample_pages(
    page_count: int,
    threshold: int,
    max_pages: int,
    seed: int = 42,
) -> list[int]:
    """Return the zero-based page numbers to extract, ascending.

    Documents at or under *threshold* pages are read in full.  Larger
    documents get at most *max_pages* pages, always including the first
    and last page.
    """
    if page_count <= 0:
        return []
    if page_count <= threshold or page_count <= max_pages:
        return list(range(page_count))

    budget = max(2, max_pages)
    selected: set[int] = {0, page_count - 1}

    begin_n = int(budget * _BEGINNING_SHARE)
    selected.update(range(min(begin_n, page_count)))

    end_n = int(budget * _END_SHARE)
    selected.update(range(max(0, page_count - end_n), page_count))

    middle_n = int(budget * _MIDDLE_SHARE)
    middle_start = max(0, page_count // 2 - middle_n // 2)
    selected.update(range(middle_start, min(page_count, middle_start + middle_n)))

    remaining = budget - len(selected)
    if remaining > 0:
        # Seeded per page count so one document always samples the same pages.
        rng = random.Random(seed * 1_000_003 + page_count)
        pool = [p for p in range(page_count) if p not in selected]
        selected.update(rng.sample(pool, min(remaining, len(pool))))

    return sorted(selected)


class PDFExtractor(SourceExtractor):
    """Extracts text from PDF blobs.

    Parameters
    ----------
    sampling_threshold:
        Page count above which pages are sampled.
    max_sampled_pages:
        Upper bound on pages read from a sampled document.
    time_budget_seconds:
        Wall-clock ceiling for the page loop.
    max_text_bytes:
        Ceiling on accumulated UTF-8 text.
    seed:
        Seed for the random fill of the sample.
    clock:
        Monotonic clock; injectable for tests.
    """

    kind = SourceKind.PDF
    needs_blob = True
    quality_user_message = "We couldn't find readable text in this PDF."
    quality_actions = [
        "If this PDF is scanned, run it through OCR and upload the result.",
        "Check the PDF isn't password protected.",
        "Try exporting the document to PDF again.",
    ]

    def __init__(
        self,
        sampling_threshold: int = 250,
        max_sampled_pages: int = 200,
        time_budget_seconds: float = 120.0,
        max_text_bytes: int = 20_000_000,
        seed: int = 42,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sampling_threshold = sampling_threshold
        self._max_sampled_pages = max_sampled_pages
        self._time_budget = time_budget_seconds
        self._max_text_bytes = max_text_bytes
        self._seed = seed
        self._clock = clock

    async def extract(
        self,
        document: Document,
        data: bytes | None,
        progress: IProgressReporter,
    ) -> ExtractionResult:
        if not data:
            raise ExtractionError(message=f"PDF blob for {document.id} is empty")

        try:
            pdf = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:  # noqa: BLE001 -- fitz raises several unrelated types
            raise ExtractionError(
                message=f"Could not open PDF: {exc}",
                provider_name="pymupdf",
                user_message="This PDF appears to be damaged.",
                suggested_actions=["Open and re-save the PDF, then upload it again."],
            ) from exc

        try:
            if pdf.needs_pass:
                raise ExtractionError(
                    message="PDF is encrypted",
                    provider_name="pymupdf",
                    user_message="This PDF is password protected.",
                    suggested_actions=["Remove password protection and upload the file again."],
                )
            return await self._extract_pages(document, pdf, progress)
        finally:
            pdf.close()

    async def _extract_pages(
        self,
        document: Document,
        pdf: fitz.Document,
        progress: IProgressReporter,
    ) -> ExtractionResult:
        page_count = pdf.page_count
        pages = select_sample_pages(
            page_count,
            self._sampling_threshold,
            self._max_sampled_pages,
            self._seed,
        )
        sampled = len(pages) < page_count

        parts: list[str] = []
        text_bytes = 0
        pages_read = 0
        stop_reason: str | None = None
        started = self._clock()

        for position, page_number in enumerate(pages, start=1):
            if self._clock() - started > self._time_budget:
                stop_reason = "time_budget"
                break
            if text_bytes >= self._max_text_bytes:
                stop_reason = "size_budget"
                break

            page_text = pdf.load_page(page_number).get_text("text").strip()
            pages_read += 1
            if page_text:
                block = f"{PAGE_MARKER.format(number=page_number + 1)}\n{page_text}"
                parts.append(block)
                text_bytes += len(block.encode("utf-8"))

            if position % _PROGRESS_EVERY == 0 or position == len(pages):
                await progress.report(PipelineStage.EXTRACTION, position, len(pages))
                await asyncio.sleep(0)

        if stop_reason:
            logger.warning(
                "pdf_extraction_stopped_early",
                document_id=document.id,
                reason=stop_reason,
                pages_read=pages_read,
                pages_planned=len(pages),
            )

        metadata = {
            "type": "pdf",
            "page_count": page_count,
            "pages_extracted": pages_read,
            "sampled": sampled,
            "sampled_pages": len(pages) if sampled else None,
            "stopped_early": stop_reason,
            "truncated": sampled or stop_reason is not None,
        }
        logger.info(
            "pdf_extracted",
            document_id=document.id,
            pages=page_count,
            pages_read=pages_read,
            sampled=sampled,
            chars=sum(len(p) for p in parts),
        )
        return ExtractionResult(
            text="\n\n".join(parts),
            source_kind=SourceKind.PDF,
            metadata=metadata,
        )
