"""Unit tests for PDF page sampling and the PyMuPDF-backed extractor."""

from __future__ import annotations

import itertools

import fitz
import pytest

from conftest import make_document
from kb_ingest.interfaces.progress_reporter import NullProgressReporter
from kb_ingest.services.extraction.pdf_extractor import PDFExtractor, select_sample_pages
from kb_ingest.utils.errors import ExtractionError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pdf_bytes(pages: int) -> bytes:
    """Build an in-memory PDF whose page N reads ``Page N discusses topic N.``"""
    pdf = fitz.open()
    for number in range(1, pages + 1):
        page = pdf.new_page()
        page.insert_text((72, 72), f"Page {number} discusses topic {number}.")
    data = pdf.tobytes()
    pdf.close()
    return data


def _pdf_document():
    return make_document(storage_path="uploads/report.pdf", file_type="application/pdf")


# ---------------------------------------------------------------------------
# select_sample_pages
# ---------------------------------------------------------------------------


class TestSelectSamplePages:
    def test_small_document_reads_every_page(self) -> None:
        assert select_sample_pages(12, threshold=250, max_pages=200) == list(range(12))

    def test_empty_document(self) -> None:
        assert select_sample_pages(0, threshold=250, max_pages=200) == []

    def test_large_document_is_capped(self) -> None:
        pages = select_sample_pages(500, threshold=250, max_pages=200)

        assert len(pages) <= 200
        assert pages == sorted(set(pages))

    def test_first_and_last_page_always_included(self) -> None:
        pages = select_sample_pages(500, threshold=250, max_pages=200)
        assert pages[0] == 0
        assert pages[-1] == 499

    def test_middle_region_is_sampled(self) -> None:
        pages = select_sample_pages(500, threshold=250, max_pages=200)
        assert 250 in pages

    def test_sampling_is_deterministic(self) -> None:
        first = select_sample_pages(800, threshold=250, max_pages=200, seed=3)
        second = select_sample_pages(800, threshold=250, max_pages=200, seed=3)
        assert first == second


# ---------------------------------------------------------------------------
# PDFExtractor
# ---------------------------------------------------------------------------


class TestPDFExtractor:
    @pytest.mark.asyncio
    async def test_extracts_pages_with_markers(self) -> None:
        extractor = PDFExtractor()
        result = await extractor.extract(_pdf_document(), _pdf_bytes(3), NullProgressReporter())

        assert "[Page 1]" in result.text
        assert "[Page 3]" in result.text
        assert "Page 2 discusses topic 2." in result.text
        assert result.metadata["page_count"] == 3
        assert result.metadata["pages_extracted"] == 3
        assert result.metadata["sampled"] is False
        assert result.metadata["truncated"] is False

    @pytest.mark.asyncio
    async def test_large_pdf_is_sampled(self) -> None:
        extractor = PDFExtractor(sampling_threshold=250, max_sampled_pages=200)
        result = await extractor.extract(_pdf_document(), _pdf_bytes(500), NullProgressReporter())

        assert result.metadata["sampled"] is True
        assert result.metadata["pages_extracted"] <= 200
        assert result.metadata["truncated"] is True
        assert "[Page 1]" in result.text
        assert "[Page 500]" in result.text

    @pytest.mark.asyncio
    async def test_time_budget_stops_loop_and_keeps_pages(self) -> None:
        ticks = itertools.count(0, 100)
        extractor = PDFExtractor(time_budget_seconds=120, clock=lambda: next(ticks))

        result = await extractor.extract(_pdf_document(), _pdf_bytes(5), NullProgressReporter())

        assert result.metadata["stopped_early"] == "time_budget"
        assert result.metadata["pages_extracted"] == 1
        assert "[Page 1]" in result.text
        assert "[Page 2]" not in result.text

    @pytest.mark.asyncio
    async def test_size_budget_stops_loop(self) -> None:
        extractor = PDFExtractor(max_text_bytes=10)
        result = await extractor.extract(_pdf_document(), _pdf_bytes(4), NullProgressReporter())

        assert result.metadata["stopped_early"] == "size_budget"
        assert result.metadata["pages_extracted"] == 1

    @pytest.mark.asyncio
    async def test_empty_blob_raises(self) -> None:
        with pytest.raises(ExtractionError):
            await PDFExtractor().extract(_pdf_document(), b"", NullProgressReporter())

    @pytest.mark.asyncio
    async def test_corrupt_pdf_raises_with_user_message(self) -> None:
        with pytest.raises(ExtractionError) as exc_info:
            await PDFExtractor().extract(
                _pdf_document(), b"this is not a pdf at all", NullProgressReporter()
            )
        assert exc_info.value.user_message == "This PDF appears to be damaged."
