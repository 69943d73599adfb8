"""Unit tests for batch-response parsing and the hierarchical summarizer."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeLLMProvider, make_chunk, make_document
from kb_ingest.models.chunk import SummaryStatus
from kb_ingest.models.summary import SummaryLevel
from kb_ingest.services.summarization.batch_parser import parse_batch_response
from kb_ingest.services.summarization.summarizer import (
    NO_CONTENT_MESSAGE,
    HierarchicalSummarizer,
    section_is_ready,
)

_DOC_ID = "doc-0001-aaaa"
_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _summarizer(llm, chunk_store, summary_store, **overrides) -> HierarchicalSummarizer:
    options = {
        "batch_pause_seconds": 0,
        "max_retries": 1,
        "base_delay": 0,
        "max_delay": 0,
        "clock": lambda: _NOW,
    }
    options.update(overrides)
    return HierarchicalSummarizer(llm, chunk_store, summary_store, **options)


def _completed(index: int, section: str | None = "Part 1", **overrides):
    values = {
        "summary_status": SummaryStatus.COMPLETED,
        "chunk_summary": f"Chunk summary {index}.",
        "section_summary_status": SummaryStatus.PENDING if section else None,
    }
    values.update(overrides)
    return make_chunk(index, section=section, **values)


async def _by_index(chunk_store):
    return {c.chunk_index: c for c in await chunk_store.select_where(_DOC_ID)}


# ---------------------------------------------------------------------------
# Batch response parsing
# ---------------------------------------------------------------------------


class TestParseBatchResponse:
    def test_marker_blocks(self) -> None:
        response = "CHUNK 1 SUMMARY: First.\nCHUNK 2 SUMMARY: Second\nspans two lines."
        assert parse_batch_response(response, 2) == {1: "First.", 2: "Second spans two lines."}

    def test_markdown_decorated_markers(self) -> None:
        response = "**CHUNK 1 SUMMARY:** First one.\n\n**CHUNK 2 SUMMARY:** Second one."
        assert parse_batch_response(response, 2) == {1: "First one.", 2: "Second one."}

    def test_out_of_range_and_missing_numbers(self) -> None:
        response = "CHUNK 1 SUMMARY: A.\nCHUNK 3 SUMMARY: C.\nCHUNK 9 SUMMARY: stray."
        assert parse_batch_response(response, 3) == {1: "A.", 3: "C."}

    def test_numbered_line_fallback(self) -> None:
        response = "1. First thing.\n2) Second thing\ncontinues here.\nChunk 3: Third."
        assert parse_batch_response(response, 3) == {
            1: "First thing.",
            2: "Second thing continues here.",
            3: "Third.",
        }

    def test_unparseable_response(self) -> None:
        assert parse_batch_response("I cannot help with that.", 3) == {}


# ---------------------------------------------------------------------------
# Chunk level
# ---------------------------------------------------------------------------


class TestChunkSummaries:
    @pytest.mark.asyncio
    async def test_individual_summaries(self, summarizer, chunk_store, fake_llm) -> None:
        await chunk_store.insert_many([make_chunk(i) for i in range(3)])

        report = await summarizer.summarize_chunks(_DOC_ID)

        chunks = await _by_index(chunk_store)
        assert report.completed == 3
        assert report.batched_calls == 0
        assert chunks[0].chunk_summary.startswith("Summary: Content of chunk 0.")
        assert all(c.summary_status == SummaryStatus.COMPLETED for c in chunks.values())
        assert all(c.section_summary_status == SummaryStatus.PENDING for c in chunks.values())
        assert len(fake_llm.calls) == 3

    @pytest.mark.asyncio
    async def test_one_failing_chunk_does_not_affect_the_others(
        self, chunk_store, summary_store
    ) -> None:
        llm = FakeLLMProvider(fail_when=lambda content: "Content of chunk 4." in content)
        await chunk_store.insert_many([make_chunk(i) for i in range(10)])

        report = await _summarizer(llm, chunk_store, summary_store).summarize_chunks(_DOC_ID)

        chunks = await _by_index(chunk_store)
        assert report.completed == 9
        assert report.failed == 1
        assert chunks[4].summary_status == SummaryStatus.ERROR
        assert "scripted failure" in chunks[4].metadata["summary_error"]
        for index in (0, 1, 2, 3, 5, 6, 7, 8, 9):
            assert chunks[index].summary_status == SummaryStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_large_documents_are_batched(self, summarizer, chunk_store, fake_llm) -> None:
        await chunk_store.insert_many([make_chunk(i) for i in range(35)])

        report = await summarizer.summarize_chunks(_DOC_ID)

        chunks = await _by_index(chunk_store)
        assert report.batched_calls == 4
        assert report.individual_calls == 0
        assert fake_llm.batch_call_count() == 4
        assert chunks[0].chunk_summary == "Summary of excerpt 1."
        assert chunks[12].chunk_summary == "Summary of excerpt 3."
        assert chunks[34].chunk_summary == "Summary of excerpt 5."

    @pytest.mark.asyncio
    async def test_unmatched_batch_positions_fall_back_to_single_calls(
        self, chunk_store, summary_store
    ) -> None:
        llm = FakeLLMProvider(batch_response="CHUNK 1 SUMMARY: Only the first.")
        await chunk_store.insert_many([make_chunk(i) for i in range(35)])

        report = await _summarizer(llm, chunk_store, summary_store).summarize_chunks(_DOC_ID)

        chunks = await _by_index(chunk_store)
        assert report.completed == 35
        assert report.individual_calls == 31
        assert chunks[10].chunk_summary == "Only the first."
        assert chunks[11].chunk_summary.startswith("Summary: Content of chunk 11.")

    @pytest.mark.asyncio
    async def test_failed_batch_call_falls_back_to_single_calls(
        self, chunk_store, summary_store
    ) -> None:
        llm = FakeLLMProvider(fail_when=lambda content: "--- CHUNK" in content)
        await chunk_store.insert_many([make_chunk(i) for i in range(31)])

        report = await _summarizer(llm, chunk_store, summary_store).summarize_chunks(_DOC_ID)

        assert report.batched_calls == 0
        assert report.individual_calls == 31
        assert report.completed == 31

    @pytest.mark.asyncio
    async def test_single_chunk_request(self, summarizer, chunk_store) -> None:
        await chunk_store.insert_many([make_chunk(i) for i in range(3)])

        report = await summarizer.summarize_chunks(_DOC_ID, chunk_id="chunk-1")

        chunks = await _by_index(chunk_store)
        assert report.claimed == 1
        assert chunks[1].summary_status == SummaryStatus.COMPLETED
        assert chunks[0].summary_status == SummaryStatus.PENDING

    @pytest.mark.asyncio
    async def test_live_claim_is_left_alone(self, chunk_store, summary_store, fake_llm) -> None:
        fresh = (_NOW - timedelta(seconds=30)).isoformat()
        await chunk_store.insert_many(
            [make_chunk(0, summary_status=SummaryStatus.PROCESSING, metadata={"summary_claimed_at": fresh})]
        )

        report = await _summarizer(fake_llm, chunk_store, summary_store).summarize_chunks(_DOC_ID)

        assert report.claimed == 0
        assert fake_llm.calls == []

    @pytest.mark.asyncio
    async def test_expired_claim_is_reclaimed(self, chunk_store, summary_store, fake_llm) -> None:
        stale = (_NOW - timedelta(hours=1)).isoformat()
        await chunk_store.insert_many(
            [make_chunk(0, summary_status=SummaryStatus.PROCESSING, metadata={"summary_claimed_at": stale})]
        )

        report = await _summarizer(fake_llm, chunk_store, summary_store).summarize_chunks(_DOC_ID)

        assert report.claimed == 1
        assert (await _by_index(chunk_store))[0].summary_status == SummaryStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_completed_chunks_are_not_resummarized(self, summarizer, chunk_store, fake_llm) -> None:
        await chunk_store.insert_many([_completed(0), _completed(1)])

        report = await summarizer.summarize_chunks(_DOC_ID)

        assert report.claimed == 0
        assert fake_llm.calls == []


# ---------------------------------------------------------------------------
# Section level
# ---------------------------------------------------------------------------


class TestSectionSummaries:
    def test_section_is_ready(self) -> None:
        assert section_is_ready([_completed(0), _completed(1)]) is True
        assert section_is_ready([_completed(0), make_chunk(1)]) is False
        done = _completed(2, section_summary_status=SummaryStatus.COMPLETED)
        assert section_is_ready([done]) is False

    @pytest.mark.asyncio
    async def test_section_waits_for_every_chunk(self, summarizer, chunk_store, fake_llm) -> None:
        await chunk_store.insert_many([_completed(0), make_chunk(1)])

        report = await summarizer.summarize_sections(_DOC_ID)

        assert report.not_ready == 1
        assert report.completed == 0
        assert fake_llm.calls == []

    @pytest.mark.asyncio
    async def test_section_summary_written_to_every_member(self, summarizer, chunk_store) -> None:
        await chunk_store.insert_many(
            [_completed(0), _completed(1), _completed(2, section="Part 2")]
        )

        report = await summarizer.summarize_sections(_DOC_ID)

        chunks = await _by_index(chunk_store)
        assert report.sections == 2
        assert report.completed == 2
        for chunk in chunks.values():
            assert chunk.section_summary == "Section overview."
            assert chunk.section_summary_status == SummaryStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_section_failure_marks_members(self, chunk_store, summary_store) -> None:
        llm = FakeLLMProvider(fail_when=lambda content: "Section text:" in content)
        await chunk_store.insert_many([_completed(0), _completed(1)])

        report = await _summarizer(llm, chunk_store, summary_store).summarize_sections(_DOC_ID)

        assert report.failed == 1
        for chunk in (await _by_index(chunk_store)).values():
            assert chunk.section_summary_status == SummaryStatus.ERROR
            assert "scripted failure" in chunk.metadata["section_summary_error"]

    @pytest.mark.asyncio
    async def test_chunks_held_by_another_worker_are_not_written(
        self, chunk_store, summary_store, fake_llm
    ) -> None:
        fresh = (_NOW - timedelta(seconds=30)).isoformat()
        await chunk_store.insert_many(
            [
                _completed(0),
                _completed(
                    1,
                    section_summary_status=SummaryStatus.PROCESSING,
                    metadata={"section_claimed_at": fresh},
                ),
            ]
        )

        report = await _summarizer(fake_llm, chunk_store, summary_store).summarize_sections(_DOC_ID)

        chunks = await _by_index(chunk_store)
        assert report.completed == 1
        assert chunks[0].section_summary == "Section overview."
        assert chunks[0].section_summary_status == SummaryStatus.COMPLETED
        assert chunks[1].section_summary is None
        assert chunks[1].section_summary_status == SummaryStatus.PROCESSING
        assert chunks[1].metadata["section_claimed_at"] == fresh

    @pytest.mark.asyncio
    async def test_finished_sections_are_skipped(self, summarizer, chunk_store, fake_llm) -> None:
        await chunk_store.insert_many(
            [_completed(0, section_summary="Done.", section_summary_status=SummaryStatus.COMPLETED)]
        )

        report = await summarizer.summarize_sections(_DOC_ID)

        assert report.completed == 0
        assert fake_llm.calls == []


# ---------------------------------------------------------------------------
# Document level
# ---------------------------------------------------------------------------


class TestFinalizeDocument:
    def test_collect_prefers_section_summaries(self, summarizer) -> None:
        chunks = [
            _completed(0, section_summary="Part one overview.", section_summary_status=SummaryStatus.COMPLETED),
            _completed(1, section_summary="Part one overview.", section_summary_status=SummaryStatus.COMPLETED),
            _completed(2, section="Part 2"),
            _completed(3, section="Part 2"),
            _completed(4, section=None),
        ]

        assert summarizer.collect_section_summaries(chunks) == [
            ("Part 1", "Part one overview."),
            ("Part 2", "Chunk summary 2. Chunk summary 3."),
            ("Chunk 5", "Chunk summary 4."),
        ]

    @pytest.mark.asyncio
    async def test_nothing_to_summarize_is_reported(self, summarizer, chunk_store, summary_store) -> None:
        await chunk_store.insert_many([make_chunk(0), make_chunk(1, summary_status=SummaryStatus.ERROR)])

        result = await summarizer.finalize_document(make_document())

        assert result.produced is False
        assert result.message == NO_CONTENT_MESSAGE
        assert result.failures["chunk_summaries"] == 1
        assert len(summary_store) == 0

    @pytest.mark.asyncio
    async def test_document_summary_upserted(self, summarizer, chunk_store, summary_store) -> None:
        await chunk_store.insert_many([_completed(0), _completed(1, section="Part 2")])

        result = await summarizer.finalize_document(make_document(title="Q3 review"))

        stored = await summary_store.get(_DOC_ID, SummaryLevel.DOCUMENT)
        assert result.produced is True
        assert result.sections_used == 2
        assert result.had_errors is False
        assert stored is not None
        assert stored.summary == "Document overview."
        assert stored.model_used == "fake-model"

    @pytest.mark.asyncio
    async def test_partial_failures_are_reported(self, summarizer, chunk_store) -> None:
        await chunk_store.insert_many(
            [_completed(0), make_chunk(1, summary_status=SummaryStatus.ERROR, metadata={"embedding_error": "x"})]
        )

        result = await summarizer.finalize_document(make_document())

        assert result.produced is True
        assert result.had_errors is True
        assert result.failures == {"chunk_summaries": 1, "section_summaries": 0, "embeddings": 1}

    @pytest.mark.asyncio
    async def test_rerun_replaces_existing_summary(self, summarizer, chunk_store, summary_store) -> None:
        await chunk_store.insert_many([_completed(0)])

        await summarizer.finalize_document(make_document())
        await summarizer.finalize_document(make_document())

        assert len(summary_store) == 1
