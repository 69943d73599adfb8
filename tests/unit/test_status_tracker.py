"""Unit tests for status transitions, progress bookkeeping and error records."""

from __future__ import annotations

import pytest
import pytest_asyncio

from conftest import make_document
from kb_ingest.models.document import DocumentStatus, ProcessingError
from kb_ingest.models.pipeline import PipelineStage
from kb_ingest.pipeline import StageProgressReporter, can_transition, stage_percent
from kb_ingest.utils.errors import (
    ChunkingError,
    InvalidStatusTransitionError,
    WebFetchError,
)

_DOC_ID = "doc-0001-aaaa"


@pytest_asyncio.fixture
async def seeded(document_store):
    await document_store.create(make_document())
    return document_store


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------


class TestCanTransition:
    def test_forward_moves_allowed(self) -> None:
        assert can_transition(DocumentStatus.QUEUED, DocumentStatus.PROCESSING)
        assert can_transition(DocumentStatus.PROCESSING, DocumentStatus.SUMMARIZING_CHUNKS)
        assert can_transition(DocumentStatus.SUMMARIZING_DOCUMENT, DocumentStatus.COMPLETED)

    def test_same_status_allowed(self) -> None:
        assert can_transition(DocumentStatus.CHUNKING, DocumentStatus.CHUNKING)

    def test_backward_moves_rejected(self) -> None:
        assert not can_transition(DocumentStatus.SUMMARIZING_CHUNKS, DocumentStatus.CHUNKING)
        assert not can_transition(DocumentStatus.CHUNKING, DocumentStatus.QUEUED)

    def test_error_reachable_from_anywhere(self) -> None:
        for status in DocumentStatus:
            assert can_transition(status, DocumentStatus.ERROR)

    def test_terminal_documents_restart_at_processing_only(self) -> None:
        assert can_transition(DocumentStatus.COMPLETED, DocumentStatus.PROCESSING)
        assert can_transition(DocumentStatus.ERROR, DocumentStatus.PROCESSING)
        assert not can_transition(DocumentStatus.COMPLETED, DocumentStatus.CHUNKING)
        assert not can_transition(DocumentStatus.COMPLETED, DocumentStatus.PROCESSING_FAILED)


# ---------------------------------------------------------------------------
# StatusTracker
# ---------------------------------------------------------------------------


class TestStatusTracker:
    @pytest.mark.asyncio
    async def test_transition_records_progress_and_history(self, seeded, tracker) -> None:
        await tracker.transition(_DOC_ID, DocumentStatus.PROCESSING, stage="extraction", progress=10)
        document = await tracker.transition(
            _DOC_ID, DocumentStatus.CHUNKING, stage="chunking", progress=30
        )

        assert document.status == DocumentStatus.CHUNKING
        assert document.metadata["progress"] == 30
        assert document.metadata["processing_stage"] == "chunking"
        assert document.metadata["status_message"] == "Splitting into chunks"
        assert [h["status"] for h in document.metadata["stage_history"]] == ["processing", "chunking"]

    @pytest.mark.asyncio
    async def test_backward_transition_raises_without_writing(self, seeded, tracker) -> None:
        await tracker.transition(_DOC_ID, DocumentStatus.CHUNKING, progress=30)

        with pytest.raises(InvalidStatusTransitionError):
            await tracker.transition(_DOC_ID, DocumentStatus.PROCESSING, progress=10)

        document = await tracker.get_document(_DOC_ID)
        assert document.status == DocumentStatus.CHUNKING
        assert document.metadata["progress"] == 30

    @pytest.mark.asyncio
    async def test_progress_never_decreases_within_a_run(self, seeded, tracker) -> None:
        await tracker.transition(_DOC_ID, DocumentStatus.PROCESSING, progress=25)
        document = await tracker.transition(_DOC_ID, DocumentStatus.CHUNKING, progress=20)
        assert document.metadata["progress"] == 25

        assert await tracker.update_progress(_DOC_ID, "chunking", 40) is True
        assert await tracker.update_progress(_DOC_ID, "chunking", 35) is False
        assert (await tracker.get_status(_DOC_ID))["progress"] == 40

    @pytest.mark.asyncio
    async def test_restart_resets_progress_and_error(self, seeded, tracker) -> None:
        await tracker.transition(_DOC_ID, DocumentStatus.PROCESSING, progress=50)
        await tracker.record_error(_DOC_ID, ChunkingError(message="no chunks"), stage="chunking")

        document = await tracker.transition(_DOC_ID, DocumentStatus.PROCESSING, progress=10)

        assert document.metadata["progress"] == 10
        assert document.metadata["processing_error"] is None
        assert len(document.metadata["stage_history"]) == 1
        assert len(document.metadata["error_history"]) == 1

    @pytest.mark.asyncio
    async def test_record_error_writes_structured_error(self, seeded, tracker) -> None:
        error = await tracker.record_error(
            _DOC_ID, WebFetchError(message="403s", cause="blocked"), stage="extraction"
        )

        snapshot = await tracker.get_status(_DOC_ID)
        stored = snapshot["processing_error"]
        assert snapshot["status"] == "error"
        assert stored["code"] == "WEB_FETCH_FAILED"
        assert stored["userFriendlyMessage"] == error.user_friendly_message
        assert stored["suggestedActions"]
        assert stored["stage"] == "extraction"
        assert snapshot["status_message"] == error.user_friendly_message

    @pytest.mark.asyncio
    async def test_record_error_with_custom_status(self, seeded, tracker) -> None:
        await tracker.record_error(
            _DOC_ID,
            RuntimeError("boom"),
            stage="document_summary",
            status=DocumentStatus.PROCESSING_FAILED,
        )

        snapshot = await tracker.get_status(_DOC_ID)
        assert snapshot["status"] == "processing_failed"
        assert snapshot["processing_error"]["code"] == "UNEXPECTED_ERROR"

    @pytest.mark.asyncio
    async def test_listeners_notified_and_isolated(self, seeded, tracker) -> None:
        seen: list[tuple[str, int]] = []

        def broken(*_args) -> None:
            raise RuntimeError("listener bug")

        async def recorder(document_id, status, progress, message) -> None:
            seen.append((status.value, progress))

        tracker.register_listener(_DOC_ID, broken)
        tracker.register_listener(_DOC_ID, recorder)

        await tracker.transition(_DOC_ID, DocumentStatus.PROCESSING, progress=10)
        await tracker.update_progress(_DOC_ID, "extraction", 20)
        tracker.unregister_listener(_DOC_ID, recorder)
        await tracker.update_progress(_DOC_ID, "extraction", 25)

        assert seen == [("processing", 10), ("processing", 20)]

    @pytest.mark.asyncio
    async def test_merge_metadata_keeps_status(self, seeded, tracker) -> None:
        await tracker.transition(_DOC_ID, DocumentStatus.PROCESSING, progress=10)
        document = await tracker.merge_metadata(_DOC_ID, {"chunk_count": 4}, title="Notes")

        assert document.status == DocumentStatus.PROCESSING
        assert document.metadata["chunk_count"] == 4
        assert document.metadata["progress"] == 10
        assert document.title == "Notes"


# ---------------------------------------------------------------------------
# Progress reporting
# ---------------------------------------------------------------------------


class TestStageProgress:
    def test_stage_percent_maps_into_band(self) -> None:
        assert stage_percent(PipelineStage.EXTRACTION, 0, 10) == 10
        assert stage_percent(PipelineStage.EXTRACTION, 5, 10) == 20
        assert stage_percent(PipelineStage.EXTRACTION, 10, 10) == 30
        assert stage_percent(PipelineStage.DOCUMENT_SUMMARY, 1, 1) == 100

    def test_stage_percent_clamps(self) -> None:
        assert stage_percent(PipelineStage.CHUNKING, 0, 0) == 30
        assert stage_percent(PipelineStage.CHUNKING, 20, 10) == 60

    @pytest.mark.asyncio
    async def test_reporter_writes_only_on_change(self, seeded, tracker) -> None:
        writes: list[int] = []
        tracker.register_listener(_DOC_ID, lambda _d, _s, progress, _m: writes.append(progress))
        reporter = StageProgressReporter(tracker, _DOC_ID)

        for page in range(1, 101):
            await reporter.report(PipelineStage.EXTRACTION, page, 100)

        snapshot = await tracker.get_status(_DOC_ID)
        assert snapshot["progress"] == 30
        assert snapshot["processing_stage"] == "extraction"
        assert snapshot["status_message"] == "Extracting text (100/100)"
        assert len(writes) == 21


# ---------------------------------------------------------------------------
# ProcessingError
# ---------------------------------------------------------------------------


class TestProcessingError:
    def test_from_kb_ingest_error(self) -> None:
        error = ProcessingError.from_exception(
            WebFetchError(message="timeouts", cause="timeout"), stage="extraction"
        )

        assert error.code == "WEB_FETCH_FAILED"
        assert error.retryable is True
        assert error.stage == "extraction"
        payload = error.to_metadata()
        assert set(payload) >= {"code", "message", "userFriendlyMessage", "suggestedActions", "timestamp"}

    def test_from_unexpected_exception(self) -> None:
        try:
            raise ValueError("bad value")
        except ValueError as exc:
            error = ProcessingError.from_exception(exc)

        assert error.code == "UNEXPECTED_ERROR"
        assert error.message == "ValueError: bad value"
        assert "ValueError" in (error.stack or "")

    def test_stack_is_truncated(self) -> None:
        # Alternating frames so the traceback is not collapsed into "repeated" lines.
        def ping(depth: int) -> None:
            if depth == 0:
                raise RuntimeError("deep")
            pong(depth - 1)

        def pong(depth: int) -> None:
            ping(depth - 1)

        try:
            ping(60)
        except RuntimeError as exc:
            error = ProcessingError.from_exception(exc)

        assert error.stack is not None
        assert error.stack.endswith("...[truncated]")
        assert len(error.stack) == 2000 + len("...[truncated]")
