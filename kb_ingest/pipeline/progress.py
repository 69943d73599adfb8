"""Maps in-stage checkpoints onto the document's overall progress bar."""

from __future__ import annotations

from kb_ingest.interfaces.progress_reporter import IProgressReporter
from kb_ingest.models.pipeline import STAGE_PROGRESS, PipelineStage
from kb_ingest.pipeline.status_tracker import StatusTracker

_STAGE_LABELS: dict[PipelineStage, str] = {
    PipelineStage.EXTRACTION: "Extracting text",
    PipelineStage.CHUNKING: "Splitting into chunks",
    PipelineStage.EMBEDDING: "Indexing for search",
    PipelineStage.CHUNK_SUMMARIES: "Summarizing chunks",
    PipelineStage.SECTION_SUMMARIES: "Summarizing sections",
    PipelineStage.DOCUMENT_SUMMARY: "Summarizing document",
}


def stage_percent(stage: PipelineStage, current: int, total: int) -> int:
    """Return the overall percentage for *current* of *total* units of *stage*."""
    start, end = STAGE_PROGRESS[stage]
    if total <= 0:
        return start
    fraction = min(1.0, max(0.0, current / total))
    return int(start + (end - start) * fraction)


class StageProgressReporter(IProgressReporter):
    """Writes stage checkpoints for one document through a :class:`StatusTracker`.

    Only writes when the integer percentage changes, so chatty callers
    (one checkpoint per page or chunk) do not turn into one store write
    per unit of work.
    """

    def __init__(self, tracker: StatusTracker, document_id: str) -> None:
        self._tracker = tracker
        self._document_id = document_id
        self._last: int | None = None

    async def report(self, stage: PipelineStage, current: int, total: int) -> None:
        pct = stage_percent(stage, current, total)
        if pct == self._last:
            return
        self._last = pct
        label = _STAGE_LABELS[stage]
        message = f"{label} ({current}/{total})" if total > 0 else label
        await self._tracker.update_progress(self._document_id, stage.value, pct, message)
