"""Progress-reporting port called at checkpoints inside long-running stages."""

from __future__ import annotations

from abc import ABC, abstractmethod

from kb_ingest.models.pipeline import PipelineStage


class IProgressReporter(ABC):
    """Sink for ``(stage, current, total)`` checkpoints.

    Extractors, the embedder and the summarizer call :meth:`report`
    between units of work; they never compute percentages themselves.
    """

    @abstractmethod
    async def report(self, stage: PipelineStage, current: int, total: int) -> None:
        """Record that *current* of *total* units of *stage* are done."""


class NullProgressReporter(IProgressReporter):
    """Reporter that discards every checkpoint."""

    async def report(self, stage: PipelineStage, current: int, total: int) -> None:
        return None
