"""Pipeline orchestration: stage entry points, status tracking and progress."""

from kb_ingest.pipeline.orchestrator import DocumentPipeline
from kb_ingest.pipeline.progress import StageProgressReporter, stage_percent
from kb_ingest.pipeline.status_tracker import StatusTracker, can_transition

__all__ = [
    "DocumentPipeline",
    "StageProgressReporter",
    "StatusTracker",
    "can_transition",
    "stage_percent",
]
