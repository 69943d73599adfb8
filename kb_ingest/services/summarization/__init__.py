"""Hierarchical chunk, section and document summarization."""

from kb_ingest.services.summarization.summarizer import (
    NO_CONTENT_MESSAGE,
    ChunkSummaryReport,
    FinalizeResult,
    HierarchicalSummarizer,
    SectionSummaryReport,
)

__all__ = [
    "NO_CONTENT_MESSAGE",
    "ChunkSummaryReport",
    "FinalizeResult",
    "HierarchicalSummarizer",
    "SectionSummaryReport",
]
