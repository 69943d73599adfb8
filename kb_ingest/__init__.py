"""kb-ingest: document ingestion and hierarchical summarization pipeline."""

__version__ = "0.1.0"
