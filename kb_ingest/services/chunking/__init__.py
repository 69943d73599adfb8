"""Overlapping, section-aware text chunking."""

from kb_ingest.services.chunking.chunker import DocumentChunker, estimate_tokens, make_citation_key

__all__ = ["DocumentChunker", "estimate_tokens", "make_citation_key"]
