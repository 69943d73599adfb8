"""Batched chunk embedding."""

from kb_ingest.services.embedding.embedder import ChunkEmbedder, EmbeddingReport, align_embeddings

__all__ = ["ChunkEmbedder", "EmbeddingReport", "align_embeddings"]
