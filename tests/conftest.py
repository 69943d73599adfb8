"""Shared pytest fixtures for the kb-ingest test suite."""

from __future__ import annotations

import random
import re
from collections.abc import Callable
from typing import Any

import pytest

from kb_ingest.interfaces.embedding_provider import IEmbeddingProvider
from kb_ingest.interfaces.llm_provider import ILLMProvider
from kb_ingest.models.chunk import Chunk
from kb_ingest.models.document import Document
from kb_ingest.models.extraction import EmbeddingResult, SourceKind
from kb_ingest.pipeline.orchestrator import DocumentPipeline
from kb_ingest.pipeline.status_tracker import StatusTracker
from kb_ingest.providers.storage.memory_store import (
    InMemoryBlobStore,
    InMemoryChunkStore,
    InMemoryDocumentStore,
    InMemorySummaryStore,
)
from kb_ingest.services.chunking.chunker import DocumentChunker
from kb_ingest.services.embedding.embedder import ChunkEmbedder
from kb_ingest.services.extraction import DocumentExtractor, TextExtractor
from kb_ingest.services.summarization.summarizer import HierarchicalSummarizer
from kb_ingest.utils.errors import EmbeddingError, LLMError

_BATCH_BLOCK = re.compile(r"^--- CHUNK (\d+) ---$", re.MULTILINE)


# ---------------------------------------------------------------------------
# Fake providers
# ---------------------------------------------------------------------------


class FakeLLMProvider(ILLMProvider):
    """Scripted text generation.

    Answers each prompt shape the summarizer builds with a deterministic
    summary.  ``fail_when(user_content)`` returning ``True`` raises
    :class:`LLMError` for that call; ``batch_response`` overrides the
    answer to batched prompts.
    """

    def __init__(
        self,
        fail_when: Callable[[str], bool] | None = None,
        batch_response: str | None = None,
    ) -> None:
        self.fail_when = fail_when
        self.batch_response = batch_response
        self.calls: list[list[dict[str, str]]] = []

    async def complete(
        self,
        messages: list[dict[str, str]],
        max_tokens: int = 500,
        temperature: float = 0.3,
    ) -> str:
        self.calls.append(messages)
        content = messages[-1]["content"]
        if self.fail_when is not None and self.fail_when(content):
            raise LLMError(message="scripted failure", provider_name="fake")

        numbers = _BATCH_BLOCK.findall(content)
        if numbers:
            if self.batch_response is not None:
                return self.batch_response
            return "\n".join(f"CHUNK {n} SUMMARY: Summary of excerpt {n}." for n in numbers)
        if "Section text:" in content:
            return "Section overview."
        if "Section summaries:" in content:
            return "Document overview."
        excerpt = content.split("Excerpt:\n", 1)[-1]
        return f"Summary: {excerpt[:30]}"

    def get_model_name(self) -> str:
        return "fake-model"

    def get_provider_name(self) -> str:
        return "fake"

    def is_available(self) -> bool:
        return True

    def batch_call_count(self) -> int:
        return sum(1 for m in self.calls if _BATCH_BLOCK.search(m[-1]["content"]))


class FakeEmbeddingProvider(IEmbeddingProvider):
    """Deterministic vectors derived from each text.

    ``shuffle`` returns results out of request order; ``fail`` raises
    :class:`EmbeddingError` on every call.
    """

    def __init__(self, dimension: int = 4, shuffle: bool = False, fail: bool = False) -> None:
        self.dimension = dimension
        self.shuffle = shuffle
        self.fail = fail
        self.batches: list[list[str]] = []

    @staticmethod
    def vector_for(text: str, dimension: int = 4) -> list[float]:
        return [float(len(text))] + [float(ord(text[0]) if text else 0)] * (dimension - 1)

    async def embed(self, texts: list[str]) -> list[EmbeddingResult]:
        self.batches.append(list(texts))
        if self.fail:
            raise EmbeddingError(message="scripted failure", provider_name="fake")
        results = [
            EmbeddingResult(index=i, vector=self.vector_for(t, self.dimension))
            for i, t in enumerate(texts)
        ]
        if self.shuffle:
            random.Random(7).shuffle(results)
        return results

    def get_dimension(self) -> int:
        return self.dimension

    def get_model_name(self) -> str:
        return "fake-embedding"

    def get_provider_name(self) -> str:
        return "fake"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_document(**overrides: Any) -> Document:
    values: dict[str, Any] = {
        "id": "doc-0001-aaaa",
        "organisation_id": "acme",
        "storage_path": "uploads/notes.txt",
        "file_type": "text/plain",
        "title": "",
    }
    values.update(overrides)
    return Document(**values)


def make_chunk(index: int, section: str | None = "Part 1", **overrides: Any) -> Chunk:
    values: dict[str, Any] = {
        "id": f"chunk-{index}",
        "document_id": "doc-0001-aaaa",
        "chunk_index": index,
        "content": f"Content of chunk {index}. " * 5,
        "token_count": 30,
        "section_identifier": section,
        "citation_key": f"doc-0001:part-1:{index}",
    }
    values.update(overrides)
    return Chunk(**values)


def sample_text(paragraphs: int = 8) -> str:
    """Readable multi-paragraph prose of predictable length."""
    sentence = "The quarterly review covers revenue, hiring and the product roadmap in detail."
    return "\n\n".join(" ".join([sentence] * 4) for _ in range(paragraphs))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def chunk_store() -> InMemoryChunkStore:
    return InMemoryChunkStore()


@pytest.fixture
def summary_store() -> InMemorySummaryStore:
    return InMemorySummaryStore()


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def fake_llm() -> FakeLLMProvider:
    return FakeLLMProvider()


@pytest.fixture
def fake_embeddings() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def tracker(document_store: InMemoryDocumentStore) -> StatusTracker:
    return StatusTracker(document_store)


@pytest.fixture
def summarizer(
    fake_llm: FakeLLMProvider,
    chunk_store: InMemoryChunkStore,
    summary_store: InMemorySummaryStore,
) -> HierarchicalSummarizer:
    return HierarchicalSummarizer(
        fake_llm,
        chunk_store,
        summary_store,
        batch_pause_seconds=0,
        max_retries=1,
        base_delay=0,
        max_delay=0,
    )


@pytest.fixture
def embedder(
    fake_embeddings: FakeEmbeddingProvider,
    chunk_store: InMemoryChunkStore,
) -> ChunkEmbedder:
    return ChunkEmbedder(
        fake_embeddings,
        chunk_store,
        max_retries=1,
        base_delay=0,
        max_delay=0,
        batch_pause_seconds=0,
    )


@pytest.fixture
def pipeline(
    tracker: StatusTracker,
    chunk_store: InMemoryChunkStore,
    blob_store: InMemoryBlobStore,
    embedder: ChunkEmbedder,
    summarizer: HierarchicalSummarizer,
) -> DocumentPipeline:
    extractor = DocumentExtractor(blob_store, {SourceKind.TEXT: TextExtractor()})
    return DocumentPipeline(
        tracker=tracker,
        chunk_store=chunk_store,
        blob_store=blob_store,
        extractor=extractor,
        chunker=DocumentChunker(chunk_size=1500, overlap=200),
        embedder=embedder,
        summarizer=summarizer,
    )
