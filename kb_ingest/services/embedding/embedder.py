"""Chunk embedding in bounded batches.

Only chunks whose ``embedding`` is still null are sent, so re-running the
stage resumes where a previous run stopped.  Batches are capped both by
count and by estimated tokens.  A text longer than the model's input
window is cut to fit and the chunk is flagged ``embedding_truncated``.

The provider's response order is not trusted: results carry the position
of their input and are re-sorted by :func:`align_embeddings` before being
written back.  A batch whose transient failures outlast the retry budget
is degraded rather than fatal; its chunks keep a null embedding and
record ``embedding_error`` in their metadata.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass

import structlog

from kb_ingest.interfaces.chunk_store import IChunkStore
from kb_ingest.interfaces.embedding_provider import IEmbeddingProvider
from kb_ingest.interfaces.progress_reporter import IProgressReporter, NullProgressReporter
from kb_ingest.models.chunk import Chunk, ChunkFilter
from kb_ingest.models.extraction import EmbeddingResult
from kb_ingest.models.pipeline import PipelineStage
from kb_ingest.services.chunking.chunker import estimate_tokens
from kb_ingest.utils.concurrency import pause
from kb_ingest.utils.errors import EmbeddingError, KBIngestError
from kb_ingest.utils.retry import retry_async

logger = structlog.get_logger(logger_name=__name__)

# Keep truncated input a little under the model limit; the token estimate is approximate.
_TRUNCATION_SAFETY = 0.95


@dataclass
class EmbeddingReport:
    """Counts from one :meth:`ChunkEmbedder.embed_document` run."""

    total: int = 0
    embedded: int = 0
    failed: int = 0
    truncated: int = 0
    batches: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "embedded": self.embedded,
            "failed": self.failed,
            "truncated": self.truncated,
            "batches": self.batches,
        }


def truncate_for_embedding(text: str, max_tokens: int) -> tuple[str, bool]:
    """Return ``(text, truncated)`` with *text* cut to fit *max_tokens*."""
    if estimate_tokens(text) <= max_tokens:
        return text, False
    max_chars = math.floor(max_tokens * _TRUNCATION_SAFETY * 4 / 1.1)
    return text[:max_chars], True


def plan_batches(token_counts: list[int], max_items: int, token_budget: int) -> list[list[int]]:
    """Group input positions into batches bounded by item count and total tokens.

    An item larger than the whole budget still gets a batch of its own.
    """
    batches: list[list[int]] = []
    current: list[int] = []
    current_tokens = 0
    for position, tokens in enumerate(token_counts):
        if current and (len(current) >= max_items or current_tokens + tokens > token_budget):
            batches.append(current)
            current, current_tokens = [], 0
        current.append(position)
        current_tokens += tokens
    if current:
        batches.append(current)
    return batches


def align_embeddings(results: list[EmbeddingResult], expected: int) -> list[list[float]]:
    """Return vectors in request order.

    Raises
    ------
    EmbeddingError
        If the response does not hold exactly one vector per input.
    """
    by_index = {result.index: result.vector for result in results}
    if len(results) != expected or sorted(by_index) != list(range(expected)):
        raise EmbeddingError(
            message=(
                f"Embedding response mismatch: expected indices 0..{expected - 1}, "
                f"got {sorted(by_index)[:10]}"
            ),
        )
    return [by_index[position] for position in range(expected)]


class ChunkEmbedder:
    """Embeds a document's chunks and writes the vectors back.

    Parameters
    ----------
    provider:
        Embedding service.
    chunk_store:
        Chunk persistence.
    batch_size:
        Maximum inputs per provider call.
    batch_token_budget:
        Maximum estimated tokens per provider call.
    max_input_tokens:
        Per-input window of the embedding model.
    max_retries, base_delay, max_delay:
        Backoff settings for transient provider errors.
    batch_pause_seconds:
        Sleep between consecutive batches.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        chunk_store: IChunkStore,
        batch_size: int = 100,
        batch_token_budget: int = 250_000,
        max_input_tokens: int = 8192,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 20.0,
        batch_pause_seconds: float = 0.2,
        rng: random.Random | None = None,
    ) -> None:
        self._provider = provider
        self._chunks = chunk_store
        self._batch_size = max(1, batch_size)
        self._token_budget = batch_token_budget
        self._max_input_tokens = max_input_tokens
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._pause = batch_pause_seconds
        self._rng = rng

    async def embed_document(
        self,
        document_id: str,
        progress: IProgressReporter | None = None,
    ) -> EmbeddingReport:
        """Embed every chunk of *document_id* that has no embedding yet."""
        progress = progress or NullProgressReporter()
        chunks = await self._chunks.select_where(document_id, ChunkFilter(missing_embedding=True))
        report = EmbeddingReport(total=len(chunks))
        if not chunks:
            logger.info("embedding_nothing_to_do", document_id=document_id)
            return report

        prepared: list[tuple[Chunk, str, bool]] = []
        for chunk in chunks:
            text, truncated = truncate_for_embedding(chunk.content, self._max_input_tokens)
            prepared.append((chunk, text, truncated))

        batches = plan_batches(
            [estimate_tokens(text) for _, text, _ in prepared],
            self._batch_size,
            self._token_budget,
        )
        report.batches = len(batches)

        done = 0
        for number, positions in enumerate(batches, start=1):
            batch = [prepared[p] for p in positions]
            await self._embed_batch(document_id, number, batch, report)
            done += len(batch)
            await progress.report(PipelineStage.EMBEDDING, done, len(chunks))
            if number < len(batches):
                await pause(self._pause)

        logger.info("embedding_complete", document_id=document_id, **report.as_dict())
        return report

    async def _embed_batch(
        self,
        document_id: str,
        number: int,
        batch: list[tuple[Chunk, str, bool]],
        report: EmbeddingReport,
    ) -> None:
        texts = [text for _, text, _ in batch]
        try:
            results = await retry_async(
                lambda: self._provider.embed(texts),
                max_attempts=self._max_retries,
                base_delay=self._base_delay,
                max_delay=self._max_delay,
                operation="embed_batch",
                rng=self._rng,
            )
            vectors = align_embeddings(results, len(texts))
        except KBIngestError as exc:
            report.failed += len(batch)
            logger.warning(
                "embedding_batch_failed",
                document_id=document_id,
                batch=number,
                size=len(batch),
                error=str(exc),
            )
            await self._chunks.update_many(
                [chunk.id for chunk, _, _ in batch],
                {"embedding": None, "metadata": {"embedding_error": str(exc)}},
            )
            return

        for (chunk, _, truncated), vector in zip(batch, vectors):
            metadata: dict[str, object] = {"embedding_error": None}
            if truncated:
                metadata["embedding_truncated"] = True
                report.truncated += 1
            patch: dict[str, object] = {"embedding": vector, "metadata": metadata}
            await self._chunks.update_many([chunk.id], patch)
        report.embedded += len(batch)
