"""Three-level hierarchical summarization: chunk -> section -> document.

Chunk level
    Claims pending chunks (``pending -> processing``) so that two
    invocations on the same document never summarize the same chunk, then
    summarizes them individually or, above ``batch_threshold`` chunks, in
    sub-batches of ``batch_size`` per LLM call.  Batch answers are parsed
    by position; chunks the parser cannot match are summarized one at a
    time, and a batch whose call fails falls back to one call per chunk.
    A chunk's failure is recorded on that chunk only.

Section level
    A section (chunks sharing a ``section_identifier``) is eligible once
    every chunk in it has a completed chunk summary and at least one is
    still ``section_summary_status = pending``.  The raw contents are
    concatenated and summarized once; the result (or the error) is
    written to every chunk of the section together.  Sections run
    concurrently with bounded parallelism.

Document level
    One summary per section (chunk summaries stand in for sections that
    have none) is rolled up into the document summary and upserted under
    ``(document_id, "document")``.  Nothing to roll up is reported, not
    raised.

Document status is left to the caller; this module only touches chunk
rows and the summary store.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from kb_ingest.interfaces.chunk_store import IChunkStore
from kb_ingest.interfaces.llm_provider import ILLMProvider
from kb_ingest.interfaces.progress_reporter import IProgressReporter, NullProgressReporter
from kb_ingest.interfaces.summary_store import ISummaryStore
from kb_ingest.models.chunk import Chunk, ChunkFilter, SummaryStatus
from kb_ingest.models.document import Document, utc_now
from kb_ingest.models.pipeline import PipelineStage
from kb_ingest.models.summary import SummaryLevel
from kb_ingest.services.summarization import prompts
from kb_ingest.services.summarization.batch_parser import parse_batch_response
from kb_ingest.utils.concurrency import batched, pause, throttled_gather
from kb_ingest.utils.errors import KBIngestError, LLMError
from kb_ingest.utils.retry import retry_async

logger = structlog.get_logger(logger_name=__name__)

NO_CONTENT_MESSAGE = "no content to summarize"

_CHUNK_CLAIM_KEY = "summary_claimed_at"
_SECTION_CLAIM_KEY = "section_claimed_at"


# ---------------------------------------------------------------------------
# Run reports
# ---------------------------------------------------------------------------


@dataclass
class ChunkSummaryReport:
    """Outcome of one :meth:`HierarchicalSummarizer.summarize_chunks` run."""

    claimed: int = 0
    completed: int = 0
    failed: int = 0
    batched_calls: int = 0
    individual_calls: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "claimed": self.claimed,
            "completed": self.completed,
            "failed": self.failed,
            "batched_calls": self.batched_calls,
            "individual_calls": self.individual_calls,
        }


@dataclass
class SectionSummaryReport:
    """Outcome of one :meth:`HierarchicalSummarizer.summarize_sections` run."""

    sections: int = 0
    completed: int = 0
    failed: int = 0
    not_ready: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "sections": self.sections,
            "completed": self.completed,
            "failed": self.failed,
            "not_ready": self.not_ready,
            "skipped": self.skipped,
        }


@dataclass
class FinalizeResult:
    """Outcome of :meth:`HierarchicalSummarizer.finalize_document`.

    ``produced`` is ``False`` when there was nothing to roll up; the
    caller decides how to record that.
    """

    produced: bool
    message: str
    summary: str | None = None
    sections_used: int = 0
    had_errors: bool = False
    model_used: str = ""
    failures: dict[str, int] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def group_sections(chunks: list[Chunk]) -> dict[str, list[Chunk]]:
    """Group chunks by section identifier, in order of first appearance."""
    sections: dict[str, list[Chunk]] = {}
    for chunk in sorted(chunks, key=lambda c: c.chunk_index):
        if chunk.section_identifier:
            sections.setdefault(chunk.section_identifier, []).append(chunk)
    return sections


def section_is_ready(chunks: list[Chunk]) -> bool:
    """Every chunk summarized and at least one section summary still open.

    "Open" is pending, or processing under a claim that may have expired;
    the claim step decides which.
    """
    return all(c.summary_status == SummaryStatus.COMPLETED for c in chunks) and any(
        c.section_summary_status in (SummaryStatus.PENDING, SummaryStatus.PROCESSING)
        for c in chunks
    )


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _cap(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit].rsplit(" ", 1)[0] + " ..."


# ---------------------------------------------------------------------------
# HierarchicalSummarizer
# ---------------------------------------------------------------------------


class HierarchicalSummarizer:
    """Produces chunk, section and document summaries.

    Parameters
    ----------
    llm:
        Text-generation provider.
    chunk_store, summary_store:
        Persistence for chunk rows and the document summary.
    batch_threshold:
        Chunk count above which chunk summaries are batched.
    batch_size:
        Chunks per batched call.
    batch_pause_seconds:
        Sleep between batched calls.
    concurrency:
        Parallel LLM calls for individual chunk and section summaries.
    chunk_max_tokens, section_max_tokens, document_max_tokens:
        Response budgets per level.
    section_input_chars, document_input_chars:
        Caps on the text sent for section and document summaries.
    max_retries, base_delay, max_delay:
        Backoff settings for transient provider errors.
    claim_lease_seconds:
        Age after which an unfinished ``processing`` claim is abandoned.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        chunk_store: IChunkStore,
        summary_store: ISummaryStore,
        *,
        batch_threshold: int = 30,
        batch_size: int = 10,
        batch_pause_seconds: float = 0.1,
        concurrency: int = 4,
        chunk_max_tokens: int = 400,
        section_max_tokens: int = 500,
        document_max_tokens: int = 600,
        section_input_chars: int = 24_000,
        document_input_chars: int = 48_000,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 20.0,
        claim_lease_seconds: float = 600.0,
        clock: Callable[[], datetime] = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        self._llm = llm
        self._chunks = chunk_store
        self._summaries = summary_store
        self._batch_threshold = batch_threshold
        self._batch_size = max(1, batch_size)
        self._batch_pause = batch_pause_seconds
        self._concurrency = max(1, concurrency)
        self._chunk_max_tokens = chunk_max_tokens
        self._section_max_tokens = section_max_tokens
        self._document_max_tokens = document_max_tokens
        self._section_input_chars = section_input_chars
        self._document_input_chars = document_input_chars
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._lease = timedelta(seconds=claim_lease_seconds)
        self._clock = clock
        self._rng = rng

    # ------------------------------------------------------------------
    # LLM call with retry
    # ------------------------------------------------------------------

    async def _generate(self, messages: list[dict[str, str]], max_tokens: int, operation: str) -> str:
        return await retry_async(
            lambda: self._llm.complete(messages, max_tokens=max_tokens),
            max_attempts=self._max_retries,
            base_delay=self._base_delay,
            max_delay=self._max_delay,
            operation=operation,
            rng=self._rng,
        )

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def _lease_expired(self, claimed_at: object) -> bool:
        stamp = _parse_timestamp(claimed_at)
        return stamp is None or self._clock() - stamp > self._lease

    async def _claim(self, chunks: list[Chunk], status_field: str, claim_key: str) -> list[str]:
        """Move *chunks* from pending (or an expired processing claim) to processing."""
        now = self._clock().isoformat()
        patch = {status_field: SummaryStatus.PROCESSING, "metadata": {claim_key: now}}

        pending = [c.id for c in chunks if getattr(c, status_field) == SummaryStatus.PENDING]
        claimed: list[str] = []
        if pending:
            claimed = await self._chunks.update_where(
                pending, patch, {status_field: SummaryStatus.PENDING}
            )

        for chunk in chunks:
            if getattr(chunk, status_field) != SummaryStatus.PROCESSING:
                continue
            previous = chunk.metadata.get(claim_key)
            if not self._lease_expired(previous):
                continue
            reclaimed = await self._chunks.update_where(
                [chunk.id],
                patch,
                {status_field: SummaryStatus.PROCESSING, f"metadata.{claim_key}": previous},
            )
            if reclaimed:
                logger.info("summary_claim_reclaimed", chunk_id=chunk.id, field=status_field)
                claimed.extend(reclaimed)
        return claimed

    # ------------------------------------------------------------------
    # Chunk level
    # ------------------------------------------------------------------

    async def summarize_chunks(
        self,
        document_id: str,
        chunk_id: str | None = None,
        progress: IProgressReporter | None = None,
    ) -> ChunkSummaryReport:
        """Summarize the document's pending chunks (or just *chunk_id*)."""
        progress = progress or NullProgressReporter()
        where = ChunkFilter(chunk_ids=[chunk_id]) if chunk_id else None
        candidates = await self._chunks.select_where(document_id, where)
        claimed_ids = set(await self._claim(candidates, "summary_status", _CHUNK_CLAIM_KEY))
        claimed = [c for c in candidates if c.id in claimed_ids]

        report = ChunkSummaryReport(claimed=len(claimed))
        if not claimed:
            logger.info("chunk_summaries_nothing_claimed", document_id=document_id)
            return report

        if len(claimed) > self._batch_threshold:
            await self._summarize_in_batches(document_id, claimed, report, progress)
        else:
            await self._summarize_individually(claimed, report, progress)

        logger.info("chunk_summaries_complete", document_id=document_id, **report.as_dict())
        return report

    async def _summarize_in_batches(
        self,
        document_id: str,
        chunks: list[Chunk],
        report: ChunkSummaryReport,
        progress: IProgressReporter,
    ) -> None:
        batches = list(batched(chunks, self._batch_size))
        done = 0
        for number, batch in enumerate(batches, start=1):
            leftovers: list[Chunk] = []
            try:
                response = await self._generate(
                    prompts.batch_messages([c.content for c in batch]),
                    self._chunk_max_tokens * len(batch),
                    "summarize_chunk_batch",
                )
                report.batched_calls += 1
                parsed = parse_batch_response(response, len(batch))
            except KBIngestError as exc:
                logger.warning(
                    "chunk_batch_failed",
                    document_id=document_id,
                    batch=number,
                    size=len(batch),
                    error=str(exc),
                )
                parsed = {}

            for position, chunk in enumerate(batch, start=1):
                summary = parsed.get(position)
                if summary:
                    await self._mark_chunk_completed(chunk, summary)
                    report.completed += 1
                else:
                    leftovers.append(chunk)

            if leftovers:
                logger.info(
                    "chunk_batch_fallback",
                    document_id=document_id,
                    batch=number,
                    unmatched=len(leftovers),
                )
                await self._summarize_individually(leftovers, report, NullProgressReporter())

            done += len(batch)
            await progress.report(PipelineStage.CHUNK_SUMMARIES, done, len(chunks))
            if number < len(batches):
                await pause(self._batch_pause)

    async def _summarize_individually(
        self,
        chunks: list[Chunk],
        report: ChunkSummaryReport,
        progress: IProgressReporter,
    ) -> None:
        counter = {"done": 0}

        async def _one(chunk: Chunk) -> None:
            report.individual_calls += 1
            try:
                summary = await self._generate(
                    prompts.chunk_messages(chunk.content),
                    self._chunk_max_tokens,
                    "summarize_chunk",
                )
                await self._mark_chunk_completed(chunk, summary)
                report.completed += 1
            except KBIngestError as exc:
                report.failed += 1
                logger.warning("chunk_summary_failed", chunk_id=chunk.id, error=str(exc))
                await self._chunks.update_many(
                    [chunk.id],
                    {"summary_status": SummaryStatus.ERROR, "metadata": {"summary_error": str(exc)}},
                )
            counter["done"] += 1
            await progress.report(PipelineStage.CHUNK_SUMMARIES, counter["done"], len(chunks))

        results = await throttled_gather([_one(c) for c in chunks], limit=self._concurrency)
        for result in results:
            # Non-KBIngestError failures are bugs; surface them.
            if isinstance(result, BaseException):
                raise result

    async def _mark_chunk_completed(self, chunk: Chunk, summary: str) -> None:
        await self._chunks.update_many(
            [chunk.id],
            {
                "chunk_summary": summary.strip(),
                "summary_status": SummaryStatus.COMPLETED,
                "section_summary_status": (
                    SummaryStatus.PENDING if chunk.section_identifier else None
                ),
            },
        )

    # ------------------------------------------------------------------
    # Section level
    # ------------------------------------------------------------------

    async def summarize_sections(
        self,
        document_id: str,
        progress: IProgressReporter | None = None,
    ) -> SectionSummaryReport:
        """Summarize every section whose chunks are all summarized."""
        progress = progress or NullProgressReporter()
        sections = group_sections(await self._chunks.select_where(document_id))
        report = SectionSummaryReport(sections=len(sections))

        ready: list[tuple[str, list[Chunk]]] = []
        for name, members in sections.items():
            if section_is_ready(members):
                ready.append((name, members))
            elif any(c.summary_status != SummaryStatus.COMPLETED for c in members):
                report.not_ready += 1

        counter = {"done": 0}

        async def _one(name: str, members: list[Chunk]) -> None:
            await self._summarize_section(document_id, name, members, report)
            counter["done"] += 1
            await progress.report(PipelineStage.SECTION_SUMMARIES, counter["done"], len(ready))

        results = await throttled_gather([_one(n, m) for n, m in ready], limit=self._concurrency)
        for result in results:
            if isinstance(result, BaseException):
                raise result

        logger.info("section_summaries_complete", document_id=document_id, **report.as_dict())
        return report

    async def _summarize_section(
        self,
        document_id: str,
        name: str,
        members: list[Chunk],
        report: SectionSummaryReport,
    ) -> None:
        claimed = await self._claim(members, "section_summary_status", _SECTION_CLAIM_KEY)
        if not claimed:
            report.skipped += 1
            return

        # Chunks still held by another worker keep their claim; only ours are written.
        if len(claimed) < len(members):
            logger.info(
                "section_claim_partial",
                document_id=document_id,
                section=name,
                claimed=len(claimed),
                members=len(members),
            )
        content = _cap(
            "\n\n".join(c.content.strip() for c in members),
            self._section_input_chars,
        )
        try:
            summary = await self._generate(
                prompts.section_messages(name, content),
                self._section_max_tokens,
                "summarize_section",
            )
        except KBIngestError as exc:
            report.failed += 1
            logger.warning(
                "section_summary_failed",
                document_id=document_id,
                section=name,
                chunks=len(members),
                error=str(exc),
            )
            await self._chunks.update_many(
                claimed,
                {
                    "section_summary_status": SummaryStatus.ERROR,
                    "metadata": {"section_summary_error": str(exc)},
                },
            )
            return

        await self._chunks.update_many(
            claimed,
            {"section_summary": summary.strip(), "section_summary_status": SummaryStatus.COMPLETED},
        )
        report.completed += 1

    # ------------------------------------------------------------------
    # Document level
    # ------------------------------------------------------------------

    def collect_section_summaries(self, chunks: list[Chunk]) -> list[tuple[str, str]]:
        """Return ``(label, summary)`` pairs in document order.

        Sections contribute their section summary.  A section without one
        contributes its completed chunk summaries instead, and so does a
        chunk that has no section (as ``Chunk <n>``).
        """
        ordered = sorted(chunks, key=lambda c: c.chunk_index)
        collected: list[tuple[str, str]] = []
        seen_sections: set[str] = set()
        sections = group_sections(ordered)

        for chunk in ordered:
            name = chunk.section_identifier
            if not name:
                if chunk.summary_status == SummaryStatus.COMPLETED and chunk.chunk_summary:
                    collected.append((f"Chunk {chunk.chunk_index + 1}", chunk.chunk_summary))
                continue
            if name in seen_sections:
                continue
            seen_sections.add(name)

            members = sections[name]
            section_summary = next(
                (
                    c.section_summary
                    for c in members
                    if c.section_summary_status == SummaryStatus.COMPLETED and c.section_summary
                ),
                None,
            )
            if section_summary:
                collected.append((name, section_summary))
                continue
            fallback = [
                c.chunk_summary
                for c in members
                if c.summary_status == SummaryStatus.COMPLETED and c.chunk_summary
            ]
            if fallback:
                collected.append((name, " ".join(fallback)))
        return collected

    async def finalize_document(
        self,
        document: Document,
        progress: IProgressReporter | None = None,
    ) -> FinalizeResult:
        """Roll section summaries up into the stored document summary.

        Raises
        ------
        KBIngestError
            When the rollup call or the upsert fails.
        """
        progress = progress or NullProgressReporter()
        chunks = await self._chunks.select_where(document.id)
        failures = {
            "chunk_summaries": sum(1 for c in chunks if c.summary_status == SummaryStatus.ERROR),
            "section_summaries": sum(
                1 for c in chunks if c.section_summary_status == SummaryStatus.ERROR
            ),
            "embeddings": sum(1 for c in chunks if c.metadata.get("embedding_error")),
        }

        collected = self.collect_section_summaries(chunks)
        if not collected:
            logger.warning("document_summary_no_content", document_id=document.id, chunks=len(chunks))
            return FinalizeResult(produced=False, message=NO_CONTENT_MESSAGE, failures=failures)

        budget = self._document_input_chars
        trimmed: list[tuple[str, str]] = []
        for label, summary in collected:
            if budget <= 0:
                break
            piece = _cap(summary, budget)
            trimmed.append((label, piece))
            budget -= len(piece)

        await progress.report(PipelineStage.DOCUMENT_SUMMARY, 0, 1)
        summary = await self._generate(
            prompts.document_messages(document.title, trimmed),
            self._document_max_tokens,
            "summarize_document",
        )
        if not summary.strip():
            raise LLMError(message="Document summary was empty", provider_name=self._llm.get_provider_name())

        model = self._llm.get_model_name()
        await self._summaries.upsert(
            document.id,
            SummaryLevel.DOCUMENT,
            summary=summary.strip(),
            status="completed",
            model_used=model,
        )
        await progress.report(PipelineStage.DOCUMENT_SUMMARY, 1, 1)

        had_errors = any(failures.values())
        logger.info(
            "document_summary_stored",
            document_id=document.id,
            sections_used=len(trimmed),
            had_errors=had_errors,
            model=model,
        )
        return FinalizeResult(
            produced=True,
            message=f"Document summary generated from {len(trimmed)} sections",
            summary=summary.strip(),
            sections_used=len(trimmed),
            had_errors=had_errors,
            model_used=model,
            failures=failures,
        )
