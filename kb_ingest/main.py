"""kb-ingest FastAPI application entry point.

Wires stores, providers and services into a :class:`DocumentPipeline`
and mounts the API routes.  :func:`build_components` is shared with the
CLI so both surfaces construct the pipeline the same way.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from kb_ingest import __version__
from kb_ingest.api.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from kb_ingest.api.routes import router as api_router
from kb_ingest.config.loader import load_settings
from kb_ingest.config.settings import Settings
from kb_ingest.models.extraction import SourceKind
from kb_ingest.pipeline.orchestrator import DocumentPipeline
from kb_ingest.pipeline.status_tracker import StatusTracker
from kb_ingest.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from kb_ingest.providers.llm.openai_provider import OpenAILLMProvider
from kb_ingest.providers.storage.local_blob_store import LocalBlobStore
from kb_ingest.providers.storage.sqlite_store import (
    SQLiteChunkStore,
    SQLiteDocumentStore,
    SQLiteSummaryStore,
)
from kb_ingest.providers.transcript.youtube_transcript_provider import YouTubeTranscriptProvider
from kb_ingest.providers.transcription.whisper_api_provider import WhisperAPIProvider
from kb_ingest.services.chunking.chunker import DocumentChunker
from kb_ingest.services.embedding.embedder import ChunkEmbedder
from kb_ingest.services.extraction import (
    AudioExtractor,
    DocumentExtractor,
    PDFExtractor,
    TextExtractor,
    VideoExtractor,
    WebExtractor,
)
from kb_ingest.services.summarization.summarizer import HierarchicalSummarizer
from kb_ingest.utils.logging import configure_logging

logger = structlog.get_logger(logger_name=__name__)


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_components(settings: Settings) -> dict[str, Any]:
    """Construct every store, provider and service for one process.

    Returns a flat dict of named components; the API stores them on
    ``app.state`` and the CLI uses them directly.  SQLite stores still
    need ``await store.initialize()`` before first use.
    """
    # -- Shared resources --
    http_client = httpx.AsyncClient(timeout=settings.web_fetch_timeout_seconds, follow_redirects=True)

    # -- Stores --
    document_store = SQLiteDocumentStore(settings.database_path)
    chunk_store = SQLiteChunkStore(settings.database_path)
    summary_store = SQLiteSummaryStore(settings.database_path)
    blob_store = LocalBlobStore(settings.blob_root)

    # -- Providers --
    llm = OpenAILLMProvider(settings=settings)
    embedding_provider = OpenAIEmbeddingProvider(settings=settings)
    transcription = WhisperAPIProvider(settings=settings)
    transcripts = YouTubeTranscriptProvider(http_client=http_client)

    # -- Services --
    extractor = DocumentExtractor(
        blob_store=blob_store,
        extractors={
            SourceKind.PDF: PDFExtractor(
                sampling_threshold=settings.pdf_sampling_threshold,
                max_sampled_pages=settings.pdf_max_sampled_pages,
                time_budget_seconds=settings.pdf_time_budget_seconds,
                max_text_bytes=settings.pdf_max_text_bytes,
                seed=settings.pdf_sampling_seed,
            ),
            SourceKind.WEB: WebExtractor(
                http_client=http_client,
                timeout_seconds=settings.web_fetch_timeout_seconds,
                min_content_length=settings.web_min_content_length,
            ),
            SourceKind.VIDEO: VideoExtractor(
                transcript_provider=transcripts,
                default_language=settings.transcript_default_language,
                fallback_languages=settings.transcript_fallback_languages,
            ),
            SourceKind.AUDIO: AudioExtractor(
                provider=transcription,
                language=settings.transcription_language or None,
            ),
            SourceKind.TEXT: TextExtractor(),
        },
    )
    chunker = DocumentChunker(
        chunk_size=settings.chunk_size,
        overlap=settings.chunk_overlap,
        preserve_structure=settings.chunk_preserve_structure,
    )
    embedder = ChunkEmbedder(
        provider=embedding_provider,
        chunk_store=chunk_store,
        batch_size=settings.embedding_batch_size,
        batch_token_budget=settings.embedding_batch_token_budget,
        max_input_tokens=settings.embedding_max_input_tokens,
        max_retries=settings.embedding_max_retries,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
        batch_pause_seconds=settings.embedding_batch_pause_seconds,
    )
    summarizer = HierarchicalSummarizer(
        llm=llm,
        chunk_store=chunk_store,
        summary_store=summary_store,
        batch_threshold=settings.summary_batch_threshold,
        batch_size=settings.summary_batch_size,
        batch_pause_seconds=settings.summary_batch_pause_seconds,
        concurrency=settings.summary_concurrency,
        chunk_max_tokens=settings.summary_chunk_max_tokens,
        section_max_tokens=settings.summary_section_max_tokens,
        document_max_tokens=settings.summary_document_max_tokens,
        section_input_chars=settings.summary_section_input_chars,
        document_input_chars=settings.summary_document_input_chars,
        max_retries=settings.summary_max_retries,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
        claim_lease_seconds=settings.claim_lease_seconds,
    )

    tracker = StatusTracker(document_store)
    pipeline = DocumentPipeline(
        tracker=tracker,
        chunk_store=chunk_store,
        blob_store=blob_store,
        extractor=extractor,
        chunker=chunker,
        embedder=embedder,
        summarizer=summarizer,
    )

    return {
        "http_client": http_client,
        "document_store": document_store,
        "chunk_store": chunk_store,
        "summary_store": summary_store,
        "blob_store": blob_store,
        "tracker": tracker,
        "pipeline": pipeline,
        "sqlite_stores": [document_store, chunk_store, summary_store],
        "provider_registry": {
            "llm": llm.is_available(),
            "embedding": embedding_provider.is_available(),
            "transcription": bool(settings.openai_api_key),
            "transcripts": True,
        },
    }


async def initialize_stores(components: dict[str, Any]) -> None:
    for store in components.get("sqlite_stores", []):
        await store.initialize()


async def close_components(components: dict[str, Any]) -> None:
    http_client: httpx.AsyncClient | None = components.get("http_client")
    if http_client is not None:
        await http_client.aclose()


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    components: dict[str, Any] | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Parameters
    ----------
    components:
        Pre-built components (tests pass in-memory stores and mocked
        providers).  When omitted they are built from *settings* at
        startup.
    settings:
        Configuration; loaded from ``config/config.yaml`` and the
        environment when omitted.
    """
    app_settings = settings or load_settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        built = components if components is not None else build_components(app_settings)
        for key, value in built.items():
            setattr(application.state, key, value)
        await initialize_stores(built)

        missing = app_settings.missing_required_keys()
        if missing and components is None:
            logger.warning("app_missing_settings", keys=missing)
        logger.info("app_startup", version=__version__, environment=app_settings.app_env)

        yield

        await close_components(built)
        logger.info("app_shutdown")

    application = FastAPI(
        title="kb-ingest API",
        version=__version__,
        description=(
            "Extract, chunk, embed and summarize documents for a knowledge base. "
            "Stages can be run one at a time or as a full pipeline."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)

    application.include_router(api_router)
    return application


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    app_settings = load_settings()
    uvicorn.run(
        create_app(settings=app_settings),
        host=app_settings.app_host,
        port=app_settings.app_port,
    )


if __name__ == "__main__":
    run()
