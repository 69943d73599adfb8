"""FastAPI routes for the kb-ingest pipeline.

Every stage endpoint wraps one :class:`DocumentPipeline` entry point.
With ``?wait=true`` (the default) the stage runs inside the request and
its :class:`StageResponse` is returned; with ``?wait=false`` the stage is
scheduled as a background task and the caller polls ``/status``.

Endpoint                                  Method  Description
----------------------------------------  ------  ------------------------------
/api/v1/documents/{id}/process            POST    Full pipeline
/api/v1/documents/{id}/extract            POST    Extraction only
/api/v1/documents/{id}/chunk              POST    Chunking only
/api/v1/documents/{id}/embed              POST    Embedding only
/api/v1/documents/{id}/summarize          POST    Summaries from a given level
/api/v1/documents/{id}/status             GET     Poll status and progress
/api/v1/health                            GET     Health check

Service dependencies are read from ``app.state`` via ``Depends`` using
the ``Annotated`` pattern.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Annotated

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request

from kb_ingest import __version__
from kb_ingest.api.schemas import (
    DocumentStatusResponse,
    HealthResponse,
    StageResultResponse,
    SummarizeRequest,
)
from kb_ingest.models.pipeline import StageResponse
from kb_ingest.pipeline.orchestrator import DocumentPipeline

logger = structlog.get_logger(logger_name=__name__)

router = APIRouter(prefix="/api/v1")


def _get_pipeline(request: Request) -> DocumentPipeline:
    """Return the pipeline from application state."""
    return request.app.state.pipeline


PipelineDep = Annotated[DocumentPipeline, Depends(_get_pipeline)]
WaitParam = Annotated[bool, Query(description="Run inline (true) or as a background task.")]


async def _run_in_background(stage: str, document_id: str, run: Callable[[], Awaitable[StageResponse]]) -> None:
    """Background-task body: entry points never raise, so just log the outcome."""
    response = await run()
    logger.info(
        "background_stage_finished",
        stage=stage,
        document_id=document_id,
        success=response.success,
        message=response.message,
    )


async def _dispatch(
    stage: str,
    document_id: str,
    run: Callable[[], Awaitable[StageResponse]],
    wait: bool,
    background_tasks: BackgroundTasks,
) -> StageResultResponse:
    if not wait:
        background_tasks.add_task(_run_in_background, stage, document_id, run)
        return StageResultResponse.queued_for(document_id, stage)
    return StageResultResponse.from_stage(await run())


# ---------------------------------------------------------------------------
# Stage endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/documents/{document_id}/process",
    response_model=StageResultResponse,
    summary="Run every stage for a document",
)
async def process_document(
    document_id: str,
    pipeline: PipelineDep,
    background_tasks: BackgroundTasks,
    wait: WaitParam = True,
) -> StageResultResponse:
    return await _dispatch(
        "process", document_id, lambda: pipeline.process(document_id), wait, background_tasks
    )


@router.post(
    "/documents/{document_id}/extract",
    response_model=StageResultResponse,
    summary="Extract text from the document source",
)
async def extract_document(
    document_id: str,
    pipeline: PipelineDep,
    background_tasks: BackgroundTasks,
    wait: WaitParam = True,
) -> StageResultResponse:
    return await _dispatch(
        "extraction", document_id, lambda: pipeline.extract(document_id), wait, background_tasks
    )


@router.post(
    "/documents/{document_id}/chunk",
    response_model=StageResultResponse,
    summary="Split the extracted text into chunks",
)
async def chunk_document(
    document_id: str,
    pipeline: PipelineDep,
    background_tasks: BackgroundTasks,
    wait: WaitParam = True,
) -> StageResultResponse:
    return await _dispatch(
        "chunking", document_id, lambda: pipeline.chunk(document_id), wait, background_tasks
    )


@router.post(
    "/documents/{document_id}/embed",
    response_model=StageResultResponse,
    summary="Embed chunks that have no embedding yet",
)
async def embed_document(
    document_id: str,
    pipeline: PipelineDep,
    background_tasks: BackgroundTasks,
    wait: WaitParam = True,
) -> StageResultResponse:
    return await _dispatch(
        "embedding", document_id, lambda: pipeline.embed(document_id), wait, background_tasks
    )


@router.post(
    "/documents/{document_id}/summarize",
    response_model=StageResultResponse,
    summary="Summarize chunks, sections and the document",
)
async def summarize_document(
    document_id: str,
    pipeline: PipelineDep,
    background_tasks: BackgroundTasks,
    body: SummarizeRequest | None = None,
    wait: WaitParam = True,
) -> StageResultResponse:
    request = body or SummarizeRequest()
    return await _dispatch(
        "summarization",
        document_id,
        lambda: pipeline.summarize(document_id, request.chunk_id, request.summarize_level),
        wait,
        background_tasks,
    )


# ---------------------------------------------------------------------------
# Status / health
# ---------------------------------------------------------------------------


@router.get(
    "/documents/{document_id}/status",
    response_model=DocumentStatusResponse,
    summary="Poll document status and progress",
)
async def get_document_status(document_id: str, pipeline: PipelineDep) -> DocumentStatusResponse:
    # DocumentNotFoundError is turned into a 404 by ErrorHandlingMiddleware.
    snapshot = await pipeline.tracker.get_status(document_id)
    return DocumentStatusResponse(**snapshot)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Return application health, version, and provider availability."""
    providers: dict[str, bool] = dict(getattr(request.app.state, "provider_registry", {}))
    critical = ("llm", "embedding")
    if all(providers.get(name, False) for name in critical):
        status = "healthy"
    elif any(providers.get(name, False) for name in critical):
        status = "degraded"
    else:
        status = "unhealthy"
    return HealthResponse(status=status, version=__version__, providers=providers)
