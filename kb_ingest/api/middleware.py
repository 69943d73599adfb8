"""API middleware: request logging and error handling.

Starlette runs middleware last-added-first, so ``create_app`` adds
:class:`ErrorHandlingMiddleware` before :class:`RequestLoggingMiddleware`
and the logger sees the final status code, including error bodies
written by the error handler.
"""

from __future__ import annotations

import time

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from kb_ingest.api.schemas import ErrorResponse
from kb_ingest.utils.errors import (
    ConfigurationError,
    DocumentNotFoundError,
    InvalidStatusTransitionError,
    KBIngestError,
)

logger = structlog.get_logger(logger_name=__name__)

_STATUS_CODES: dict[type[KBIngestError], int] = {
    DocumentNotFoundError: 404,
    InvalidStatusTransitionError: 409,
    ConfigurationError: 503,
}


def status_code_for(exc: KBIngestError) -> int:
    for error_type, code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return code
    return 500


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=response.status_code if response else 500,
                duration_ms=duration_ms,
            )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn stray :class:`KBIngestError` exceptions into JSON error bodies.

    Stage endpoints never raise, so this mostly catches status lookups
    for unknown documents and store failures outside a stage.  The
    client gets the error code and user-facing message; the technical
    message stays in the log.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except KBIngestError as exc:
            logger.error(
                "application_error",
                error_type=type(exc).__name__,
                code=exc.code,
                message=exc.message,
                provider=exc.provider_name,
                path=str(request.url.path),
            )
            body = ErrorResponse(
                error=type(exc).__name__,
                code=exc.code,
                detail=exc.user_message,
                suggested_actions=exc.suggested_actions,
            )
            return JSONResponse(status_code=status_code_for(exc), content=body.model_dump())
