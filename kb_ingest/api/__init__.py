"""kb-ingest API layer: routes, schemas and middleware."""

from kb_ingest.api.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from kb_ingest.api.routes import router
from kb_ingest.api.schemas import (
    DocumentStatusResponse,
    ErrorResponse,
    HealthResponse,
    StageResultResponse,
    SummarizeRequest,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "router",
    "DocumentStatusResponse",
    "ErrorResponse",
    "HealthResponse",
    "StageResultResponse",
    "SummarizeRequest",
]
