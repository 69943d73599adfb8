"""Custom exception hierarchy for kb-ingest.

All application exceptions inherit from :class:`KBIngestError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "youtube", "sqlite") caused the failure.

Every class also declares the user-facing half of an error: a stable
``code``, a short non-technical ``user_message``, a list of
``suggested_actions`` and whether the failure is ``retryable``.  The
status tracker copies these onto the document record so the UI can show
something better than a stack trace.

The hierarchy is organized by pipeline stage:

    KBIngestError  (base -- catch-all for any kb-ingest error)
    +-- ConfigurationError          (startup / missing config)
    +-- DocumentNotFoundError       (input: unknown document id)
    +-- UnsupportedSourceError      (input: declared type not handled)
    +-- MissingLocatorError         (input: no storage path / URL)
    +-- ExtractionError             (Extractor: parse failures)
    |   +-- ContentQualityError     (text too short / garbage / raw structure)
    |   +-- WebFetchError           (all header profiles failed)
    |   +-- TranscriptFetchError    (caption track unavailable)
    |   +-- TranscriptionError      (speech-to-text failed)
    +-- ChunkingError               (no chunks created)
    +-- LLMError                    (text-generation call failed)
    +-- EmbeddingError              (embedding call failed)
    +-- RateLimitError              (provider rate-limit exceeded)
    +-- ProviderUnavailableError    (external service down / unreachable)
    +-- StorageError                (store read/write failed)
    +-- InvalidStatusTransitionError (backwards status move)

Retry helpers key off :class:`RateLimitError` and
:class:`ProviderUnavailableError`; input and content-quality errors are
never retried.
"""

from __future__ import annotations


class KBIngestError(Exception):
    """Base exception for all kb-ingest errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  ``__str__`` prefixes the provider name in brackets for
    structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    code = "PROCESSING_ERROR"
    default_user_message = "Something went wrong while processing this document."
    default_suggested_actions: tuple[str, ...] = (
        "Try processing the document again.",
        "Contact support if the problem persists.",
    )
    retryable = False

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
        *,
        user_message: str | None = None,
        suggested_actions: list[str] | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        self._user_message = user_message
        self._suggested_actions = suggested_actions
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    @property
    def user_message(self) -> str:
        return self._user_message or self.default_user_message

    @property
    def suggested_actions(self) -> list[str]:
        if self._suggested_actions is not None:
            return list(self._suggested_actions)
        return list(self.default_suggested_actions)

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Configuration / input errors
# ---------------------------------------------------------------------------


class ConfigurationError(KBIngestError):
    """Raised when configuration is invalid or missing at startup."""

    code = "CONFIGURATION_ERROR"
    default_user_message = "The ingestion service is not configured correctly."
    default_suggested_actions = ("Contact your administrator.",)

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


class DocumentNotFoundError(KBIngestError):
    """Raised when a document id does not resolve to a stored record."""

    code = "DOCUMENT_NOT_FOUND"
    default_user_message = "We couldn't find this document."
    default_suggested_actions = (
        "Refresh the page and check the document still exists.",
        "Upload the document again.",
    )

    def __init__(
        self,
        message: str = "Document not found",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


class UnsupportedSourceError(KBIngestError):
    """Raised when the declared media type has no extractor."""

    code = "UNSUPPORTED_FILE_TYPE"
    default_user_message = "This file type isn't supported."
    default_suggested_actions = (
        "Upload a PDF, Word document, text file, or audio file.",
        "Paste a web page or YouTube link instead.",
    )

    def __init__(
        self,
        message: str = "Unsupported source type",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


class MissingLocatorError(KBIngestError):
    """Raised when neither a storage path nor a source URL is available."""

    code = "MISSING_SOURCE"
    default_user_message = "This document has no file or link attached."
    default_suggested_actions = ("Upload the file again or re-enter the link.",)

    def __init__(
        self,
        message: str = "Document has no storage path or source URL",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


# ---------------------------------------------------------------------------
# Extraction errors
# ---------------------------------------------------------------------------


class ExtractionError(KBIngestError):
    """Raised when a source cannot be converted to text."""

    code = "EXTRACTION_FAILED"
    default_user_message = "We couldn't read the text in this document."
    default_suggested_actions = (
        "Check the file opens correctly on your computer.",
        "Try uploading the document in a different format.",
    )

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


class ContentQualityError(ExtractionError):
    """Raised when extracted text is too short, garbled, or raw file structure."""

    code = "CONTENT_QUALITY"
    default_user_message = "This document may be corrupted or unsupported."
    default_suggested_actions = (
        "Open the file and re-save it as PDF or DOCX.",
        "If this is a scanned document, run it through OCR first.",
    )

    def __init__(
        self,
        message: str = "Extracted content failed the quality check",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


# User-facing text per classified web-fetch cause.
_WEB_FETCH_MESSAGES: dict[str, tuple[str, tuple[str, ...]]] = {
    "timeout": (
        "The website took too long to respond.",
        ("Try again in a few minutes.", "Check the site loads in your browser."),
    ),
    "blocked": (
        "This website is blocking automated access.",
        (
            "Copy the page text into a document and upload it instead.",
            "Try a different page from another site.",
        ),
    ),
    "not_found": (
        "The page could not be found.",
        ("Check the link is correct and publicly accessible.",),
    ),
    "server_error": (
        "The website returned a server error.",
        ("Try again later.",),
    ),
    "tls": (
        "We couldn't establish a secure connection to this website.",
        ("Check the link uses a valid https address.",),
    ),
    "unknown": (
        "We couldn't load this web page.",
        ("Check the link and try again.", "Upload the content as a document instead."),
    ),
}


class WebFetchError(ExtractionError):
    """Raised once every request-header profile has failed to fetch a URL.

    ``cause`` is one of ``timeout``, ``blocked``, ``not_found``,
    ``server_error``, ``tls`` or ``unknown`` and drives the user-facing
    message.  ``attempts`` keeps a short description of each failed
    attempt for the log.
    """

    code = "WEB_FETCH_FAILED"

    def __init__(
        self,
        message: str = "Failed to fetch web page",
        provider_name: str | None = None,
        *,
        cause: str = "unknown",
        attempts: list[str] | None = None,
    ) -> None:
        self.cause = cause if cause in _WEB_FETCH_MESSAGES else "unknown"
        self.attempts = list(attempts or [])
        user_message, actions = _WEB_FETCH_MESSAGES[self.cause]
        super().__init__(
            message=message,
            provider_name=provider_name,
            user_message=user_message,
            suggested_actions=list(actions),
        )

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.cause in ("timeout", "server_error")


_TRANSCRIPT_MESSAGES: dict[str, tuple[str, tuple[str, ...]]] = {
    "disabled": (
        "Captions are turned off for this video.",
        ("Try a different video that has captions enabled.",),
    ),
    "access_denied": (
        "This video is private or restricted.",
        ("Make sure the video is public or unlisted.", "Try a different video."),
    ),
    "not_found": (
        "No transcript is available for this video.",
        ("Try a different video.", "Upload the audio file instead."),
    ),
    "region_restricted": (
        "This video isn't available in our region.",
        ("Try a different video.",),
    ),
    "unknown": (
        "We couldn't get a transcript for this video.",
        ("Try again later.", "Try a different video."),
    ),
}


class TranscriptFetchError(ExtractionError):
    """Raised when a video's caption track cannot be retrieved.

    ``kind`` distinguishes ``disabled``, ``access_denied``, ``not_found``,
    ``region_restricted`` and ``unknown``.  ``language_specific`` is set
    when the failure only concerns the requested language, which tells
    the extractor that another language may still succeed.
    """

    code = "TRANSCRIPT_UNAVAILABLE"

    def __init__(
        self,
        message: str = "Transcript unavailable",
        provider_name: str | None = None,
        *,
        kind: str = "unknown",
        language_specific: bool = False,
    ) -> None:
        self.kind = kind if kind in _TRANSCRIPT_MESSAGES else "unknown"
        self.language_specific = language_specific
        user_message, actions = _TRANSCRIPT_MESSAGES[self.kind]
        super().__init__(
            message=message,
            provider_name=provider_name,
            user_message=user_message,
            suggested_actions=list(actions),
        )


class TranscriptionError(ExtractionError):
    """Raised when the speech-to-text service fails for an audio upload."""

    code = "TRANSCRIPTION_FAILED"
    default_user_message = "We couldn't transcribe this audio file."
    default_suggested_actions = (
        "Check the audio plays correctly.",
        "Upload an MP3, M4A or WAV file under 25 MB.",
    )

    def __init__(
        self,
        message: str = "Audio transcription failed",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


class ChunkingError(KBIngestError):
    """Raised when chunking yields nothing usable."""

    code = "NO_CHUNKS"
    default_user_message = "No readable content was found in this document."
    default_suggested_actions = (
        "Check the document contains text.",
        "If this is a scanned document, run it through OCR first.",
    )

    def __init__(
        self,
        message: str = "No chunks created",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


# ---------------------------------------------------------------------------
# External service / provider errors
# ---------------------------------------------------------------------------


class LLMError(KBIngestError):
    """Raised when a text-generation call fails or returns nothing usable."""

    code = "SUMMARIZATION_FAILED"
    default_user_message = "We couldn't summarize this content."
    default_suggested_actions = ("Try summarizing again in a few minutes.",)

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


class EmbeddingError(KBIngestError):
    """Raised when an embedding call fails."""

    code = "EMBEDDING_FAILED"
    default_user_message = "We couldn't index this content for search."
    default_suggested_actions = ("Try processing the document again later.",)

    def __init__(
        self,
        message: str = "Embedding API call failed",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


class RateLimitError(KBIngestError):
    """Raised when an API rate limit is exceeded.

    Callers back off and retry when this is caught.
    """

    code = "RATE_LIMITED"
    default_user_message = "The service is busy right now."
    default_suggested_actions = ("Wait a minute and try again.",)
    retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


class ProviderUnavailableError(KBIngestError):
    """Raised when an external service is unreachable or returns 5xx."""

    code = "SERVICE_UNAVAILABLE"
    default_user_message = "A service we depend on is temporarily unavailable."
    default_suggested_actions = ("Try again in a few minutes.",)
    retryable = True

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


# ---------------------------------------------------------------------------
# Persistence / orchestration errors
# ---------------------------------------------------------------------------


class StorageError(KBIngestError):
    """Raised when a blob or record store read/write fails."""

    code = "STORAGE_ERROR"
    default_user_message = "We couldn't access the stored document."
    default_suggested_actions = ("Try again.", "Upload the document again if it keeps failing.")

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


class InvalidStatusTransitionError(KBIngestError):
    """Raised when a document status would move backwards."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(
        self,
        message: str = "Invalid document status transition",
        provider_name: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)
