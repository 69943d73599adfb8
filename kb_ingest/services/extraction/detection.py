"""Source-kind detection.

Chooses one of the five extraction variants from a document's declared
media type, its storage path and any URL in its metadata.  A URL always
wins over the declared type: registered links carry placeholder types
such as ``url`` or ``text/html``.
"""

from __future__ import annotations

from pathlib import PurePosixPath

from kb_ingest.models.document import Document
from kb_ingest.models.extraction import SourceKind
from kb_ingest.utils.errors import MissingLocatorError, UnsupportedSourceError
from kb_ingest.utils.video_urls import is_video_url

PDF_TYPES = frozenset({"application/pdf", "application/x-pdf", "pdf"})

WORD_TYPES = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/msword",
        "application/rtf",
        "text/rtf",
        "docx",
        "doc",
        "rtf",
    }
)

TEXT_TYPES = frozenset({"text/plain", "text/markdown", "text/csv", "text/html", "txt", "md", "markdown"})

VIDEO_TYPES = frozenset({"youtube", "video/youtube", "video", "video_url"})

URL_TYPES = frozenset({"url", "web", "webpage", "link", "text/uri-list"})

_EXTENSION_TYPES = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".doc": "application/msword",
    ".rtf": "application/rtf",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".csv": "text/csv",
    ".html": "text/html",
    ".htm": "text/html",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".wav": "audio/wav",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
}


def effective_media_type(document: Document) -> str:
    """Return the declared type, or one inferred from the path extension.

    The extension is only consulted when the declared type is empty or the
    generic ``application/octet-stream``.
    """
    declared = (document.file_type or "").strip().lower()
    if declared and declared != "application/octet-stream":
        return declared.split(";", 1)[0].strip()
    if document.storage_path:
        suffix = PurePosixPath(document.storage_path).suffix.lower()
        return _EXTENSION_TYPES.get(suffix, declared)
    return declared


def detect_source_kind(document: Document) -> SourceKind:
    """Return the extraction variant for *document*.

    Raises
    ------
    MissingLocatorError
        If the variant needs a blob or URL that the document lacks.
    UnsupportedSourceError
        If no variant handles the declared type.
    """
    media_type = effective_media_type(document)
    url = document.source_url

    if url:
        if media_type in VIDEO_TYPES or is_video_url(url):
            return SourceKind.VIDEO
        return SourceKind.WEB

    if media_type in VIDEO_TYPES or media_type in URL_TYPES:
        raise MissingLocatorError(
            message=f"Document {document.id} is a {media_type or 'link'} source without a URL",
        )

    if media_type in PDF_TYPES:
        kind = SourceKind.PDF
    elif media_type.startswith("audio/"):
        kind = SourceKind.AUDIO
    elif media_type in WORD_TYPES or media_type in TEXT_TYPES or media_type.startswith("text/"):
        kind = SourceKind.TEXT
    else:
        raise UnsupportedSourceError(
            message=f"Unsupported file type {media_type or '(none)'!r} for document {document.id}",
        )

    if not document.storage_path:
        raise MissingLocatorError(message=f"Document {document.id} has no storage path")
    return kind
