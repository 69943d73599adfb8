"""Text-like document extraction: plain text, HTML, DOCX, RTF and legacy DOC.

Format dispatch follows the detected media type (with the path extension
as a fallback) and maps each format to a decoder:

    text/plain, markdown, csv  ->  charset-tolerant decode
    text/html                  ->  BeautifulSoup text
    docx                       ->  python-docx paragraphs, headings and tables
    rtf                        ->  striprtf
    doc (legacy binary)        ->  best-effort printable-run recovery

Legacy ``.doc`` recovery is heuristic and frequently produces garbage,
so its output is quality-checked right here with a DOC-specific message.
"""

from __future__ import annotations

import asyncio
import io
import re
import zipfile
from collections.abc import Awaitable, Callable

import structlog
from bs4 import BeautifulSoup
from docx import Document as load_docx
from docx.opc.exceptions import PackageNotFoundError
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph
from striprtf.striprtf import rtf_to_text

from kb_ingest.interfaces.progress_reporter import IProgressReporter
from kb_ingest.models.document import Document
from kb_ingest.models.extraction import ExtractionResult, SourceKind
from kb_ingest.models.pipeline import PipelineStage
from kb_ingest.services.extraction.base import SourceExtractor
from kb_ingest.services.extraction.detection import effective_media_type
from kb_ingest.utils.errors import ContentQualityError
from kb_ingest.utils.text_sanitizer import ensure_quality, strip_control_characters

logger = structlog.get_logger(logger_name=__name__)

_DOCX_TYPES = frozenset(
    {"application/vnd.openxmlformats-officedocument.wordprocessingml.document", "docx"}
)
_DOC_TYPES = frozenset({"application/msword", "doc"})
_RTF_TYPES = frozenset({"application/rtf", "text/rtf", "rtf"})
_HTML_TYPES = frozenset({"text/html", "html", "htm"})

_W_PARAGRAPH = qn("w:p")
_W_TABLE = qn("w:tbl")

_PLAIN_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")

# Runs of printable text in a binary Word file.
_PRINTABLE_RUN = re.compile(r"[A-Za-z0-9À-ɏ .,;:'\"!?()\-‘’“”]{4,}")

_DOC_USER_MESSAGE = "This Word document may be corrupted or unsupported."
_DOC_ACTIONS = [
    "Open the file in Word and save it as .docx or PDF.",
    "Upload the document in a different format.",
]


def decode_plain(data: bytes) -> str:
    """Decode bytes trying UTF-8 (with BOM) first, then Windows-1252."""
    for encoding in _PLAIN_ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="replace")


def html_to_text(data: bytes) -> str:
    soup = BeautifulSoup(decode_plain(data), "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


def docx_to_text(data: bytes) -> str:
    """Render a DOCX body as text, keeping headings and table rows."""
    try:
        doc = load_docx(io.BytesIO(data))
    except (zipfile.BadZipFile, PackageNotFoundError, KeyError, ValueError) as exc:
        raise ContentQualityError(
            message=f"DOCX could not be opened: {exc}",
            provider_name="python-docx",
            user_message="This Word document appears to be damaged.",
            suggested_actions=list(_DOC_ACTIONS),
        ) from exc

    blocks: list[str] = []
    # Paragraphs and tables in document order.
    for child in doc.element.body.iterchildren():
        if child.tag == _W_PARAGRAPH:
            para = Paragraph(child, doc)
            text = para.text.strip()
            if not text:
                continue
            style = (para.style.name if para.style is not None else "") or ""
            if style.lower().startswith(("heading", "title")):
                blocks.append(f"## {text}")
            else:
                blocks.append(text)
        elif child.tag == _W_TABLE:
            for row in Table(child, doc).rows:
                cells = [cell.text.strip() for cell in row.cells]
                if any(cells):
                    blocks.append(" | ".join(cells))

    return "\n\n".join(blocks)


def rtf_bytes_to_text(data: bytes) -> str:
    return rtf_to_text(decode_plain(data), errors="ignore")


def recover_doc_text(data: bytes) -> str:
    """Best-effort text recovery from a legacy binary ``.doc`` file.

    Word 97-2003 stores body text either as cp1252 bytes or as UTF-16LE;
    both decodings are tried and the one yielding more printable text
    wins.  Only runs of at least four printable characters are kept.
    """
    candidates = []
    for encoding in ("utf-16-le", "cp1252"):
        decoded = data.decode(encoding, errors="ignore")
        runs = [m.group(0).strip() for m in _PRINTABLE_RUN.finditer(decoded)]
        text = strip_control_characters(" ".join(r for r in runs if r))
        candidates.append(text)
    return max(candidates, key=len)


class TextExtractor(SourceExtractor):
    """Extracts text from uploaded text, HTML and word-processor files."""

    kind = SourceKind.TEXT
    needs_blob = True
    quality_user_message = "We couldn't find readable text in this document."

    def __init__(self, min_content_length: int = 50) -> None:
        self._min_content_length = min_content_length

    def resolve_format(self, document: Document, data: bytes) -> str:
        """Return ``docx``, ``doc``, ``rtf``, ``html`` or ``plain``."""
        media_type = effective_media_type(document)
        if media_type in _DOCX_TYPES:
            return "docx"
        if media_type in _DOC_TYPES:
            # Files renamed from .docx are zip containers.
            return "docx" if data[:2] == b"PK" else "doc"
        if media_type in _RTF_TYPES or data[:5] == b"{\\rtf":
            return "rtf"
        if media_type in _HTML_TYPES:
            return "html"
        return "plain"

    async def extract(
        self,
        document: Document,
        data: bytes | None,
        progress: IProgressReporter,
    ) -> ExtractionResult:
        payload = data or b""
        fmt = self.resolve_format(document, payload)

        decoders: dict[str, Callable[[bytes], Awaitable[str]]] = {
            "plain": self._decode_plain,
            "html": self._decode_html,
            "docx": self._decode_docx,
            "rtf": self._decode_rtf,
            "doc": self._decode_doc,
        }
        text = await decoders[fmt](payload)
        await progress.report(PipelineStage.EXTRACTION, 1, 1)

        logger.info("text_extracted", document_id=document.id, format=fmt, chars=len(text))
        return ExtractionResult(
            text=text,
            source_kind=SourceKind.TEXT,
            metadata={"type": fmt, "bytes": len(payload)},
        )

    async def _decode_plain(self, data: bytes) -> str:
        return decode_plain(data)

    async def _decode_html(self, data: bytes) -> str:
        return await asyncio.to_thread(html_to_text, data)

    async def _decode_docx(self, data: bytes) -> str:
        return await asyncio.to_thread(docx_to_text, data)

    async def _decode_rtf(self, data: bytes) -> str:
        return await asyncio.to_thread(rtf_bytes_to_text, data)

    async def _decode_doc(self, data: bytes) -> str:
        text = await asyncio.to_thread(recover_doc_text, data)
        ensure_quality(
            text,
            source_label="legacy Word document",
            min_length=self._min_content_length,
            user_message=_DOC_USER_MESSAGE,
            suggested_actions=list(_DOC_ACTIONS),
        )
        return text
