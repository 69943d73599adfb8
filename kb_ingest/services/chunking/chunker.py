"""Overlapping character windows with section identifiers.

Splits extracted text into :class:`~kb_ingest.models.chunk.TextChunk`
drafts of about ``chunk_size`` characters with ``overlap`` characters
shared between neighbours.  Every chunk records the half-open character
range it covers (``metadata.start`` / ``metadata.end``), so dropping each
chunk's overlap with its predecessor reconstructs the original text.

The splitting mode follows the markers the extractors leave behind:

1. **page** -- ``[Page N]`` lines (PDF).  Pages are windowed
   independently; section identifier ``Page N``.
2. **timestamp** -- ``[MM:SS]`` lines (video transcripts).  Whole timed
   segments are packed into windows, with trailing segments repeated as
   overlap; section identifier ``Time MM:SS``.
3. **structured** -- markdown headings (web pages, DOCX).  Consecutive
   short sections are packed together, long ones windowed; the section
   identifier is the first heading's text (``Introduction`` before the
   first heading).
4. **generic** -- everything else; section identifier ``Part N``.

Window ends are moved back to the nearest paragraph break, then sentence
end, then whitespace, within a short look-back, so chunks rarely stop
mid-word.  The result is a pure function of the text and settings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import structlog

from kb_ingest.models.chunk import TextChunk
from kb_ingest.models.extraction import SourceKind

logger = structlog.get_logger(logger_name=__name__)

_PAGE_MARKER = re.compile(r"^\[Page (\d+)\]$", re.MULTILINE)
_TIMESTAMP_MARKER = re.compile(r"^\[(\d{1,2}:\d{2}(?::\d{2})?)\]", re.MULTILINE)
_HEADING = re.compile(r"^#{1,6}[ \t]+(.+?)[ \t#]*$", re.MULTILINE)
_SENTENCE_END = re.compile(r"[.!?][\"')\]]?\s")
_SLUG = re.compile(r"[^a-z0-9]+")

_MAX_LOOKBACK = 150
_MAX_SLUG_LENGTH = 40


def estimate_tokens(text: str) -> int:
    """Approximate token count: four characters per token plus 10% headroom."""
    if not text:
        return 0
    return (len(text) * 11 + 39) // 40


def slugify(value: str) -> str:
    slug = _SLUG.sub("-", value.lower()).strip("-")
    return slug[:_MAX_SLUG_LENGTH].rstrip("-") or "section"


def make_citation_key(document_id: str, section_identifier: str | None, index: int) -> str:
    """Return ``<doc id prefix>:<section slug>:<index>``; unique per document."""
    return f"{document_id[:8]}:{slugify(section_identifier or 'part')}:{index}"


@dataclass(frozen=True)
class _Span:
    start: int
    end: int
    section: str
    extra: tuple[tuple[str, object], ...] = ()


class DocumentChunker:
    """Splits document text into overlapping, section-labelled chunks.

    Parameters
    ----------
    chunk_size:
        Target window length in characters (default 1500).
    overlap:
        Characters shared by consecutive windows (default 200).  Must be
        smaller than *chunk_size*.
    preserve_structure:
        Split on markdown headings when the text has them.
    """

    def __init__(
        self,
        chunk_size: int = 1500,
        overlap: int = 200,
        preserve_structure: bool = True,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be non-negative and smaller than chunk_size")
        self._chunk_size = chunk_size
        self._overlap = overlap
        self._step = chunk_size - overlap
        self._lookback = min(_MAX_LOOKBACK, self._step // 2)
        self._preserve_structure = preserve_structure

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(
        self,
        text: str,
        document_id: str,
        source_kind: SourceKind | None = None,
    ) -> list[TextChunk]:
        """Split *text* into chunks indexed contiguously from zero.

        Whitespace-only input yields an empty list.
        """
        if not text or not text.strip():
            return []

        mode = self.select_mode(text, source_kind)
        if mode == "page":
            spans = self._page_spans(text)
        elif mode == "timestamp":
            spans = self._timestamp_spans(text)
        elif mode == "structured":
            spans = self._structured_spans(text)
        else:
            spans = self._generic_spans(text)

        chunks: list[TextChunk] = []
        for span in spans:
            content = text[span.start : span.end]
            if not content.strip():
                continue
            index = len(chunks)
            chunks.append(
                TextChunk(
                    index=index,
                    content=content,
                    section_identifier=span.section,
                    citation_key=make_citation_key(document_id, span.section, index),
                    token_count=estimate_tokens(content),
                    metadata={
                        "start": span.start,
                        "end": span.end,
                        "chunking_mode": mode,
                        **dict(span.extra),
                    },
                )
            )

        logger.debug(
            "chunking_complete",
            document_id=document_id,
            mode=mode,
            num_chunks=len(chunks),
            chars=len(text),
        )
        return chunks

    def select_mode(self, text: str, source_kind: SourceKind | None = None) -> str:
        """Return ``page``, ``timestamp``, ``structured`` or ``generic``."""
        has_pages = _PAGE_MARKER.search(text) is not None
        timestamps = len(_TIMESTAMP_MARKER.findall(text))

        if has_pages and source_kind in (None, SourceKind.PDF):
            return "page"
        if source_kind == SourceKind.VIDEO and timestamps:
            return "timestamp"
        if source_kind is None and timestamps >= 2:
            return "timestamp"
        if self._preserve_structure and _HEADING.search(text) is not None:
            return "structured"
        return "generic"

    # ------------------------------------------------------------------
    # Window primitive
    # ------------------------------------------------------------------

    def window(self, text: str, lo: int, hi: int) -> list[tuple[int, int]]:
        """Return overlapping ``(start, end)`` windows covering ``text[lo:hi]``.

        Window *k* nominally ends at ``lo + k * step + chunk_size``; that end
        is snapped back to a natural boundary and the next window starts
        ``overlap`` characters before it.  The final window always ends at
        *hi*.
        """
        if hi <= lo:
            return []
        if hi - lo <= self._chunk_size:
            return [(lo, hi)]

        windows: list[tuple[int, int]] = []
        start = lo
        k = 0
        while True:
            nominal_end = lo + k * self._step + self._chunk_size
            if nominal_end >= hi:
                windows.append((start, hi))
                return windows
            end = self._snap(text, start, nominal_end)
            windows.append((start, end))
            start = max(lo, end - self._overlap)
            k += 1

    def _snap(self, text: str, start: int, end: int) -> int:
        """Move *end* back to a paragraph, sentence or word boundary if one is near."""
        floor = max(start + 1, end - self._lookback)
        region = text[floor:end]

        paragraph = region.rfind("\n\n")
        if paragraph != -1:
            return floor + paragraph + 2

        sentence_end = None
        for match in _SENTENCE_END.finditer(region):
            sentence_end = match.end()
        if sentence_end is not None:
            return floor + sentence_end

        for position in range(len(region) - 1, -1, -1):
            if region[position].isspace():
                return floor + position + 1
        return end

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def _generic_spans(self, text: str) -> list[_Span]:
        return [
            _Span(start, end, f"Part {number}")
            for number, (start, end) in enumerate(self.window(text, 0, len(text)), start=1)
        ]

    def _page_spans(self, text: str) -> list[_Span]:
        markers = list(_PAGE_MARKER.finditer(text))
        spans: list[_Span] = []
        for position, marker in enumerate(markers):
            # Text before the first marker belongs to the first page.
            lo = 0 if position == 0 else marker.start()
            hi = markers[position + 1].start() if position + 1 < len(markers) else len(text)
            page = int(marker.group(1))
            for start, end in self.window(text, lo, hi):
                spans.append(_Span(start, end, f"Page {page}", (("page", page),)))
        return spans

    def _timestamp_spans(self, text: str) -> list[_Span]:
        markers = list(_TIMESTAMP_MARKER.finditer(text))
        segments: list[tuple[int, int, str]] = []
        for position, marker in enumerate(markers):
            lo = 0 if position == 0 else marker.start()
            hi = markers[position + 1].start() if position + 1 < len(markers) else len(text)
            segments.append((lo, hi, marker.group(1)))

        spans: list[_Span] = []
        current: list[tuple[int, int, str]] = []
        first_new = 0

        def flush() -> None:
            stamp = current[first_new][2]
            spans.append(
                _Span(current[0][0], current[-1][1], f"Time {stamp}", (("timestamp", stamp),))
            )

        for segment in segments:
            seg_lo, seg_hi, stamp = segment
            if seg_hi - seg_lo > self._chunk_size:
                if current and first_new < len(current):
                    flush()
                current, first_new = [], 0
                for start, end in self.window(text, seg_lo, seg_hi):
                    spans.append(_Span(start, end, f"Time {stamp}", (("timestamp", stamp),)))
                continue

            if current and seg_hi - current[0][0] > self._chunk_size:
                flush()
                carried: list[tuple[int, int, str]] = []
                for previous in reversed(current):
                    if seg_lo - previous[0] > self._overlap:
                        break
                    carried.insert(0, previous)
                while carried and seg_hi - carried[0][0] > self._chunk_size:
                    carried.pop(0)
                current, first_new = carried, len(carried)
            current.append(segment)

        if current and first_new < len(current):
            flush()
        return spans

    def _structured_spans(self, text: str) -> list[_Span]:
        headings = list(_HEADING.finditer(text))
        sections: list[tuple[int, int, str]] = []
        if headings and text[: headings[0].start()].strip():
            sections.append((0, headings[0].start(), "Introduction"))
        for position, heading in enumerate(headings):
            lo = 0 if position == 0 and not sections else heading.start()
            hi = headings[position + 1].start() if position + 1 < len(headings) else len(text)
            sections.append((lo, hi, heading.group(1).strip()))

        spans: list[_Span] = []
        group_lo: int | None = None
        group_hi = 0
        group_name = ""
        for lo, hi, name in sections:
            if group_lo is not None and hi - group_lo <= self._chunk_size:
                group_hi = hi
                continue
            if group_lo is not None:
                spans.extend(_Span(s, e, group_name) for s, e in self.window(text, group_lo, group_hi))
            group_lo, group_hi, group_name = lo, hi, name
        if group_lo is not None:
            spans.extend(_Span(s, e, group_name) for s, e in self.window(text, group_lo, group_hi))
        return spans
