"""Text sanitization and content-quality checks for extracted text.

Every extractor's output passes through :func:`sanitize_text` before it is
persisted: downstream stores reject NUL bytes and unpaired surrogates, and
stray control characters confuse both the chunker and the LLM.

:func:`assess_quality` is the gate that turns "technically text" into a
:class:`~kb_ingest.utils.errors.ContentQualityError` when the result is
too short, mostly non-alphabetic, or obviously raw file structure
(PDF object syntax, zip/XML residue from a mis-decoded Office file).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from kb_ingest.utils.errors import ContentQualityError

# C0 controls except \t (0x09) and \n (0x0A), plus DEL and C1 controls.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")
_SURROGATES = re.compile(r"[\ud800-\udfff]")
_TRAILING_SPACE = re.compile(r"[ \t]+\n")
_EXCESS_BLANK_LINES = re.compile(r"\n{4,}")

# Markers that only show up when a binary container was decoded as text.
_RAW_STRUCTURE_MARKERS = (
    re.compile(r"\b\d+\s+\d+\s+obj\b"),
    re.compile(r"\bendobj\b"),
    re.compile(r"\bendstream\b"),
    re.compile(r"\bxref\b"),
    re.compile(r"%PDF-\d"),
    re.compile(r"\[Content_Types\]\.xml"),
    re.compile(r"<w:document\b"),
    re.compile(r"PK\x03\x04|PK\s{0,2}\[Content"),
)

MIN_CONTENT_LENGTH = 50
MIN_ALPHA_RATIO = 0.3


def sanitize_text(text: str) -> str:
    """Return *text* safe for persistence.

    Normalizes ``\\r\\n`` and lone ``\\r`` to ``\\n``, strips NUL and other
    control characters (keeping tabs and newlines), drops unpaired
    surrogates, trims trailing spaces on each line, collapses runs of more
    than three newlines and trims the whole string.
    """
    if not text:
        return ""
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n").replace("\f", "\n")
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = _SURROGATES.sub("", cleaned)
    cleaned = _TRAILING_SPACE.sub("\n", cleaned)
    cleaned = _EXCESS_BLANK_LINES.sub("\n\n\n", cleaned)
    return cleaned.strip()


def strip_control_characters(text: str) -> str:
    """Remove control characters but keep tabs and newlines."""
    return _CONTROL_CHARS.sub("", text)


@dataclass(frozen=True)
class QualityReport:
    """Outcome of :func:`assess_quality`."""

    length: int
    alpha_ratio: float
    raw_structure: bool
    passed: bool
    reason: str = ""


def alpha_ratio(text: str) -> float:
    """Share of alphabetic characters among the non-whitespace characters."""
    visible = [ch for ch in text if not ch.isspace()]
    if not visible:
        return 0.0
    return sum(1 for ch in visible if ch.isalpha()) / len(visible)


def looks_like_raw_structure(text: str) -> bool:
    """Return ``True`` when *text* contains container/markup residue."""
    sample = text[:20_000]
    hits = sum(1 for pattern in _RAW_STRUCTURE_MARKERS if pattern.search(sample))
    return hits >= 2


def assess_quality(
    text: str,
    min_length: int = MIN_CONTENT_LENGTH,
    min_alpha_ratio: float = MIN_ALPHA_RATIO,
) -> QualityReport:
    """Score *text* against the length / alphabetic / structure checks."""
    stripped = text.strip()
    ratio = alpha_ratio(stripped)
    raw = looks_like_raw_structure(stripped)

    reason = ""
    if len(stripped) < min_length:
        reason = f"content too short ({len(stripped)} < {min_length} characters)"
    elif ratio < min_alpha_ratio:
        reason = f"too little alphabetic content (ratio {ratio:.2f})"
    elif raw:
        reason = "content looks like raw file structure rather than text"

    return QualityReport(
        length=len(stripped),
        alpha_ratio=round(ratio, 3),
        raw_structure=raw,
        passed=not reason,
        reason=reason,
    )


def ensure_quality(
    text: str,
    *,
    source_label: str,
    min_length: int = MIN_CONTENT_LENGTH,
    min_alpha_ratio: float = MIN_ALPHA_RATIO,
    user_message: str | None = None,
    suggested_actions: list[str] | None = None,
) -> QualityReport:
    """Run :func:`assess_quality` and raise :class:`ContentQualityError` on failure."""
    report = assess_quality(text, min_length=min_length, min_alpha_ratio=min_alpha_ratio)
    if not report.passed:
        raise ContentQualityError(
            message=f"{source_label}: {report.reason}",
            user_message=user_message,
            suggested_actions=suggested_actions,
        )
    return report
