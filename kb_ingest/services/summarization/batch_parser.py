"""Parsing of multi-chunk summary responses.

The primary format is one ``CHUNK <n> SUMMARY: ...`` block per input.
Models sometimes drift (markdown bold, ``Chunk 1:`` labels, a numbered
list), so when the marker pattern finds nothing a line-oriented fallback
reads numbered lines instead.  Whatever is parsed, only numbers in
``1..expected`` are returned; missing numbers are the caller's cue to
summarize those chunks one at a time.
"""

from __future__ import annotations

import re

_MARKER = re.compile(
    r"^[\s*#>_-]*CHUNK\s+(\d+)\s+SUMMARY\s*[:.\-]?[*_\s]*(.*?)(?=^[\s*#>_-]*CHUNK\s+\d+\s+SUMMARY|\Z)",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)

# "1. text", "1) text", "Chunk 1: text", "[1] text", "**1.** text"
_NUMBERED_LINE = re.compile(
    r"^[\s*#>_-]*(?:chunk\s*)?(?:\[(\d+)\]|(\d+)[*_]*\s*[.):\-])[*_\s]*(.+)$",
    re.IGNORECASE,
)


def _clean(text: str) -> str:
    return " ".join(text.replace("**", "").split()).strip()


def parse_marker_blocks(response: str, expected: int) -> dict[int, str]:
    """Parse ``CHUNK n SUMMARY:`` blocks; keys are 1-based positions."""
    parsed: dict[int, str] = {}
    for match in _MARKER.finditer(response):
        number = int(match.group(1))
        summary = _clean(match.group(2))
        if 1 <= number <= expected and summary and number not in parsed:
            parsed[number] = summary
    return parsed


def parse_numbered_lines(response: str, expected: int) -> dict[int, str]:
    """Fallback: read ``n. summary`` style lines, joining continuation lines."""
    parsed: dict[int, str] = {}
    current: int | None = None
    for line in response.splitlines():
        match = _NUMBERED_LINE.match(line)
        if match:
            number = int(match.group(1) or match.group(2))
            if 1 <= number <= expected and number not in parsed:
                current = number
                parsed[number] = _clean(match.group(3))
                continue
            current = None
            continue
        if current is not None and line.strip():
            parsed[current] = _clean(f"{parsed[current]} {line}")
    return {n: s for n, s in parsed.items() if s}


def parse_batch_response(response: str, expected: int) -> dict[int, str]:
    """Return ``{position: summary}`` for the positions found in *response*."""
    parsed = parse_marker_blocks(response, expected)
    if parsed:
        return parsed
    return parse_numbered_lines(response, expected)
